import json
from typing import AsyncIterator, Optional

import httpx

from supportdesk.logging_config import get_logger
from supportdesk.services.llm.base import (
    CompletionProvider,
    CompletionRequest,
    FatalGenerationError,
    RunSnapshot,
    RunStatus,
    StaleThreadError,
    StatusChange,
    StreamEvent,
    TextDelta,
    ToolCall,
    TransientGenerationError,
)

logger = get_logger("llm.openai")

_STATUS_MAP = {
    "queued": RunStatus.QUEUED,
    "in_progress": RunStatus.IN_PROGRESS,
    "completed": RunStatus.COMPLETED,
    "incomplete": RunStatus.INCOMPLETE,
    "failed": RunStatus.FAILED,
    "cancelled": RunStatus.CANCELLED,
}


def _parse_arguments(raw: Optional[str]) -> dict:
    try:
        value = json.loads(raw or "{}")
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


def _output_text(response: dict) -> str:
    parts = []
    for item in response.get("output") or []:
        if item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if content.get("type") == "output_text":
                parts.append(content.get("text") or "")
    return "".join(parts)


def _tool_calls(response: dict) -> list[ToolCall]:
    return [
        ToolCall(call_id=item.get("call_id", ""), name=item.get("name", ""), arguments=_parse_arguments(item.get("arguments")))
        for item in response.get("output") or []
        if item.get("type") == "function_call"
    ]


class OpenAIProvider(CompletionProvider):
    """OpenAI Responses API over streaming HTTP."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    def _payload(self, request: CompletionRequest) -> dict:
        payload = {
            "model": request.model,
            "instructions": request.instructions,
            "input": request.messages,
            "max_output_tokens": request.max_output_tokens,
            "stream": True,
            "store": True,
        }
        if request.tools:
            payload["tools"] = request.tools
        if request.previous_response_id:
            payload["previous_response_id"] = request.previous_response_id
        return payload

    @staticmethod
    def _raise_for_status(status_code: int, body: str, previous_response_id: Optional[str]) -> None:
        if status_code < 400:
            return
        logger.error(f"OpenAI error: {status_code} - {body[:500]}")
        if previous_response_id and status_code in (400, 404) and "previous_response" in body:
            raise StaleThreadError(f"Stored response handle {previous_response_id} rejected")
        if status_code == 429 or status_code >= 500:
            raise TransientGenerationError(f"OpenAI API error: {status_code}")
        raise FatalGenerationError(f"OpenAI API error: {status_code} - {body[:200]}")

    def stream_completion(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        logger.debug(f"OpenAI request: model={request.model}, messages_count={len(request.messages)}")
        return self._stream(self._payload(request), request.previous_response_id)

    def submit_tool_result(
        self,
        handle: str,
        tool_call_id: str,
        payload: dict,
        request: CompletionRequest,
    ) -> AsyncIterator[StreamEvent]:
        body = self._payload(request)
        body["previous_response_id"] = handle
        body["input"] = [
            {"type": "function_call_output", "call_id": tool_call_id, "output": json.dumps(payload)},
        ]
        return self._stream(body, handle)

    async def _stream(self, payload: dict, previous_response_id: Optional[str]) -> AsyncIterator[StreamEvent]:
        try:
            async with self._client() as client:
                async with client.stream("POST", "/responses", json=payload) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        self._raise_for_status(response.status_code, body, previous_response_id)

                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if not data or data == "[DONE]":
                            continue
                        event = self._to_event(json.loads(data))
                        if event is not None:
                            yield event
        except httpx.TimeoutException as e:
            raise TransientGenerationError(f"OpenAI stream timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientGenerationError(f"OpenAI stream dropped: {e}") from e

    @staticmethod
    def _to_event(data: dict) -> Optional[StreamEvent]:
        kind = data.get("type", "")
        if kind == "response.output_text.delta":
            return TextDelta(text=data.get("delta") or "")
        if kind == "response.output_item.done":
            item = data.get("item") or {}
            if item.get("type") == "function_call":
                return ToolCall(
                    call_id=item.get("call_id", ""),
                    name=item.get("name", ""),
                    arguments=_parse_arguments(item.get("arguments")),
                )
            return None
        if kind in ("response.created", "response.in_progress", "response.completed", "response.incomplete", "response.failed"):
            response = data.get("response") or {}
            error = response.get("error") or {}
            return StatusChange(
                status=_STATUS_MAP.get(response.get("status"), RunStatus.IN_PROGRESS),
                handle=response.get("id"),
                usage=response.get("usage"),
                error=error.get("message") if isinstance(error, dict) else None,
            )
        if kind == "error":
            return StatusChange(status=RunStatus.FAILED, error=data.get("message"))
        return None

    async def poll_status(self, handle: str) -> RunSnapshot:
        try:
            async with self._client() as client:
                response = await client.get(f"/responses/{handle}")
        except httpx.TimeoutException as e:
            raise TransientGenerationError(f"OpenAI status poll timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientGenerationError(f"OpenAI status poll failed: {e}") from e

        self._raise_for_status(response.status_code, response.text, None)
        data = response.json()
        logger.debug(f"OpenAI poll: {handle} status={data.get('status')}")
        return RunSnapshot(
            status=_STATUS_MAP.get(data.get("status"), RunStatus.IN_PROGRESS),
            text=_output_text(data),
            usage=data.get("usage"),
            tool_calls=_tool_calls(data),
        )
