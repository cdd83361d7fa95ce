"""AI response orchestration: one attempt at answering a customer message.

A run is driven by two strategies under one supervisor. `StreamStrategy` consumes
the completion stream as the primary path. `PollingStrategy` wakes up when the
stream has gone quiet and asks the completion service for the run status, so a
broken stream still ends with the run's final text.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional, Union
from uuid import UUID

from supportdesk.config import settings
from supportdesk.logging_config import LoggerAdapter, get_logger
from supportdesk.models import Company, Message
from supportdesk.services import conversation_service
from supportdesk.services.llm.base import (
    CompletionError,
    CompletionProvider,
    CompletionRequest,
    RunStatus,
    StatusChange,
    TextDelta,
    ToolCall,
    TransientGenerationError,
)
from supportdesk.services.notification_service import NotificationSender, notify_support_agents
from supportdesk.services.prompt_builder import (
    ESCALATION_TOOL,
    ESCALATION_TOOL_NAME,
    build_instructions,
    get_token_limit,
)
from supportdesk.services.response_filter import (
    EMPTY_REPLY_FALLBACK,
    ai_requests_escalation,
    match_customer_trigger,
    sanitize_ai_response,
)
from supportdesk.services.state_machine import ConversationStatus, MessageRole
from supportdesk.services.store import ConversationStore
from supportdesk.services.usage_service import track_ai_response

logger = get_logger("ai_service")

DEFAULT_ESCALATION_REASON = "Customer requested support staff"
ESCALATION_ACK_FALLBACK = "Let me connect you with our support team who can better assist you."
AI_ESCALATION_REASON = "AI determined escalation needed"


@dataclass
class AIConfig:
    personality: str = "professional"
    response_length: str = "medium"
    system_prompt: Optional[str] = None
    handoff_triggers: list = field(default_factory=list)
    company_context: Optional[str] = None
    model: str = ""

    @classmethod
    def from_company(cls, company: Company) -> "AIConfig":
        return cls(
            personality=company.ai_personality or "professional",
            response_length=company.ai_response_length or "medium",
            system_prompt=company.ai_system_prompt,
            handoff_triggers=list(company.ai_handoff_triggers or []),
            company_context=company.company_context,
            model=company.selected_ai_model or settings.default_ai_model,
        )


@dataclass
class AttemptState:
    """Everything one completion run has produced so far."""

    started_at: float
    last_progress_at: float
    text_parts: list = field(default_factory=list)
    handle: Optional[str] = None
    status: Optional[RunStatus] = None
    usage: Optional[dict] = None
    escalate: bool = False
    escalation_reason: Optional[str] = None
    pending_tool_call: Optional[ToolCall] = None
    finished: bool = False

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def touch(self) -> None:
        self.last_progress_at = time.monotonic()

    def mark_escalation(self, call: ToolCall) -> None:
        self.escalate = True
        self.escalation_reason = (call.arguments or {}).get("reason") or DEFAULT_ESCALATION_REASON

    def finish(self, status: RunStatus) -> None:
        self.status = status
        self.finished = True

    @property
    def tokens_used(self) -> int:
        return int((self.usage or {}).get("total_tokens") or 0)


@dataclass
class ReplyOutcome:
    text: str
    model: str
    tokens_used: int = 0
    processing_time_ms: int = 0
    thread_id: Optional[str] = None


@dataclass
class HandoffOutcome:
    reason: str
    acknowledgment: Optional[str]
    model: str
    tokens_used: int = 0
    processing_time_ms: int = 0
    thread_id: Optional[str] = None


Outcome = Union[ReplyOutcome, HandoffOutcome]


class StreamStrategy:
    """Primary path: consume stream events until the run finishes."""

    def __init__(self, provider: CompletionProvider, request: CompletionRequest, log: LoggerAdapter):
        self.provider = provider
        self.request = request
        self.log = log

    async def run(self, state: AttemptState) -> None:
        await self._consume(self.provider.stream_completion(self.request), state)
        if state.finished:
            return

        call = state.pending_tool_call
        if call is not None and state.handle:
            state.pending_tool_call = None
            try:
                continuation = self.provider.submit_tool_result(
                    state.handle, call.call_id, {"escalated": True}, self.request
                )
                await self._consume(continuation, state)
            except CompletionError as e:
                # The handoff stands even if the model never gets to acknowledge it.
                self.log.warning(f"Tool result submission failed: {e}")
            state.finish(state.status or RunStatus.COMPLETED)
            return

        if state.status is not None and state.status.is_success:
            state.finish(state.status)

    async def _consume(self, events, state: AttemptState) -> None:
        async for event in events:
            if state.finished:
                return
            state.touch()
            if isinstance(event, TextDelta):
                state.text_parts.append(event.text)
            elif isinstance(event, ToolCall):
                if event.name == ESCALATION_TOOL_NAME:
                    state.mark_escalation(event)
                    state.pending_tool_call = event
                    self.log.info("Escalation tool called", context={"reason": state.escalation_reason})
                else:
                    self.log.warning(f"Ignoring unknown tool call: {event.name}")
            elif isinstance(event, StatusChange):
                if event.handle:
                    state.handle = event.handle
                if event.usage:
                    state.usage = event.usage
                if event.status in (RunStatus.FAILED, RunStatus.CANCELLED):
                    raise TransientGenerationError(f"Run {event.status.value}: {event.error or 'no detail'}")
                state.status = event.status


class PollingStrategy:
    """Fallback path: once the stream stalls, poll the run status directly."""

    def __init__(
        self,
        provider: CompletionProvider,
        log: LoggerAdapter,
        interval_seconds: float,
        stall_seconds: float,
        init_timeout_seconds: float,
    ):
        self.provider = provider
        self.log = log
        self.interval_seconds = interval_seconds
        self.stall_seconds = stall_seconds
        self.init_timeout_seconds = init_timeout_seconds

    async def run(self, state: AttemptState) -> None:
        while not state.finished:
            await asyncio.sleep(self.interval_seconds)
            now = time.monotonic()
            if now - state.last_progress_at < self.stall_seconds:
                continue

            if state.handle is None:
                if now - state.started_at >= self.init_timeout_seconds:
                    raise TransientGenerationError("Stream initialization failed - no events received")
                continue

            snapshot = await self.provider.poll_status(state.handle)
            self.log.debug(f"Polled run status: {snapshot.status.value}")

            if snapshot.status.is_success:
                if snapshot.text:
                    state.text_parts = [snapshot.text]
                for call in snapshot.tool_calls:
                    if call.name == ESCALATION_TOOL_NAME and not state.escalate:
                        state.mark_escalation(call)
                if snapshot.usage:
                    state.usage = snapshot.usage
                state.finish(snapshot.status)
                self.log.info("Run completed via status polling")
                return

            if snapshot.status in (RunStatus.FAILED, RunStatus.CANCELLED):
                raise TransientGenerationError(f"Run {snapshot.status.value} (polled)")


async def await_final_result(state: AttemptState, strategies: list, timeout_seconds: float) -> AttemptState:
    """Run the strategies side by side until one finishes the attempt.

    The first strategy to fail fails the attempt. A strategy that returns
    without finishing leaves the others running. Hitting the hard ceiling is a
    transient failure.
    """
    tasks = [asyncio.create_task(strategy.run(state)) for strategy in strategies]
    deadline = state.started_at + timeout_seconds
    pending = set(tasks)
    try:
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransientGenerationError(f"Stream timeout after {timeout_seconds:g} seconds")
            done, pending = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            if not done:
                raise TransientGenerationError(f"Stream timeout after {timeout_seconds:g} seconds")
            for task in done:
                error = task.exception()
                if error is not None:
                    raise error
            if state.finished:
                return state
        raise TransientGenerationError("Completion ended without a result")
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def build_history(messages: list[Message], thread_id: Optional[str]) -> list[dict]:
    """Model input from the local message log.

    With a live thread handle only messages after the last AI reply are sent;
    without one the recent history is replayed. A customer message written
    while the previous reply was being generated sorts before that reply, so
    when nothing new follows it the latest customer message is sent alone.
    """
    if thread_id:
        last_ai = max((i for i, m in enumerate(messages) if m.role == MessageRole.AI.value), default=-1)
        tail = messages[last_ai + 1:]
        if not any(m.role == MessageRole.CUSTOMER.value for m in tail):
            customers = [m for m in messages if m.role == MessageRole.CUSTOMER.value]
            tail = tail + customers[-1:]
        messages = tail

    history = []
    for message in messages:
        if message.role == MessageRole.CUSTOMER.value:
            history.append({"role": "user", "content": message.content})
        elif message.role == MessageRole.AI.value:
            history.append({"role": "assistant", "content": message.content})
        elif message.role == MessageRole.AGENT.value:
            name = message.sender_name or "Support staff"
            history.append({"role": "assistant", "content": f"[{name}] {message.content}"})
    return history


class ResponseOrchestrator:
    def __init__(
        self,
        provider: CompletionProvider,
        stream_timeout_seconds: Optional[float] = None,
        stall_seconds: Optional[float] = None,
        init_timeout_seconds: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        self.provider = provider
        self.stream_timeout_seconds = stream_timeout_seconds or settings.stream_timeout_seconds
        self.stall_seconds = stall_seconds or settings.stream_stall_seconds
        self.init_timeout_seconds = init_timeout_seconds or settings.stream_init_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds or settings.poll_interval_seconds

    def build_request(self, config: AIConfig, history: list[dict], thread_id: Optional[str]) -> CompletionRequest:
        return CompletionRequest(
            model=config.model or settings.default_ai_model,
            instructions=build_instructions(
                config.personality,
                config.response_length,
                config.system_prompt,
                config.company_context,
                config.handoff_triggers,
            ),
            messages=history,
            max_output_tokens=get_token_limit(config.response_length),
            tools=[ESCALATION_TOOL],
            previous_response_id=thread_id,
        )

    async def generate(
        self,
        config: AIConfig,
        customer_message: str,
        history: list[dict],
        log: LoggerAdapter,
        thread_id: Optional[str] = None,
    ) -> Outcome:
        request = self.build_request(config, history, thread_id)
        started = time.monotonic()
        state = AttemptState(started_at=started, last_progress_at=started)

        strategies = [
            StreamStrategy(self.provider, request, log),
            PollingStrategy(
                self.provider,
                log,
                interval_seconds=self.poll_interval_seconds,
                stall_seconds=self.stall_seconds,
                init_timeout_seconds=self.init_timeout_seconds,
            ),
        ]
        await await_final_result(state, strategies, self.stream_timeout_seconds)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "AI run finished",
            context={"status": state.status.value, "tokens": state.tokens_used, "processing_time_ms": elapsed_ms},
        )

        reason = None
        if state.escalate:
            reason = state.escalation_reason
        else:
            phrase = match_customer_trigger(customer_message, config.handoff_triggers)
            if phrase:
                reason = f'Customer message matched handoff trigger: "{phrase}"'
            elif ai_requests_escalation(state.text):
                reason = AI_ESCALATION_REASON

        if reason:
            acknowledgment = ESCALATION_ACK_FALLBACK
            if state.text.strip():
                acknowledgment = sanitize_ai_response(state.text, log)
                if acknowledgment == EMPTY_REPLY_FALLBACK:
                    acknowledgment = ESCALATION_ACK_FALLBACK
            return HandoffOutcome(
                reason=reason,
                acknowledgment=acknowledgment,
                model=request.model,
                tokens_used=state.tokens_used,
                processing_time_ms=elapsed_ms,
                thread_id=state.handle,
            )

        return ReplyOutcome(
            text=sanitize_ai_response(state.text, log),
            model=request.model,
            tokens_used=state.tokens_used,
            processing_time_ms=elapsed_ms,
            thread_id=state.handle,
        )


async def apply_outcome(
    store: ConversationStore,
    notifier: NotificationSender,
    conversation_id: UUID,
    attempt_id: str,
    outcome: Outcome,
    log: LoggerAdapter,
    answered_message_id: Optional[UUID] = None,
) -> bool:
    """Persist an outcome if this attempt still owns the conversation.

    Ownership is re-checked with a conditional write; a conversation that left
    ai_handling or moved on to another attempt is not touched. The answered
    customer message is recorded in the same write.
    """
    fields = {"external_thread_id": outcome.thread_id}
    if answered_message_id is not None:
        fields["last_answered_message_id"] = answered_message_id
    owned = store.patch_conversation_if(
        conversation_id,
        {"status": ConversationStatus.AI_HANDLING.value, "ai_attempt_id": attempt_id},
        **fields,
    )
    if not owned:
        store.rollback()
        log.info("Discarding AI outcome, conversation no longer owned by this attempt")
        return False

    conversation = store.get_conversation(conversation_id)
    text = outcome.text if isinstance(outcome, ReplyOutcome) else outcome.acknowledgment
    if text:
        conversation_service.save_message(
            store,
            conversation,
            MessageRole.AI,
            text,
            ai_model=outcome.model,
            tokens_used=outcome.tokens_used,
            processing_time_ms=outcome.processing_time_ms,
        )

    if isinstance(outcome, HandoffOutcome):
        if conversation_service.hand_off(store, conversation, outcome.reason, attempt_id=attempt_id) is None:
            log.info("Discarding AI handoff, conversation changed while it was applied")
            return False
        log.info("AI handed conversation to support staff", context={"reason": outcome.reason})
        await notify_support_agents(
            store,
            notifier,
            conversation,
            "New customer needs help",
            f"A customer needs assistance: {outcome.reason}",
        )
    else:
        store.commit()

    if text:
        await track_ai_response(store, notifier, conversation.tenant_id)
    return True
