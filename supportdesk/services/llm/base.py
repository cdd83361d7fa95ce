from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, List, Optional, Union


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.INCOMPLETE, RunStatus.FAILED, RunStatus.CANCELLED)

    @property
    def is_success(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.INCOMPLETE)


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCall:
    call_id: str
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass
class StatusChange:
    status: RunStatus
    handle: Optional[str] = None
    usage: Optional[dict] = None
    error: Optional[str] = None


StreamEvent = Union[TextDelta, ToolCall, StatusChange]


@dataclass
class CompletionRequest:
    model: str
    instructions: str
    messages: List[dict]
    max_output_tokens: int = 500
    tools: List[dict] = field(default_factory=list)
    previous_response_id: Optional[str] = None


@dataclass
class RunSnapshot:
    status: RunStatus
    text: str = ""
    usage: Optional[dict] = None
    tool_calls: List[ToolCall] = field(default_factory=list)


class CompletionError(Exception):
    """Base class for completion service failures."""


class TransientGenerationError(CompletionError):
    """Worth retrying: timeouts, dropped streams, 5xx, 429."""


class FatalGenerationError(CompletionError):
    """Retrying will not help: bad request, auth, unknown model."""


class StaleThreadError(TransientGenerationError):
    """The stored conversation handle is no longer accepted upstream."""


class CompletionProvider(ABC):
    """Abstract base class for streaming completion services."""

    @abstractmethod
    def stream_completion(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Start a run and yield its events as they arrive."""
        pass

    @abstractmethod
    async def poll_status(self, handle: str) -> RunSnapshot:
        """Fetch the current state of a run, including its text once finished."""
        pass

    @abstractmethod
    def submit_tool_result(
        self,
        handle: str,
        tool_call_id: str,
        payload: dict,
        request: CompletionRequest,
    ) -> AsyncIterator[StreamEvent]:
        """Answer a tool call and yield the events of the continued run."""
        pass
