from enum import Enum


class ConversationStatus(str, Enum):
    AI_HANDLING = "ai_handling"
    AVAILABLE = "available"
    SUPPORT_STAFF_HANDLING = "support_staff_handling"
    RESOLVED = "resolved"


class MessageRole(str, Enum):
    CUSTOMER = "customer"
    AI = "ai"
    AGENT = "agent"
    SYSTEM = "system"


class SystemMessageType(str, Enum):
    HANDOFF = "handoff"
    AGENT_JOINED = "agent_joined"
    AGENT_LEFT = "agent_left"
    ISSUE_RESOLVED = "issue_resolved"


VALID_TRANSITIONS = {
    ConversationStatus.AI_HANDLING: [
        ConversationStatus.AVAILABLE,
        ConversationStatus.SUPPORT_STAFF_HANDLING,
        ConversationStatus.RESOLVED,
    ],
    ConversationStatus.AVAILABLE: [
        ConversationStatus.SUPPORT_STAFF_HANDLING,
        ConversationStatus.RESOLVED,
    ],
    ConversationStatus.SUPPORT_STAFF_HANDLING: [
        ConversationStatus.AVAILABLE,
        ConversationStatus.AI_HANDLING,
        ConversationStatus.RESOLVED,
    ],
    ConversationStatus.RESOLVED: [
        ConversationStatus.AI_HANDLING,
        ConversationStatus.SUPPORT_STAFF_HANDLING,
    ],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(ConversationStatus(from_status), [])
    return ConversationStatus(to_status) in allowed


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    from_status = ConversationStatus(from_status)
    to_status = ConversationStatus(to_status)
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def transition_fields(from_status: ConversationStatus, to_status: ConversationStatus) -> dict:
    """Column values a transition must write together with the new status.

    Leaving ai_handling always drops the processing flag and attempt identity,
    so an in-flight AI job can never apply its result afterwards. Only
    support_staff_handling keeps participating agents and only available
    keeps a handoff reason.
    """
    to_status = transition(from_status, to_status)
    fields = {"status": to_status.value}
    if to_status != ConversationStatus.AI_HANDLING:
        fields["ai_processing"] = False
        fields["ai_processing_started_at"] = None
        fields["ai_attempt_id"] = None
    if to_status != ConversationStatus.SUPPORT_STAFF_HANDLING:
        fields["participating_agents"] = []
    if to_status != ConversationStatus.AVAILABLE:
        fields["handoff_reason"] = None
    return fields
