import pytest
from supportdesk.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    transition,
    transition_fields,
)


class TestValidTransitions:
    def test_ai_handling_to_available(self):
        result = transition(ConversationStatus.AI_HANDLING, ConversationStatus.AVAILABLE)
        assert result == ConversationStatus.AVAILABLE

    def test_ai_handling_to_support_staff(self):
        result = transition(ConversationStatus.AI_HANDLING, ConversationStatus.SUPPORT_STAFF_HANDLING)
        assert result == ConversationStatus.SUPPORT_STAFF_HANDLING

    def test_available_to_support_staff(self):
        result = transition(ConversationStatus.AVAILABLE, ConversationStatus.SUPPORT_STAFF_HANDLING)
        assert result == ConversationStatus.SUPPORT_STAFF_HANDLING

    def test_support_staff_back_to_ai(self):
        result = transition(ConversationStatus.SUPPORT_STAFF_HANDLING, ConversationStatus.AI_HANDLING)
        assert result == ConversationStatus.AI_HANDLING

    def test_support_staff_back_to_queue(self):
        result = transition(ConversationStatus.SUPPORT_STAFF_HANDLING, ConversationStatus.AVAILABLE)
        assert result == ConversationStatus.AVAILABLE

    def test_resolved_reopens_to_ai(self):
        result = transition(ConversationStatus.RESOLVED, ConversationStatus.AI_HANDLING)
        assert result == ConversationStatus.AI_HANDLING

    def test_accepts_plain_strings(self):
        assert transition("resolved", "support_staff_handling") == ConversationStatus.SUPPORT_STAFF_HANDLING


class TestInvalidTransitions:
    def test_available_to_ai_handling(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStatus.AVAILABLE, ConversationStatus.AI_HANDLING)

    def test_resolved_to_available(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStatus.RESOLVED, ConversationStatus.AVAILABLE)

    @pytest.mark.parametrize("status", list(ConversationStatus))
    def test_same_state(self, status):
        assert can_transition(status, status) is False
        with pytest.raises(InvalidTransitionError):
            transition(status, status)

    def test_error_names_both_states(self):
        with pytest.raises(InvalidTransitionError) as exc:
            transition(ConversationStatus.RESOLVED, ConversationStatus.AVAILABLE)
        assert exc.value.from_status == ConversationStatus.RESOLVED
        assert "resolved -> available" in str(exc.value)


class TestTransitionFields:
    def test_leaving_ai_handling_clears_processing(self):
        fields = transition_fields(ConversationStatus.AI_HANDLING, ConversationStatus.AVAILABLE)

        assert fields["status"] == "available"
        assert fields["ai_processing"] is False
        assert fields["ai_processing_started_at"] is None
        assert fields["ai_attempt_id"] is None
        assert fields["participating_agents"] == []
        assert "handoff_reason" not in fields

    def test_entering_ai_handling_keeps_processing_columns(self):
        fields = transition_fields(ConversationStatus.SUPPORT_STAFF_HANDLING, ConversationStatus.AI_HANDLING)

        assert "ai_processing" not in fields
        assert fields["participating_agents"] == []
        assert fields["handoff_reason"] is None

    def test_staff_handling_keeps_participants(self):
        fields = transition_fields(ConversationStatus.AVAILABLE, ConversationStatus.SUPPORT_STAFF_HANDLING)

        assert "participating_agents" not in fields
        assert fields["handoff_reason"] is None

    def test_invalid_transition_raises(self):
        with pytest.raises(InvalidTransitionError):
            transition_fields(ConversationStatus.AVAILABLE, ConversationStatus.AVAILABLE)
