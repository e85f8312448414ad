import pytest

from supportbot.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    close,
    hand_off,
    transition,
)


class TestValidTransitions:
    def test_active_to_handoff(self):
        assert transition(ConversationStatus.ACTIVE, ConversationStatus.HANDOFF) == ConversationStatus.HANDOFF

    def test_paused_to_active(self):
        assert transition(ConversationStatus.PAUSED, ConversationStatus.ACTIVE) == ConversationStatus.ACTIVE

    def test_handoff_to_closed(self):
        assert transition(ConversationStatus.HANDOFF, ConversationStatus.CLOSED) == ConversationStatus.CLOSED


class TestInvalidTransitions:
    def test_handoff_never_returns_to_active(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStatus.HANDOFF, ConversationStatus.ACTIVE)

    def test_closed_is_terminal(self):
        for status in ConversationStatus:
            assert can_transition(ConversationStatus.CLOSED, status) is False

    def test_same_status(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStatus.ACTIVE, ConversationStatus.ACTIVE)

    def test_error_carries_statuses(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            hand_off(ConversationStatus.CLOSED)
        assert exc_info.value.from_status == ConversationStatus.CLOSED
        assert exc_info.value.to_status == ConversationStatus.HANDOFF


class TestHelperFunctions:
    def test_hand_off(self):
        assert hand_off(ConversationStatus.ACTIVE) == ConversationStatus.HANDOFF

    def test_close_from_paused(self):
        assert close(ConversationStatus.PAUSED) == ConversationStatus.CLOSED
