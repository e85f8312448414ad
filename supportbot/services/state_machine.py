from enum import Enum


class ConversationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    HANDOFF = "HANDOFF"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"


# HANDOFF never returns to ACTIVE.
VALID_TRANSITIONS = {
    ConversationStatus.ACTIVE: [ConversationStatus.HANDOFF, ConversationStatus.PAUSED, ConversationStatus.CLOSED],
    ConversationStatus.PAUSED: [ConversationStatus.ACTIVE, ConversationStatus.CLOSED],
    ConversationStatus.HANDOFF: [ConversationStatus.CLOSED],
    ConversationStatus.CLOSED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def hand_off(current_status: ConversationStatus) -> ConversationStatus:
    """Hand the conversation over to a human agent."""
    return transition(current_status, ConversationStatus.HANDOFF)


def close(current_status: ConversationStatus) -> ConversationStatus:
    return transition(current_status, ConversationStatus.CLOSED)
