from enum import Enum


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


VALID_TRANSITIONS = {
    ConversationStatus.ACTIVE: [ConversationStatus.ESCALATED, ConversationStatus.RESOLVED],
    # escalated -> escalated refreshes the escalation reason
    ConversationStatus.ESCALATED: [
        ConversationStatus.ESCALATED,
        ConversationStatus.ACTIVE,
        ConversationStatus.RESOLVED,
    ],
    ConversationStatus.RESOLVED: [],
}

# Statuses that still accept new turns.
OPEN_STATUSES = (ConversationStatus.ACTIVE.value, ConversationStatus.ESCALATED.value)


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def escalate(current: ConversationStatus) -> ConversationStatus:
    return transition(current, ConversationStatus.ESCALATED)


def resolve(current: ConversationStatus) -> ConversationStatus:
    return transition(current, ConversationStatus.RESOLVED)


def reopen(current: ConversationStatus) -> ConversationStatus:
    """Hand an escalated conversation back to the bot."""
    return transition(current, ConversationStatus.ACTIVE)
