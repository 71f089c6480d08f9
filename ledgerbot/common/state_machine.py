"""Status transitions for approval requests and outbox items."""

APPROVAL_PENDING = "PENDING"
APPROVAL_APPROVED = "APPROVED"
APPROVAL_REJECTED = "REJECTED"

OUTBOX_PENDING = "PENDING"
OUTBOX_SENT = "SENT"
OUTBOX_FAILED = "FAILED"

APPROVAL_TRANSITIONS: dict[str, set[str]] = {
    APPROVAL_PENDING: {APPROVAL_APPROVED, APPROVAL_REJECTED},
    APPROVAL_APPROVED: set(),
    APPROVAL_REJECTED: set(),
}

# FAILED -> PENDING is the re-claim for a retry attempt.
OUTBOX_TRANSITIONS: dict[str, set[str]] = {
    OUTBOX_PENDING: {OUTBOX_SENT, OUTBOX_FAILED},
    OUTBOX_FAILED: {OUTBOX_PENDING},
    OUTBOX_SENT: set(),
}


def validate_transition(current: str, new: str, transitions: dict[str, set[str]] = APPROVAL_TRANSITIONS) -> None:
    """Raise when a transition is not allowed by the given state machine."""

    if new not in transitions.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def is_terminal(status: str, transitions: dict[str, set[str]] = APPROVAL_TRANSITIONS) -> bool:
    return not transitions.get(status, set())
