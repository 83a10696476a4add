"""Collection attempt and charge state machines enforced by the engine."""

ATTEMPT_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"PROCESSING", "CANCELED"},
    # PROCESSING -> PENDING only when a presentment file could not be built or stored.
    "PROCESSING": {"PAID", "REJECTED", "CANCELED", "PENDING"},
    "PAID": set(),
    "REJECTED": set(),
    "CANCELED": set(),
}

CHARGE_TRANSITIONS: dict[str, set[str]] = {
    "READY": {"PENDING", "PROCESSING"},
    "PENDING": {"PROCESSING"},
    "PROCESSING": {"PAID", "PAST_DUE"},
    "PAST_DUE": {"PAID"},
    "PAID": set(),
}

ATTEMPT_TERMINAL_STATES = frozenset(state for state, targets in ATTEMPT_TRANSITIONS.items() if not targets)
ATTEMPT_OPEN_STATES = frozenset(ATTEMPT_TRANSITIONS) - ATTEMPT_TERMINAL_STATES


def validate_attempt_transition(current: str, new: str) -> None:
    """Raise when an attempt transition is not allowed."""

    if new not in ATTEMPT_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid attempt transition: {current} -> {new}")


def validate_charge_transition(current: str, new: str) -> None:
    """Raise when a charge transition is not allowed."""

    if new not in CHARGE_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid charge transition: {current} -> {new}")
