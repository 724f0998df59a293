"""Payment order state machine enforced by the orchestrator."""

CREATED = "created"
AUTHORIZED = "authorized"
CAPTURED = "captured"
VERIFIED = "verified"
FAILED = "failed"

TERMINAL_STATES: frozenset[str] = frozenset({AUTHORIZED, CAPTURED, VERIFIED, FAILED})

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    CREATED: {AUTHORIZED, CAPTURED, VERIFIED, FAILED},
    AUTHORIZED: set(),
    CAPTURED: set(),
    VERIFIED: set(),
    FAILED: set(),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
