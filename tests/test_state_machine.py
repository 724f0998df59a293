"""Unit tests for payment order state-machine guardrails."""

import pytest

from payrail.common.state_machine import TERMINAL_STATES, is_terminal, validate_transition


def test_valid_transition():
    """Sanity check: a legal transition should pass."""

    validate_transition("created", "verified")


@pytest.mark.parametrize("target", sorted(TERMINAL_STATES))
def test_created_reaches_every_terminal_state(target):
    validate_transition("created", target)
    assert is_terminal(target)


def test_invalid_transition():
    """Illegal transition must raise to protect orchestration correctness."""

    with pytest.raises(ValueError):
        validate_transition("created", "settled")


def test_terminal_states_are_final():
    """A terminal order never moves again, not even to another terminal state."""

    with pytest.raises(ValueError):
        validate_transition("captured", "failed")
    with pytest.raises(ValueError):
        validate_transition("verified", "verified")
    assert not is_terminal("created")
