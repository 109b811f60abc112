"""Quest Progress State Machine Guard.

Uses python-statemachine to enforce legal progress transitions at the domain
level. ProgressRecorder validates the transition here before it issues the
upsert, so no code path can write a status the table below does not allow.

Transition table:
    locked     -> available   (unlock)
    locked     -> completed   (complete)
    available  -> completed   (complete)
    completed  -> completed   (complete, re-verification refreshes metadata)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from quest_trust.domain.exceptions import InvalidStateTransitionError

PROGRESS_EVENTS = frozenset({"unlock", "complete"})


class ProgressStateMachine(StateMachine):
    """State machine that guards a user's progress on a single quest.

    Usage:
        sm = ProgressStateMachine(current_status="available")
        sm.complete()
        sm.status  # "completed"
    """

    # --- States ---
    LOCKED = State("Locked", value="locked", initial=True)
    AVAILABLE = State("Available", value="available")
    COMPLETED = State("Completed", value="completed")

    # --- Events / Transitions ---
    unlock = LOCKED.to(AVAILABLE)
    complete = LOCKED.to(COMPLETED) | AVAILABLE.to(COMPLETED) | COMPLETED.to.itself()

    def __init__(self, current_status: str = "locked") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current ProgressStatus value (e.g., "available").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value (matches ProgressStatus)."""
        return str(self.current_state_value)


def validate_transition(current_status: str, event_name: str) -> str:
    """Fire ``event_name`` from ``current_status`` and return the new status.

    Raises:
        InvalidStateTransitionError: If the event is unknown or not allowed
            from the current status.
        ValueError: If the status is unknown.
    """
    sm = ProgressStateMachine(current_status=current_status)

    if event_name not in PROGRESS_EVENTS:
        raise InvalidStateTransitionError(current_status, event_name)

    try:
        getattr(sm, event_name)()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(current_status, event_name) from err
    return sm.status
