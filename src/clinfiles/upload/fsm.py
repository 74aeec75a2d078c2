"""Upload attempt finite state machine.

Each attempt to send one staged file gets its own FSM instance.  The
coordinator drives it as phases complete; an illegal transition raises
``TransitionNotAllowed`` which guards against skipping or reordering
phases.  A retry builds a fresh machine rather than leaving a terminal
state.

The FSM holds no side effects and no callbacks -- progress reporting is
done by the coordinator after each transition.
"""

from __future__ import annotations

from statemachine import State, StateMachine

from clinfiles.models import UploadState


class UploadAttemptSM(StateMachine):
    """Seven-state lifecycle of one three-phase upload attempt.

    States:
        queued          -- Staged, nothing sent yet.
        requesting_slot -- Waiting for the backend to issue a transfer slot.
        transferring    -- PUT to the pre-signed URL in flight.
        confirming      -- Registration call in flight.
        succeeded       -- Durable record created.
        failed          -- A phase failed; see the outcome for which one.
        cancelled       -- User abort observed between phases.

    Terminal states are ``final=True`` and have no outgoing transitions.
    """

    queued = State("Queued", initial=True, value=UploadState.QUEUED.value)
    requesting_slot = State("RequestingSlot", value=UploadState.REQUESTING_SLOT.value)
    transferring = State("Transferring", value=UploadState.TRANSFERRING.value)
    confirming = State("Confirming", value=UploadState.CONFIRMING.value)
    succeeded = State("Succeeded", final=True, value=UploadState.SUCCEEDED.value)
    failed = State("Failed", final=True, value=UploadState.FAILED.value)
    cancelled = State("Cancelled", final=True, value=UploadState.CANCELLED.value)

    request_slot = queued.to(requesting_slot)
    start_transfer = requesting_slot.to(transferring)
    start_confirmation = transferring.to(confirming)
    complete = confirming.to(succeeded)
    fail = (
        requesting_slot.to(failed)
        | transferring.to(failed)
        | confirming.to(failed)
    )
    abort = (
        queued.to(cancelled)
        | requesting_slot.to(cancelled)
        | transferring.to(cancelled)
    )

    @property
    def upload_state(self) -> UploadState:
        return UploadState(self.current_state.value)

    @property
    def is_terminal(self) -> bool:
        return self.current_state.final


def create_fsm(current_state: str | UploadState = UploadState.QUEUED) -> UploadAttemptSM:
    """Create an FSM positioned at *current_state*.

    Args:
        current_state: Any :class:`UploadState` value; defaults to ``queued``.
    """
    return UploadAttemptSM(start_value=UploadState(current_state).value)
