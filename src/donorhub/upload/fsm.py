"""Upload task finite state machine.

Each :class:`~donorhub.upload.task.UploadTask` owns one instance.  The FSM
only validates that a transition is legal; the task driver decides which
event to send and performs all I/O.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class UploadTaskSM(StateMachine):
    """Six-state lifecycle of one file's trip to object storage.

    States:
        validating       -- Local size/type checks (initial).
        requesting_grant -- Waiting for a write grant from the origin.
        transferring     -- Bytes in flight to storage.
        confirming       -- Bytes stored, origin being told about them.
        completed        -- Origin returned the canonical public URL.
        failed           -- A step failed; see the task's ``last_error``.

    ``completed`` is final. ``failed`` is not, since retry leaves it.
    """

    validating = State("validating", initial=True, value="validating")
    requesting_grant = State("requesting_grant", value="requesting_grant")
    transferring = State("transferring", value="transferring")
    confirming = State("confirming", value="confirming")
    completed = State("completed", value="completed", final=True)
    failed = State("failed", value="failed")

    validated = validating.to(requesting_grant)
    grant_received = requesting_grant.to(transferring)
    transfer_finished = transferring.to(confirming)
    confirmed = confirming.to(completed)
    fail = (
        validating.to(failed)
        | requesting_grant.to(failed)
        | transferring.to(failed)
        | confirming.to(failed)
    )
    retry_grant = failed.to(requesting_grant)
    retry_confirmation = failed.to(confirming)


def create_fsm(current_state: str = "validating") -> UploadTaskSM:
    """Create an FSM positioned at *current_state*."""
    return UploadTaskSM(start_value=current_state)
