"""
Error classes for reshard phases.

Every error carries a `kind` used for escalation and diagnostics:

- collaborator_error: an external interface call failed
- ambiguous_state: more than one artifact claims the same plan
- remote_execution_failure: non-zero exit, or transport failure before progress
- protocol_violation: malformed progress message, or one after the terminal message
- stall_timeout: the remote script stopped reporting progress
- convergence_failure: an instance did not pick up the desired configuration
- paused: not a failure; the phase suspends until resumed

Errors chain the way the operator reads them: `full_message()` renders
"outer: inner: root" so a held phase explains itself.
"""

from typing import Any, Dict, Optional


class ReshardError(Exception):
    """Base exception for reshard phases."""

    kind = "collaborator_error"

    # Holding is mandatory when this is set, whatever side effects occurred
    requires_operator = False

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        info: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.info = dict(info or {})
        if cause is not None:
            self.__cause__ = cause

    def full_message(self) -> str:
        """Render this error and its cause chain as one line."""
        return full_message(self)


class CollaboratorError(ReshardError):
    """A collaborator call (SAPI, IMGAPI, exec, Redis) failed."""
    kind = "collaborator_error"


class TransportTimeout(CollaboratorError):
    """The remote execution call exceeded its transport budget.

    Says nothing about the script itself, which may still be running.
    """
    kind = "transport_timeout"


class AmbiguousStateError(ReshardError):
    kind = "ambiguous_state"
    requires_operator = True


class RemoteExecutionError(ReshardError):
    kind = "remote_execution_failure"


class ProtocolViolation(ReshardError):
    kind = "protocol_violation"


class StallTimeout(ReshardError):
    kind = "stall_timeout"


class ConvergenceFailure(ReshardError):
    kind = "convergence_failure"


class ItemRetriesExhausted(ReshardError):
    """A fan-out item failed on every attempt of its retry budget."""

    def __init__(self, item: str, attempts: int, cause: BaseException):
        super().__init__(
            f"{item} failed after {attempts} attempts",
            cause=cause,
            info={"item": item, "attempts": attempts}
        )
        self.item = item
        self.attempts = attempts
        self.kind = getattr(cause, "kind", ReshardError.kind)


class PhaseFailure(ReshardError):
    """Outermost wrapper reported to the plan controller."""

    def __init__(
        self,
        message: str,
        cause: BaseException,
        info: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, cause=cause, info=info)
        self.kind = getattr(cause, "kind", ReshardError.kind)


class PhasePaused(ReshardError):
    """Raised at a step boundary when the plan is paused."""
    kind = "paused"


def full_message(err: BaseException) -> str:
    parts = []
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        parts.append(getattr(err, "message", None) or str(err) or type(err).__name__)
        err = err.__cause__
    return ": ".join(parts)
