"""
Failure Escalation Policy

Decides, once, at the outermost failure boundary of a phase, whether a
failure may be retried automatically or must wait for an operator:

- hold: a side effect with unclear recovery state has occurred (for example a
  workspace exists on a remote target but its artifact was never verified),
  or the error itself demands an operator (ambiguous artifact state)
- retry: everything else; the phase reruns from the top and relies on its
  idempotency check
- paused: the plan was paused; nothing is reported as a failure
"""

import logging
from typing import Optional

from reshard.errors import PhasePaused
from reshard.workflow.models import PhaseOutcome

logger = logging.getLogger(__name__)


class EscalationPolicy:
    """
    Hold latch for one phase attempt.

    Set at the first side-effecting step; never cleared within the attempt.
    """

    def __init__(self):
        self._hold_eligible = False
        self._reason: Optional[str] = None

    @property
    def hold_eligible(self) -> bool:
        return self._hold_eligible

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def mark_side_effect(self, reason: str) -> None:
        if self._hold_eligible:
            return

        self._hold_eligible = True
        self._reason = reason
        logger.info(f"Failures from here on hold for an operator: {reason}")

    def classify(self, error: BaseException) -> PhaseOutcome:
        if isinstance(error, PhasePaused):
            return PhaseOutcome.PAUSED

        if self._hold_eligible or getattr(error, "requires_operator", False):
            return PhaseOutcome.HOLD

        return PhaseOutcome.RETRY
