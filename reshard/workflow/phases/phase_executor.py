"""
Reshard Phase Base Class

Every phase runs one step of a resharding plan against a PhaseController.
`run()` is the single outermost completion boundary: every error raised by
`execute()` ends up here, is wrapped with the phase's diagnostics, classified
by the escalation policy and reported exactly once.

Usage:
    @register_phase("remap_ring", "Remap Hash Ring")
    class RemapRingPhase(ReshardPhase):
        async def execute(self) -> None:
            ...
"""

import logging
from abc import ABC, abstractmethod
from typing import ClassVar, Optional

from reshard.errors import PhaseFailure, PhasePaused, full_message
from reshard.workflow.controller import PhaseController
from reshard.workflow.escalation import EscalationPolicy
from reshard.workflow.models import PhaseOutcome

logger = logging.getLogger(__name__)


class ReshardPhase(ABC):
    """
    Base class for reshard phases.

    Subclasses MUST define:
    - `async def execute(self) -> None` - do the work, persist output properties

    Subclasses MAY override:
    - `describe_failure(error)` - wrap an error with phase diagnostics
    """

    # Set by @register_phase decorator
    phase_id: ClassVar[str] = ""
    phase_name: ClassVar[str] = ""

    def __init__(self, ctl: PhaseController, escalation: Optional[EscalationPolicy] = None):
        """
        Args:
            ctl: Controller for this plan and phase attempt
            escalation: Hold latch for this attempt (fresh by default)
        """
        self.ctl = ctl
        self.plan = ctl.plan()
        self.status = ctl.status()
        self.escalation = escalation or EscalationPolicy()

    @abstractmethod
    async def execute(self) -> None:
        """Run the phase; raise on failure."""
        pass

    def describe_failure(self, error: BaseException) -> PhaseFailure:
        return PhaseFailure(self.phase_name or self.phase_id, cause=error)

    async def run(self) -> PhaseOutcome:
        """
        Execute the phase and report its outcome to the controller.

        Returns:
            The reported outcome; PAUSED when the plan was paused, in which
            case nothing is reported
        """
        logger.info(f"▶️  Plan {self.plan.uuid}: starting phase {self.phase_id}")

        try:
            await self.execute()
        except PhasePaused as e:
            logger.info(f"⏸️  Plan {self.plan.uuid}: phase {self.phase_id} paused ({e.message})")
            return PhaseOutcome.PAUSED
        except Exception as e:
            failure = self.describe_failure(e)
            outcome = self.escalation.classify(e)

            if outcome == PhaseOutcome.HOLD:
                if self.escalation.reason:
                    failure.info.setdefault("hold_reason", self.escalation.reason)
                await self.ctl.report_hold(failure)
            else:
                await self.ctl.report_retry(failure)

            logger.debug(f"Phase {self.phase_id} failure chain: {full_message(failure)}")
            return outcome

        await self.ctl.report_finished()
        return PhaseOutcome.FINISHED
