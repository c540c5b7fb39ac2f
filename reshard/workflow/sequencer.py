"""
Idempotent Phase Sequencer

Runs the steps of a phase strictly in declared order over one mutable
context. Steps marked as work are skipped once the context knows the
phase's artifact, so rerunning a phase that already produced its artifact
goes straight to verification; that guard is evaluated per step, which
makes a full rerun after a partial failure safe.

The plan's pause flag is checked before every step until the attempt has
had a side effect. From then on the sequence runs to its end so whatever it created is
finished and cleaned up; a pause set meanwhile is honoured at the next
phase boundary.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from reshard.errors import PhasePaused
from reshard.workflow.controller import PhaseController
from reshard.workflow.escalation import EscalationPolicy

logger = logging.getLogger(__name__)


class PhaseContext:
    """
    Cross-step mutable state of one phase attempt.

    Subclasses add phase-specific fields; `artifact_id` is the one the
    sequencer itself reads.
    """

    def __init__(self, escalation: Optional[EscalationPolicy] = None):
        self.artifact_id: Optional[str] = None
        self.escalation = escalation or EscalationPolicy()

    @property
    def artifact_known(self) -> bool:
        return self.artifact_id is not None


StepFunc = Callable[[PhaseContext], Awaitable[None]]


class Step:
    """One named step of a phase."""

    def __init__(self, name: str, func: StepFunc, work: bool = False):
        """
        Args:
            name: Step name for logs
            func: Async function receiving the phase context
            work: Skip this step when the artifact is already known
        """
        self.name = name
        self.func = func
        self.work = work

    def __repr__(self):
        return f"<Step {self.name}{' (work)' if self.work else ''}>"


class PhaseSequencer:
    """Executes steps in order; the first error stops the sequence."""

    def __init__(self, ctl: PhaseController, steps: List[Step]):
        self.ctl = ctl
        self.steps = steps
        self.completed: List[str] = []
        self.skipped: List[str] = []
        self.deferred_pause = False

    async def run(self, context: PhaseContext) -> None:
        """
        Raises:
            PhasePaused: The plan was paused at a step boundary before any
                side effect
            Exception: Whatever the failing step raised
        """
        for step in self.steps:
            if context.escalation.hold_eligible:
                if not self.deferred_pause and await self.ctl.is_paused():
                    logger.info(f"⏸️  Pause deferred at step {step.name}: side effect in progress")
                    self.deferred_pause = True
            elif await self.ctl.is_paused():
                logger.info(f"⏸️  Paused before step {step.name}")
                raise PhasePaused(f"paused before step {step.name}")

            if step.work and context.artifact_known:
                logger.info(f"⏭️  Skipping step {step.name}: artifact {context.artifact_id} already known")
                self.skipped.append(step.name)
                continue

            logger.debug(f"▶️  Step {step.name}")
            await step.func(context)
            self.completed.append(step.name)
