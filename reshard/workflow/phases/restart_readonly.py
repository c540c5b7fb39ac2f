"""
Phase: Restart Electric Moray Read-Only

Restarts every routing-tier instance, about a third at a time, so each picks
up an index map in which both the old and the new shard are read-only. An
instance that comes back without both shards read-only is restarted again
after the retry delay. Every failure of this phase is retried: restarting an
instance is naturally idempotent.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from reshard.config import ReshardConfig
from reshard.errors import PhasePaused
from reshard.workflow.controller import PhaseController
from reshard.workflow.convergence import RollingRestart, describe_shards, shards_are_read_only
from reshard.workflow.escalation import EscalationPolicy
from reshard.workflow.phases.phase_executor import ReshardPhase
from reshard.workflow.phases.registry import register_phase

logger = logging.getLogger(__name__)


@register_phase("restart_electric_moray_readonly", "Restart Electric Moray (read-only)")
class RestartElectricMorayReadonlyPhase(ReshardPhase):

    def __init__(
        self,
        ctl: PhaseController,
        escalation: Optional[EscalationPolicy] = None,
        routing_service_name: str = ReshardConfig.ROUTING_SERVICE_NAME,
        retry_delay: float = ReshardConfig.RESTART_RETRY_DELAY,
        max_attempts: int = ReshardConfig.RESTART_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(ctl, escalation)
        shards = [self.plan.shard, self.plan.new_shard]
        self.restart = RollingRestart(
            ctl,
            routing_service_name,
            predicate=lambda index_map: shards_are_read_only(index_map, shards),
            describe=lambda index_map: describe_shards(index_map, shards),
            retry_delay=retry_delay,
            max_attempts=max_attempts,
            sleep=sleep,
        )

    async def execute(self) -> None:
        if await self.ctl.is_paused():
            raise PhasePaused("paused before listing instances")

        await self.restart.run(self.status)
