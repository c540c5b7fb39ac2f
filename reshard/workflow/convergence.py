"""
Convergence-Gated Rolling Restart

Restarts every instance of a routing-tier service through the fan-out
executor and, after each restart, checks that the instance picked up the
desired configuration. Per instance:

    pending -> restarting -> verifying -> converged | non-converged

A non-converged instance counts as a failed attempt, so the fan-out executor
restarts and re-verifies it after its retry delay.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional

from reshard.config import ReshardConfig
from reshard.errors import ConvergenceFailure
from reshard.workflow.controller import PhaseController
from reshard.workflow.fanout import FanoutExecutor
from reshard.workflow.models import InstanceState, ShardEntry
from reshard.workflow.status import StatusReport

logger = logging.getLogger(__name__)

IndexMap = Dict[str, ShardEntry]
ConvergencePredicate = Callable[[IndexMap], bool]


def shards_are_read_only(index_map: IndexMap, shards: Iterable[str]) -> bool:
    """True when every shard is present in the map and flagged read-only."""
    for shard in shards:
        entry = index_map.get(shard)
        if entry is None or not entry.present or not entry.read_only:
            return False
    return True


def describe_shards(index_map: IndexMap, shards: Iterable[str]) -> str:
    parts = []
    for shard in shards:
        entry = index_map.get(shard)
        if entry is None or not entry.present:
            parts.append(f"{shard} missing")
        elif not entry.read_only:
            parts.append(f"{shard} not read-only")
        else:
            parts.append(f"{shard} read-only")
    return ", ".join(parts)


class RollingRestart:
    """
    Restart all instances of a service, gated on a convergence predicate.

    Args:
        ctl: Phase controller
        service_name: Service whose instances are restarted
        predicate: Called with each instance's index map after its restart
        describe: Optional renderer of a non-converged index map for errors
    """

    def __init__(
        self,
        ctl: PhaseController,
        service_name: str,
        predicate: ConvergencePredicate,
        describe: Optional[Callable[[IndexMap], str]] = None,
        retry_delay: float = ReshardConfig.RESTART_RETRY_DELAY,
        max_attempts: int = ReshardConfig.RESTART_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ctl = ctl
        self.service_name = service_name
        self.predicate = predicate
        self.describe = describe
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self._sleep = sleep

        self.states: Dict[str, InstanceState] = {}
        self.fanout: Optional[FanoutExecutor] = None

    def _transition(self, instance_id: str, state: InstanceState) -> None:
        self.states[instance_id] = state
        logger.debug(f"{self.service_name} {instance_id}: {state.value}")

    async def restart_and_verify(self, instance_id: str, report: StatusReport) -> None:
        """
        One attempt on one instance.

        Raises:
            ConvergenceFailure: Restarted, but the index map is not as desired
            CollaboratorError: The restart or the index map fetch failed
        """
        self._transition(instance_id, InstanceState.RESTARTING)
        await self.ctl.restart_instance(instance_id)

        self._transition(instance_id, InstanceState.VERIFYING)
        index_map = await self.ctl.get_shard_index_map(instance_id)

        if not self.predicate(index_map):
            self._transition(instance_id, InstanceState.NON_CONVERGED)
            detail = self.describe(index_map) if self.describe else "index map not as expected"
            raise ConvergenceFailure(
                f"{self.service_name} {instance_id} did not converge ({detail})",
                info={"instance": instance_id}
            )

        self._transition(instance_id, InstanceState.CONVERGED)

    async def run(self, status: Optional[StatusReport] = None) -> None:
        """
        Raises:
            PhasePaused: The plan was paused between attempts
            ItemRetriesExhausted: An instance never converged within its budget
        """
        status = status or self.ctl.status()

        instances = await self.ctl.list_instances(self.service_name)
        instance_ids = sorted(instances)
        for instance_id in instance_ids:
            self.states[instance_id] = InstanceState.PENDING

        status.update("restarting all %d %s instances", len(instance_ids), self.service_name)

        self.fanout = FanoutExecutor(
            self.ctl,
            status=status,
            retry_delay=self.retry_delay,
            max_attempts=self.max_attempts,
            item_label="instance",
            sleep=self._sleep,
        )
        await self.fanout.run(instance_ids, self.restart_and_verify)

        logger.info(f"✅ All {len(instance_ids)} {self.service_name} instances converged")

    @property
    def converged(self) -> bool:
        return all(s == InstanceState.CONVERGED for s in self.states.values())
