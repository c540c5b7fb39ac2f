"""
Bounded Concurrency Fan-out Executor

Runs an async operation over a set of work items with at most
max(1, N // 3) in flight, so roughly a third of a fleet is touched at a time.

- Items are admitted in sorted identifier order, so a phase that keeps failing
  affects the same subset on every run.
- A failed item is retried in place after `retry_delay` seconds, up to
  `max_attempts` attempts.
- The pause flag is checked before every attempt; a pause is not retried.
- The first unrecoverable failure is the one reported. No new items are
  admitted after it, but items already in flight drain before `run()` returns.
- Each item gets its own status sub-report the first time it starts.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from reshard.config import ReshardConfig
from reshard.errors import ItemRetriesExhausted, PhasePaused, full_message
from reshard.workflow.controller import PhaseController
from reshard.workflow.status import StatusReport

logger = logging.getLogger(__name__)

ItemFunc = Callable[[str, StatusReport], Awaitable[None]]


def compute_concurrency(item_count: int) -> int:
    """Roughly one third of the items at a time, never fewer than one."""
    return max(1, item_count // 3)


class FanoutExecutor:
    """
    Usage:
        fanout = FanoutExecutor(ctl, status=ctl.status(), item_label="instance")
        await fanout.run(instance_ids, restart_one)
    """

    def __init__(
        self,
        ctl: PhaseController,
        status: Optional[StatusReport] = None,
        retry_delay: float = ReshardConfig.RESTART_RETRY_DELAY,
        max_attempts: int = ReshardConfig.RESTART_MAX_ATTEMPTS,
        item_label: str = "item",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            ctl: Phase controller (pause flag)
            status: Parent status node; one child is created per item
            retry_delay: Seconds between attempts of the same item
            max_attempts: Attempts per item before the executor fails
            item_label: Prefix of each item's status line
            sleep: Delay function, replaceable in tests
        """
        self.ctl = ctl
        self.status = status or StatusReport()
        self.retry_delay = retry_delay
        self.max_attempts = max(1, max_attempts)
        self.item_label = item_label
        self._sleep = sleep

        self.concurrency = 1
        self.admitted: List[str] = []
        self.attempts: Dict[str, int] = {}
        self.reports: Dict[str, StatusReport] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self._error is not None

    def _record_error(self, error: BaseException) -> None:
        if self._error is None:
            self._error = error
        else:
            logger.debug(f"Not reporting later failure: {full_message(error)}")

    async def run(self, items: Iterable[str], func: ItemFunc) -> None:
        """
        Process every item; returns when all succeeded.

        Raises:
            PhasePaused: The plan was paused before an attempt
            ItemRetriesExhausted: The first item that ran out of attempts
        """
        ordered = sorted(items)
        total = len(ordered)
        self.concurrency = compute_concurrency(total)
        next_index = 0

        logger.info(f"Fan-out over {total} items, {self.concurrency} at a time")

        async def worker() -> None:
            nonlocal next_index
            while not self.failed and next_index < total:
                # Admission happens between awaits, so order is stable
                index = next_index
                next_index += 1
                item = ordered[index]
                self.admitted.append(item)
                await self._process(item, index + 1, total, func)

        workers = [asyncio.create_task(worker()) for _ in range(self.concurrency)]
        await asyncio.gather(*workers)

        if self._error is not None:
            raise self._error

    async def _process(self, item: str, position: int, total: int, func: ItemFunc) -> None:
        report = self.reports.get(item)
        if report is None:
            report = self.status.child()
            self.reports[item] = report
        report.update("%s %s (%d/%d)", self.item_label, item, position, total)

        attempt = 0
        while True:
            if await self.ctl.is_paused():
                logger.info(f"⏸️  Paused before {self.item_label} {item}")
                self._record_error(PhasePaused(f"paused before {self.item_label} {item}"))
                return

            attempt += 1
            self.attempts[item] = attempt

            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                await func(item, report)
            except Exception as e:
                report.trunc()
                if attempt >= self.max_attempts or self.failed:
                    report.child().update("failed: %s", full_message(e))
                    logger.error(
                        f"❌ {self.item_label} {item} failed on attempt "
                        f"{attempt}/{self.max_attempts}: {full_message(e)}"
                    )
                    self._record_error(ItemRetriesExhausted(item, attempt, e))
                    return

                report.child().update("failed: %s (retrying)", full_message(e))
                logger.warning(
                    f"{self.item_label} {item} failed (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {self.retry_delay:g}s: {full_message(e)}"
                )
            else:
                report.trunc()
                report.child().update("ok")
                logger.info(f"{self.item_label} {item} ok after {attempt} attempt(s)")
                return
            finally:
                self.in_flight -= 1

            await self._sleep(self.retry_delay)
            if self.failed:
                report.child().update("abandoned")
                return
