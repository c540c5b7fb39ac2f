"""
Watchdog-Guarded Remote Step

Runs a long-lived remote script that reports progress asynchronously, and
decides completion from whichever signal arrives first:

1. A terminal progress message: `error` fails the step, `finished` succeeds.
2. The remote execution call returning:
   - transport timeout after at least one progress message: ignored, the
     script is alive and will report its own completion
   - transport timeout with no progress, or any other failure: fails
   - non-zero exit status: fails
   - zero exit status: succeeds; the script is gone, so no terminal message
     can follow
3. The stall watchdog: once at least one progress message has been seen, more
   than `stall_timeout` seconds without another fails the step. Before the
   first message it never fires; remote environments take a while to boot.

Whatever fires first resolves the step; later signals are discarded. The
progress endpoint is torn down and the watchdog timer cancelled as soon as
the step resolves. An exec call still outstanding at that point is not
cancelled; it runs to completion and its outcome is logged and dropped.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Union

from reshard.errors import (
    ProtocolViolation,
    RemoteExecutionError,
    StallTimeout,
    TransportTimeout,
)
from reshard.workflow.controller import PhaseController
from reshard.workflow.models import ExecResult
from reshard.workflow.progress import (
    ProgressError,
    ProgressFinished,
    ProgressMessage,
)
from reshard.workflow.status import StatusReport
from reshard.workflow.templates import ScriptTemplate

logger = logging.getLogger(__name__)

# Seconds without a progress message, after the first one, before aborting
STALL_TIMEOUT_SECONDS = 600

# Watchdog tick
CHECK_INTERVAL_SECONDS = 1.0

StepResult = Union[ProgressFinished, ExecResult]


class WatchdogGuardedRemoteStep:
    """
    One execution of a progress-reporting remote script.

    Usage:
        step = WatchdogGuardedRemoteStep(ctl, target, scripts['remap-vnodes'], opts)
        result = await step.run()
    """

    def __init__(
        self,
        ctl: PhaseController,
        target_id: str,
        template: ScriptTemplate,
        opts: Dict[str, str],
        status: Optional[StatusReport] = None,
        url_variable: str = "STATUS_URL",
        stall_timeout: float = STALL_TIMEOUT_SECONDS,
        check_interval: float = CHECK_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ctl = ctl
        self.target_id = target_id
        self.template = template
        self.opts = opts
        self.status = status or StatusReport()
        self.url_variable = url_variable
        self.stall_timeout = stall_timeout
        self.check_interval = check_interval
        self._clock = clock

        self.messages_seen = 0
        self.exec_result: Optional[ExecResult] = None
        self._started_at: Optional[float] = None
        self._last_message_at: Optional[float] = None
        self._resolution: Optional[asyncio.Future] = None
        self.exec_task: Optional[asyncio.Task] = None
        self.watchdog_task: Optional[asyncio.Task] = None

    @property
    def resolved(self) -> bool:
        return self._resolution is not None and self._resolution.done()

    async def run(self) -> StepResult:
        """
        Returns:
            The terminal ProgressFinished message, or the ExecResult when a
            zero exit status resolved the step first

        Raises:
            RemoteExecutionError, StallTimeout: The step failed
        """
        loop = asyncio.get_running_loop()
        self._resolution = loop.create_future()
        self._started_at = self._clock()

        exec_ch = self.status.child()
        self._progress_ch = self.status.child()

        endpoint = await self.ctl.register_progress_endpoint(self._handle_progress)
        opts = {**self.opts, self.url_variable: endpoint.url}

        try:
            script = self.template.render(opts)

            exec_ch.update(f"running {self.template.name}")
            logger.info(f"Running {self.template.name} on {self.target_id} (progress via {endpoint.url})")

            self.exec_task = asyncio.create_task(self._run_exec(script))
            self.exec_task.add_done_callback(self._exec_done)
            self.watchdog_task = asyncio.create_task(self._watchdog())

            return await self._resolution
        finally:
            try:
                await self._stop_tasks()
            finally:
                await self.ctl.unregister_progress_endpoint(endpoint)

    async def _stop_tasks(self) -> None:
        # A resolved step leaves the exec call running; only a cancelled run()
        # takes it down
        tasks = [self.watchdog_task]
        if not self.resolved or self._resolution.cancelled():
            tasks.append(self.exec_task)

        for task in tasks:
            if task is not None and not task.done():
                task.cancel()
        for task in tasks:
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    def _exec_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.debug(f"{self.template.name} exec call on {self.target_id} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"{self.template.name} exec call on {self.target_id} raised: {error}")

    # =========================================================================
    # Resolution
    # =========================================================================

    def _succeed(self, result: StepResult) -> bool:
        if self.resolved:
            return False
        self._resolution.set_result(result)
        return True

    def _fail(self, error: BaseException) -> bool:
        if self.resolved:
            logger.debug(f"Discarding late failure: {error}")
            return False
        self._resolution.set_exception(error)
        return True

    def _runtime_ms(self) -> int:
        return int((self._clock() - self._started_at) * 1000)

    # =========================================================================
    # Progress Channel
    # =========================================================================

    def _handle_progress(self, message: ProgressMessage) -> None:
        """
        Called by the progress registry for each POST from the script.

        Raises:
            ProtocolViolation: The step already resolved
        """
        if self.resolved:
            raise ProtocolViolation(
                f"progress message after {self.template.name} resolved: {message.message}"
            )

        self.messages_seen += 1
        self._last_message_at = self._clock()

        logger.info(
            f"status from script: {message.message} "
            f"(runtime_ms={self._runtime_ms()}, count={self.messages_seen})"
        )

        if isinstance(message, ProgressError):
            self._progress_ch.update("script failed: %s", message.message)
            self._fail(RemoteExecutionError(
                f"script failed: {message.message}",
                info={"target": self.target_id, "message": message.message}
            ))
            return

        if isinstance(message, ProgressFinished):
            if message.total is not None:
                self._progress_ch.update("script finished (%d units)", message.total)
            else:
                self._progress_ch.update("script finished")
            logger.info(f"{self.template.name} finished")
            self._succeed(message)
            return

        if message.processed is not None:
            self._progress_ch.update(
                "remote status: %s (%d of %d units)",
                message.message, message.processed, message.total
            )
        else:
            self._progress_ch.update("remote status: %s", message.message)

    # =========================================================================
    # Remote Execution
    # =========================================================================

    async def _run_exec(self, script: str) -> None:
        try:
            res = await self.ctl.execute_remote(self.target_id, script)
        except TransportTimeout as e:
            if self.messages_seen > 0:
                # The script outlives the exec budget but keeps reporting
                logger.info(
                    f"Ignoring exec transport timeout on {self.target_id}: "
                    f"{self.messages_seen} progress messages received"
                )
                return
            self._fail(RemoteExecutionError(
                f"{self.template.name} on {self.target_id}: exec failure",
                cause=e,
                info={"target": self.target_id}
            ))
            return
        except Exception as e:
            self._fail(RemoteExecutionError(
                f"{self.template.name} on {self.target_id}: exec failure",
                cause=e,
                info={"target": self.target_id}
            ))
            return

        self.exec_result = res
        logger.info(f"{self.template.name} exited {res.exit_status}: {res.stdout.strip()[:500]}")

        if self.resolved:
            logger.info(f"Discarding exec result of {self.template.name}: step already resolved")
            return

        if res.exit_status != 0:
            self._fail(RemoteExecutionError(
                f"{self.template.name} exited {res.exit_status}",
                info={"target": self.target_id, "stderr": res.stderr.strip()[-500:]}
            ))
            return

        self._succeed(res)

    # =========================================================================
    # Stall Watchdog
    # =========================================================================

    async def _watchdog(self) -> None:
        while not self.resolved:
            await asyncio.sleep(self.check_interval)

            if self._last_message_at is None:
                # Not heard from the script yet; exec failure covers this case
                continue

            silent_for = self._clock() - self._last_message_at
            if silent_for > self.stall_timeout:
                logger.warning(f"no status for {self.stall_timeout:g} seconds; aborting")
                self._fail(StallTimeout(
                    f"{self.template.name} has not reported back in "
                    f"{self.stall_timeout:g} seconds",
                    info={"target": self.target_id, "messages_seen": self.messages_seen}
                ))
                return
