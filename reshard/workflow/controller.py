"""
Phase Controller

The narrow interface a phase uses to reach everything outside itself: the
plan, collaborator services, the progress endpoint, output properties and
outcome reporting.

- PhaseController: abstract interface (tests provide an in-memory one)
- ReshardController: production implementation over SAPI, IMGAPI, the exec
  service, the progress registry and Redis
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

from reshard.clients import ImgapiClient, SapiClient, ZoneExecClient
from reshard.config import ReshardConfig
from reshard.errors import CollaboratorError, full_message
from reshard.workflow.events import WorkflowEventPublisher
from reshard.workflow.models import (
    Application,
    Artifact,
    ExecResult,
    Instance,
    PhaseOutcome,
    PhaseResult,
    Plan,
    ShardEntry,
)
from reshard.workflow.progress import (
    ProgressChannelRegistry,
    ProgressEndpoint,
    ProgressHandler,
)
from reshard.workflow.state_manager import RedisStateManager
from reshard.workflow.status import StatusReport
from reshard.workflow.templates import ScriptTemplate, load_templates

logger = logging.getLogger(__name__)


class PhaseController(ABC):
    """Everything a phase may do outside its own process state."""

    @abstractmethod
    def plan(self) -> Plan:
        ...

    @abstractmethod
    def status(self) -> StatusReport:
        ...

    @abstractmethod
    async def get_application(self) -> Application:
        ...

    async def get_application_metadata(self, key: str) -> Optional[str]:
        app = await self.get_application()
        return app.metadata.get(key)

    @abstractmethod
    async def list_artifacts(self, name: str, owner: str) -> List[Artifact]:
        ...

    @abstractmethod
    async def get_artifact(self, artifact_id: str) -> Artifact:
        ...

    @abstractmethod
    async def list_instances(self, service_name: str) -> Dict[str, Instance]:
        ...

    @abstractmethod
    async def execute_remote(self, target_id: str, script: str) -> ExecResult:
        """Raises TransportTimeout when the call itself runs out of budget."""

    @abstractmethod
    async def register_progress_endpoint(self, handler: ProgressHandler) -> ProgressEndpoint:
        ...

    @abstractmethod
    async def unregister_progress_endpoint(self, endpoint: ProgressEndpoint) -> None:
        ...

    @abstractmethod
    async def restart_instance(self, instance_id: str) -> None:
        ...

    @abstractmethod
    async def get_shard_index_map(self, instance_id: str) -> Dict[str, ShardEntry]:
        ...

    @abstractmethod
    async def persist_output_property(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def report_finished(self) -> None:
        ...

    @abstractmethod
    async def report_retry(self, error: BaseException) -> None:
        ...

    @abstractmethod
    async def report_hold(self, error: BaseException) -> None:
        ...

    @abstractmethod
    async def is_paused(self) -> bool:
        ...


def parse_index_map(text: str) -> Dict[str, ShardEntry]:
    """
    Parse an index map printed by an instance

    Format: {"<shard>": {"readOnly": <bool>}, ...}
    """
    try:
        raw = json.loads(text)
    except ValueError as e:
        raise CollaboratorError("index map is not valid JSON", cause=e)

    if not isinstance(raw, dict):
        raise CollaboratorError("index map is not a JSON object")

    index_map = {}
    for shard, entry in raw.items():
        entry = entry if isinstance(entry, dict) else {}
        index_map[shard] = ShardEntry(present=True, read_only=bool(entry.get("readOnly")))
    return index_map


class ReshardController(PhaseController):
    """
    Production controller for one phase attempt of one plan.
    """

    def __init__(
        self,
        plan: Plan,
        phase_id: str,
        sapi: SapiClient,
        imgapi: ImgapiClient,
        zone_exec: ZoneExecClient,
        progress_channels: ProgressChannelRegistry,
        state_manager: RedisStateManager,
        event_publisher: Optional[WorkflowEventPublisher] = None,
        application_name: str = ReshardConfig.APPLICATION_NAME,
        index_map_path: str = ReshardConfig.INDEX_MAP_PATH,
        routing_service_name: str = ReshardConfig.ROUTING_SERVICE_NAME,
    ):
        self._plan = plan
        self.phase_id = phase_id
        self.sapi = sapi
        self.imgapi = imgapi
        self.zone_exec = zone_exec
        self.progress_channels = progress_channels
        self.state_manager = state_manager
        self.event_publisher = event_publisher
        self.application_name = application_name
        self.index_map_path = index_map_path
        self.routing_service_name = routing_service_name

        self._status = StatusReport(on_change=self._status_changed)
        self._application: Optional[Application] = None
        self._publish_tasks: Set[asyncio.Task] = set()
        self._scripts: Dict[str, ScriptTemplate] = load_templates(
            ["restart", "index-map"], prefix="instance-"
        )

    def __repr__(self):
        return f"<ReshardController plan={self._plan.uuid} phase={self.phase_id}>"

    def plan(self) -> Plan:
        return self._plan

    def status(self) -> StatusReport:
        return self._status

    def _status_changed(self) -> None:
        if self.event_publisher is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        task = loop.create_task(self.event_publisher.status_update(
            self._plan.uuid, self.phase_id, self._status.snapshot()
        ))
        self._publish_tasks.add(task)
        task.add_done_callback(self._publish_tasks.discard)

    # =========================================================================
    # Collaborators
    # =========================================================================

    async def get_application(self) -> Application:
        # Refreshed once per phase attempt
        if self._application is None:
            self._application = await self.sapi.get_application(self.application_name)
        return self._application

    async def list_artifacts(self, name: str, owner: str) -> List[Artifact]:
        return await self.imgapi.list_images(name=name, owner=owner)

    async def get_artifact(self, artifact_id: str) -> Artifact:
        return await self.imgapi.get_image(artifact_id)

    async def list_instances(self, service_name: str) -> Dict[str, Instance]:
        app = await self.get_application()
        return await self.sapi.list_instances(service_name, app.uuid)

    async def execute_remote(self, target_id: str, script: str) -> ExecResult:
        return await self.zone_exec.execute(target_id, script)

    async def register_progress_endpoint(self, handler: ProgressHandler) -> ProgressEndpoint:
        return self.progress_channels.register(handler)

    async def unregister_progress_endpoint(self, endpoint: ProgressEndpoint) -> None:
        self.progress_channels.unregister(endpoint)

    async def restart_instance(self, instance_id: str) -> None:
        res = await self.execute_remote(
            instance_id,
            self._scripts["restart"].render({"SERVICE_NAME": self.routing_service_name})
        )
        if res.exit_status != 0:
            raise CollaboratorError(
                f"restart of {instance_id} exited {res.exit_status}",
                info={"stderr": res.stderr.strip()}
            )

    async def get_shard_index_map(self, instance_id: str) -> Dict[str, ShardEntry]:
        res = await self.execute_remote(
            instance_id,
            self._scripts["index-map"].render({"INDEX_MAP_PATH": self.index_map_path})
        )
        if res.exit_status != 0:
            raise CollaboratorError(
                f"reading index map of {instance_id} exited {res.exit_status}",
                info={"stderr": res.stderr.strip()}
            )
        return parse_index_map(res.stdout)

    # =========================================================================
    # Plan Controller
    # =========================================================================

    async def persist_output_property(self, key: str, value: Any) -> None:
        await self.state_manager.put_property(self._plan.uuid, key, value)

    async def _record(self, outcome: PhaseOutcome, error: BaseException = None) -> None:
        result = PhaseResult(
            phase_id=self.phase_id,
            outcome=outcome,
            error=full_message(error) if error is not None else None,
            info=dict(getattr(error, "info", None) or {})
        )
        await self.state_manager.record_result(self._plan.uuid, result)
        if self.event_publisher:
            await self.event_publisher.phase_result(self._plan.uuid, result)

    async def report_finished(self) -> None:
        logger.info(f"✅ Plan {self._plan.uuid}: phase {self.phase_id} finished")
        await self._record(PhaseOutcome.FINISHED)

    async def report_retry(self, error: BaseException) -> None:
        logger.warning(f"Plan {self._plan.uuid}: phase {self.phase_id} will retry: {full_message(error)}")
        await self._record(PhaseOutcome.RETRY, error)

    async def report_hold(self, error: BaseException) -> None:
        logger.error(f"❌ Plan {self._plan.uuid}: phase {self.phase_id} on hold: {full_message(error)}")
        await self._record(PhaseOutcome.HOLD, error)

    async def is_paused(self) -> bool:
        return await self.state_manager.is_paused(self._plan.uuid)
