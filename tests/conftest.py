"""Shared fixtures: an in-memory phase controller."""

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import pytest

from reshard.errors import CollaboratorError
from reshard.workflow.controller import PhaseController
from reshard.workflow.models import (
    Application,
    Artifact,
    ExecResult,
    Instance,
    PhaseOutcome,
    Plan,
    ShardEntry,
)
from reshard.workflow.progress import (
    ProgressChannelRegistry,
    ProgressEndpoint,
    ProgressHandler,
)
from reshard.workflow.status import StatusReport

PLAN_UUID = "5a8f9f4e-5c7a-4b7e-9d55-0f2a6b3c1d10"
OWNER_UUID = "930896af-bf8c-48d4-885c-6573a94b1853"
OLD_IMAGE = "2d7bd5a6-0a7d-4b5e-8c3f-5e1e8d2b6a01"
NEW_IMAGE = "7f1c2b9e-3d4a-4c5b-9e6f-1a2b3c4d5e6f"

_SCRIPT_NAME = re.compile(r"^# ([a-z0-9-]+):", re.MULTILINE)

ExecHandler = Callable[["FakeController", str, str], Awaitable[ExecResult]]


def script_name(script: str) -> str:
    m = _SCRIPT_NAME.search(script)
    return m.group(1) if m else ""


def read_only_map(*shards: str) -> Dict[str, ShardEntry]:
    return {s: ShardEntry(present=True, read_only=True) for s in shards}


class FakeController(PhaseController):
    """
    In-memory controller.

    Remote scripts are dispatched to `exec_handlers` by the name in their
    `# <name>:` header line; unhandled scripts exit 0.
    """

    def __init__(
        self,
        plan: Optional[Plan] = None,
        application: Optional[Application] = None,
        images: Optional[List[Artifact]] = None,
        instances: Optional[Dict[str, Instance]] = None,
    ):
        self._plan = plan or Plan(uuid=PLAN_UUID, shard="3", new_shard="3b")
        self._status = StatusReport()
        self.application = application or Application(
            uuid="app-uuid",
            owner_uuid=OWNER_UUID,
            metadata={
                "HASH_RING_IMGAPI_SERVICE": "imgapi.test",
                "HASH_RING_IMAGE": OLD_IMAGE,
            },
        )
        self.images: List[Artifact] = list(images or [])
        self.instances: Dict[str, Instance] = dict(instances or {})

        self.registry = ProgressChannelRegistry("http://reshard.test")
        self.endpoints: List[ProgressEndpoint] = []

        self.exec_handlers: Dict[str, ExecHandler] = {}
        self.exec_calls: List[Tuple[str, str]] = []
        self.list_artifacts_error: Optional[BaseException] = None

        self.restart_calls: List[str] = []
        self.index_map_calls: Dict[str, int] = {}
        self.index_map_for: Callable[[str, int], Dict[str, ShardEntry]] = (
            lambda instance_id, attempt: read_only_map(self._plan.shard, self._plan.new_shard)
        )
        self.restart_delay = 0.0

        self.props: Dict[str, Any] = {}
        self.outcomes: List[Tuple[PhaseOutcome, Optional[BaseException]]] = []

        self.paused = False
        self.pause_checks = 0
        self.pause_after: Optional[int] = None

    # Plan / status

    def plan(self) -> Plan:
        return self._plan

    def status(self) -> StatusReport:
        return self._status

    # Collaborators

    async def get_application(self) -> Application:
        return self.application

    async def list_artifacts(self, name: str, owner: str) -> List[Artifact]:
        if self.list_artifacts_error is not None:
            raise self.list_artifacts_error
        return [i for i in self.images if i.name == name and i.owner == owner]

    async def get_artifact(self, artifact_id: str) -> Artifact:
        for image in self.images:
            if image.uuid == artifact_id:
                return image
        raise CollaboratorError(f"IMGAPI GET /images/{artifact_id}: HTTP 404")

    async def list_instances(self, service_name: str) -> Dict[str, Instance]:
        return dict(self.instances)

    async def execute_remote(self, target_id: str, script: str) -> ExecResult:
        name = script_name(script)
        self.exec_calls.append((target_id, name))
        handler = self.exec_handlers.get(name)
        if handler is None:
            return ExecResult(exit_status=0)
        return await handler(self, target_id, script)

    async def register_progress_endpoint(self, handler: ProgressHandler) -> ProgressEndpoint:
        endpoint = self.registry.register(handler)
        self.endpoints.append(endpoint)
        return endpoint

    async def unregister_progress_endpoint(self, endpoint: ProgressEndpoint) -> None:
        self.registry.unregister(endpoint)

    def post_progress(self, body: Any, endpoint: Optional[ProgressEndpoint] = None) -> None:
        """Deliver a progress POST the way the router does."""
        endpoint = endpoint or self.endpoints[-1]
        self.registry.dispatch(endpoint.token, body)

    async def restart_instance(self, instance_id: str) -> None:
        self.restart_calls.append(instance_id)
        await asyncio.sleep(self.restart_delay)

    async def get_shard_index_map(self, instance_id: str) -> Dict[str, ShardEntry]:
        attempt = self.index_map_calls.get(instance_id, 0) + 1
        self.index_map_calls[instance_id] = attempt
        return self.index_map_for(instance_id, attempt)

    # Plan controller

    async def persist_output_property(self, key: str, value: Any) -> None:
        self.props[key] = value

    async def report_finished(self) -> None:
        self.outcomes.append((PhaseOutcome.FINISHED, None))

    async def report_retry(self, error: BaseException) -> None:
        self.outcomes.append((PhaseOutcome.RETRY, error))

    async def report_hold(self, error: BaseException) -> None:
        self.outcomes.append((PhaseOutcome.HOLD, error))

    async def is_paused(self) -> bool:
        self.pause_checks += 1
        if self.pause_after is not None and self.pause_checks > self.pause_after:
            return True
        return self.paused


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def ctl() -> FakeController:
    return FakeController()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
