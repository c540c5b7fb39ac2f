"""
Phase: Remap Hash Ring

Produces an updated hash ring image in which half of the old shard's vnodes
belong to the new shard:

1. Load the four hashring-* script templates
2. Refresh the application record for image service, image and owner
3. Look for an image already tagged with this plan (adopt it if exactly one)
4. Pick a routing-tier instance to work in
5. Prime a workspace there with the current hash ring database
6. Remap vnodes (long-running; reports progress over the progress channel)
7. Archive and upload the remapped database as a new image
8. Remove the workspace
9. Verify the image exists

Steps 4-7 are skipped when step 3 found an image, so a rerun after a partial
failure goes straight to verification. Any failure from step 5 onwards holds
for an operator: the workspace and any processes in it are left for
inspection.
"""

import logging
import time
import uuid
from typing import Callable, Dict, Optional

from reshard.config import ReshardConfig
from reshard.errors import (
    AmbiguousStateError,
    CollaboratorError,
    PhaseFailure,
    RemoteExecutionError,
)
from reshard.workflow.controller import PhaseController
from reshard.workflow.escalation import EscalationPolicy
from reshard.workflow.phases.phase_executor import ReshardPhase
from reshard.workflow.phases.registry import register_phase
from reshard.workflow.remote_step import WatchdogGuardedRemoteStep
from reshard.workflow.sequencer import PhaseContext, PhaseSequencer, Step
from reshard.workflow.templates import ScriptTemplate, load_templates

logger = logging.getLogger(__name__)

TEMPLATES = ["prime-workspace", "remap-vnodes", "create-archive", "cleanup"]


def is_uuid(value) -> bool:
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


class RemapContext(PhaseContext):
    """State shared by the remap steps; `artifact_id` is the new image."""

    def __init__(self, plan, escalation: Optional[EscalationPolicy] = None):
        super().__init__(escalation)

        # Unique per attempt so concurrent or later attempts never collide
        short_random = uuid.uuid4().hex[:8]
        self.workspace_id = f"{plan.uuid}.{short_random}"

        self.opts: Dict[str, str] = {
            "WORKSPACE_ID": self.workspace_id,
            "TRANSITION": f"split shard {plan.shard} in half; create new shard {plan.new_shard}",
            "PLAN_UUID": plan.uuid,
            "SHARD": plan.shard,
            "NEW_SHARD": plan.new_shard,
        }
        self.scripts: Dict[str, ScriptTemplate] = {}
        self.remote_target: Optional[str] = None
        self.perform_cleanup = False


@register_phase("remap_ring", "Remap Hash Ring")
class RemapRingPhase(ReshardPhase):
    """Split a shard's vnodes in half, producing a new hash ring image."""

    def __init__(
        self,
        ctl: PhaseController,
        escalation: Optional[EscalationPolicy] = None,
        image_name: str = ReshardConfig.HASH_RING_IMAGE_NAME,
        plan_tag: str = ReshardConfig.PLAN_TAG,
        routing_service_name: str = ReshardConfig.ROUTING_SERVICE_NAME,
        stall_timeout: float = ReshardConfig.STALL_TIMEOUT,
        check_interval: float = ReshardConfig.WATCHDOG_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(ctl, escalation)
        self.image_name = image_name
        self.plan_tag = plan_tag
        self.routing_service_name = routing_service_name
        self.stall_timeout = stall_timeout
        self.check_interval = check_interval
        self.clock = clock

        self.context = RemapContext(self.plan, self.escalation)
        self.sequencer = PhaseSequencer(ctl, [
            Step("load_templates", self.load_templates),
            Step("refresh_application", self.refresh_application),
            Step("check_existing_image", self.check_existing_image),
            Step("select_remote_target", self.select_remote_target, work=True),
            Step("prime_workspace", self.prime_workspace, work=True),
            Step("remap_vnodes", self.remap_vnodes, work=True),
            Step("create_archive", self.create_archive, work=True),
            Step("cleanup", self.cleanup),
            Step("verify_image", self.verify_image),
        ])

    async def execute(self) -> None:
        ctx = self.context
        await self.sequencer.run(ctx)

        await self.ctl.persist_output_property("new_hash_ring_uuid", ctx.artifact_id)
        await self.ctl.persist_output_property("old_hash_ring_uuid", ctx.opts["HASH_RING_IMAGE"])
        logger.info(
            f"✅ Hash ring for plan {self.plan.uuid}: "
            f"{ctx.opts['HASH_RING_IMAGE']} → {ctx.artifact_id}"
        )

    def describe_failure(self, error: BaseException) -> PhaseFailure:
        return PhaseFailure(
            "remapping vnodes",
            cause=error,
            info={
                "remote_target": self.context.remote_target,
                "workspace_id": self.context.workspace_id,
            }
        )

    # =========================================================================
    # Steps
    # =========================================================================

    async def load_templates(self, ctx: RemapContext) -> None:
        self.status.update("loading script templates")
        ctx.scripts = load_templates(TEMPLATES, prefix="hashring-")

    async def refresh_application(self, ctx: RemapContext) -> None:
        self.status.update("refreshing application")

        for key in ("HASH_RING_IMGAPI_SERVICE", "HASH_RING_IMAGE"):
            value = await self.ctl.get_application_metadata(key)
            if not value:
                raise CollaboratorError(f"application metadata has no {key}")
            ctx.opts[key] = str(value)

        app = await self.ctl.get_application()
        if not is_uuid(app.owner_uuid):
            raise CollaboratorError(f"application owner_uuid is not a uuid: {app.owner_uuid!r}")
        ctx.opts["POSEIDON_UUID"] = app.owner_uuid

        logger.info(f"Script options: {ctx.opts}")

    async def check_existing_image(self, ctx: RemapContext) -> None:
        self.status.update("checking for existing updated hash ring image")
        images = await self.ctl.list_artifacts(self.image_name, ctx.opts["POSEIDON_UUID"])

        ours = [i for i in images if (i.tags or {}).get(self.plan_tag) == self.plan.uuid]

        if not ours:
            logger.info("Existing image not found")
            return

        if len(ours) > 1:
            ids = [i.uuid for i in ours]
            logger.warning(f"Found more than one image for plan {self.plan.uuid}: {ids}")
            raise AmbiguousStateError(
                f"found multiple images for our plan: {ids}",
                info={"images": ids}
            )

        if not is_uuid(ours[0].uuid):
            raise CollaboratorError(f"existing image has an invalid uuid: {ours[0].uuid!r}")

        ctx.artifact_id = ours[0].uuid
        logger.info(f"Existing image found: {ctx.artifact_id}")

    async def select_remote_target(self, ctx: RemapContext) -> None:
        instances = await self.ctl.list_instances(self.routing_service_name)
        if not instances:
            raise CollaboratorError(f'did not find any "{self.routing_service_name}" instances')

        # Any instance can do the work
        ctx.remote_target = next(iter(instances.values())).uuid
        logger.info(f"Using {self.routing_service_name} instance {ctx.remote_target}")

    async def prime_workspace(self, ctx: RemapContext) -> None:
        ctx.escalation.mark_side_effect(
            f"workspace {ctx.workspace_id} on {ctx.remote_target}"
        )

        self.status.clear()
        self.status.update("remapping vnodes")
        self.status.prop("via instance", ctx.remote_target)
        self.status.trunc()
        self.status.child().update("unpacking copy of hash ring")

        res = await self.ctl.execute_remote(
            ctx.remote_target, ctx.scripts["prime-workspace"].render(ctx.opts)
        )
        logger.info(f"prime-workspace output: {res.stdout.strip()}")
        if res.exit_status != 0:
            raise RemoteExecutionError(
                "prime workspace failed",
                info={"exit_status": res.exit_status, "stderr": res.stderr.strip()}
            )

    async def remap_vnodes(self, ctx: RemapContext) -> None:
        self.status.trunc()
        step = WatchdogGuardedRemoteStep(
            self.ctl,
            ctx.remote_target,
            ctx.scripts["remap-vnodes"],
            ctx.opts,
            status=self.status,
            stall_timeout=self.stall_timeout,
            check_interval=self.check_interval,
            clock=self.clock,
        )
        await step.run()

    async def create_archive(self, ctx: RemapContext) -> None:
        self.status.trunc()
        self.status.child().update("uploading remapped hash ring")

        res = await self.ctl.execute_remote(
            ctx.remote_target, ctx.scripts["create-archive"].render(ctx.opts)
        )
        logger.info(f"create-archive output: {res.stdout.strip()}")
        if res.exit_status != 0:
            raise RemoteExecutionError(
                "uploading hash ring",
                info={"exit_status": res.exit_status, "stderr": res.stderr.strip()}
            )

        out = res.stdout.strip()
        if not is_uuid(out):
            raise RemoteExecutionError(f'invalid uuid from script: "{out}"')

        ctx.artifact_id = out
        ctx.perform_cleanup = True

    async def cleanup(self, ctx: RemapContext) -> None:
        if not ctx.perform_cleanup:
            return

        self.status.trunc()
        self.status.child().update("removing working directory")

        res = await self.ctl.execute_remote(
            ctx.remote_target, ctx.scripts["cleanup"].render(ctx.opts)
        )
        if res.exit_status != 0:
            raise RemoteExecutionError(
                "cleanup",
                info={"exit_status": res.exit_status, "stderr": res.stderr.strip()}
            )

    async def verify_image(self, ctx: RemapContext) -> None:
        self.status.clear()
        self.status.trunc()
        self.status.child().update("checking for correct hash ring upload")

        try:
            image = await self.ctl.get_artifact(ctx.artifact_id)
        except CollaboratorError as e:
            raise CollaboratorError(f"checking existing image ({ctx.artifact_id})", cause=e)

        logger.info(f"Checked hash ring image {image.uuid} ({image.name})")
