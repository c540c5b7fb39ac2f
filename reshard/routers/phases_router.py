"""
Phases Router

Small operator surface over the phase engine:

- POST   /plans/{plan_uuid}/phases/{phase_id}  start a phase in the background
- GET    /plans/{plan_uuid}/phases/{phase_id}  last recorded result + live status
- PUT    /plans/{plan_uuid}/pause              pause at the next step boundary
- DELETE /plans/{plan_uuid}/pause              clear the pause flag
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from reshard.workflow.controller import ReshardController
from reshard.workflow.models import Plan
from reshard.workflow.phases import get_phase_class, list_registered_phases
from reshard.workflow.phases.registry import UnknownPhaseError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["Phases"])


class StartPhaseRequest(BaseModel):
    shard: str
    new_shard: str


class RunningPhase:
    def __init__(self, task: asyncio.Task, ctl: ReshardController):
        self.task = task
        self.ctl = ctl


def _running(request: Request) -> Dict[Tuple[str, str], RunningPhase]:
    return request.app.state.running_phases


def build_controller(request: Request, plan: Plan, phase_id: str) -> ReshardController:
    state = request.app.state
    return ReshardController(
        plan,
        phase_id,
        sapi=state.sapi,
        imgapi=state.imgapi,
        zone_exec=state.zone_exec,
        progress_channels=state.progress_channels,
        state_manager=state.state_manager,
        event_publisher=state.event_publisher,
    )


@router.get("/phases")
async def list_phases():
    return {"phases": list_registered_phases()}


@router.post("/{plan_uuid}/phases/{phase_id}", status_code=202)
async def start_phase(plan_uuid: str, phase_id: str, body: StartPhaseRequest, request: Request):
    try:
        phase_class = get_phase_class(phase_id)
    except UnknownPhaseError:
        raise HTTPException(status_code=404, detail=f"Unknown phase '{phase_id}'")

    running = _running(request)
    key = (plan_uuid, phase_id)
    current = running.get(key)
    if current is not None and not current.task.done():
        raise HTTPException(status_code=409, detail=f"Phase {phase_id} already running for plan {plan_uuid}")

    plan = Plan(uuid=plan_uuid, shard=body.shard, new_shard=body.new_shard)
    ctl = build_controller(request, plan, phase_id)
    phase = phase_class(ctl)

    task = asyncio.create_task(phase.run())
    running[key] = RunningPhase(task, ctl)

    def _finished(t: asyncio.Task) -> None:
        if t.cancelled():
            logger.warning(f"Phase {phase_id} for plan {plan_uuid} was cancelled")
        elif t.exception() is not None:
            logger.error(f"❌ Phase {phase_id} for plan {plan_uuid} crashed: {t.exception()}")
        else:
            logger.info(f"Phase {phase_id} for plan {plan_uuid}: {t.result().value}")

    task.add_done_callback(_finished)

    logger.info(f"🚀 Started phase {phase_id} for plan {plan_uuid}")
    return {"plan_uuid": plan_uuid, "phase_id": phase_id, "status": "started"}


@router.get("/{plan_uuid}/phases/{phase_id}")
async def get_phase(plan_uuid: str, phase_id: str, request: Request):
    state_manager = request.app.state.state_manager
    result = await state_manager.get_result(plan_uuid, phase_id)

    current: Optional[RunningPhase] = _running(request).get((plan_uuid, phase_id))
    is_running = current is not None and not current.task.done()

    if result is None and current is None:
        raise HTTPException(status_code=404, detail=f"No record of phase {phase_id} for plan {plan_uuid}")

    return {
        "plan_uuid": plan_uuid,
        "phase_id": phase_id,
        "running": is_running,
        "result": result.model_dump(mode="json") if result else None,
        "status": current.ctl.status().lines() if current else [],
        "properties": await state_manager.get_properties(plan_uuid),
    }


@router.put("/{plan_uuid}/pause", status_code=204)
async def pause_plan(plan_uuid: str, request: Request):
    await request.app.state.state_manager.set_paused(plan_uuid)
    logger.info(f"⏸️  Pause requested for plan {plan_uuid}")


@router.delete("/{plan_uuid}/pause", status_code=204)
async def resume_plan(plan_uuid: str, request: Request):
    await request.app.state.state_manager.clear_paused(plan_uuid)
    logger.info(f"▶️  Pause cleared for plan {plan_uuid}")
