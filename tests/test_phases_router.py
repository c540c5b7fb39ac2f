"""Tests for the operator routes."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import PLAN_UUID
from reshard.main import stop_running_phases
from reshard.routers import phases_router
from reshard.workflow.models import PhaseOutcome, PhaseResult


@pytest.fixture
def app():
    app = FastAPI()
    app.include_router(phases_router.router)
    app.state.state_manager = AsyncMock()
    app.state.running_phases = {}
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestPhasesRouter:

    def test_list_phases(self, client):
        response = client.get("/plans/phases")

        assert response.status_code == 200
        assert set(response.json()["phases"]) >= {"remap_ring", "restart_electric_moray_readonly"}

    def test_pause_and_resume(self, app, client):
        assert client.put(f"/plans/{PLAN_UUID}/pause").status_code == 204
        app.state.state_manager.set_paused.assert_awaited_once_with(PLAN_UUID)

        assert client.delete(f"/plans/{PLAN_UUID}/pause").status_code == 204
        app.state.state_manager.clear_paused.assert_awaited_once_with(PLAN_UUID)

    def test_start_unknown_phase(self, client):
        response = client.post(
            f"/plans/{PLAN_UUID}/phases/no_such_phase",
            json={"shard": "3", "new_shard": "3b"},
        )

        assert response.status_code == 404

    def test_start_requires_shards(self, client):
        response = client.post(f"/plans/{PLAN_UUID}/phases/remap_ring", json={"shard": "3"})

        assert response.status_code == 422

    def test_get_unknown_result(self, app, client):
        app.state.state_manager.get_result.return_value = None

        response = client.get(f"/plans/{PLAN_UUID}/phases/remap_ring")

        assert response.status_code == 404

    def test_get_recorded_result(self, app, client):
        app.state.state_manager.get_result.return_value = PhaseResult(
            phase_id="remap_ring", outcome=PhaseOutcome.FINISHED
        )
        app.state.state_manager.get_properties.return_value = {"new_hash_ring_uuid": "img-2"}

        response = client.get(f"/plans/{PLAN_UUID}/phases/remap_ring")

        body = response.json()
        assert response.status_code == 200
        assert body["result"]["outcome"] == "finished"
        assert body["running"] is False
        assert body["properties"] == {"new_hash_ring_uuid": "img-2"}


class TestShutdown:

    @pytest.mark.asyncio
    async def test_running_phases_unwind_before_shutdown(self):
        unwound = []

        async def phase():
            try:
                await asyncio.Event().wait()
            finally:
                unwound.append(True)

        task = asyncio.create_task(phase())
        await asyncio.sleep(0)
        running = {(PLAN_UUID, "remap_ring"): phases_router.RunningPhase(task, ctl=None)}

        await stop_running_phases(running)

        assert task.cancelled()
        assert unwound == [True]
