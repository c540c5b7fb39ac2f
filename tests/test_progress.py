"""Tests for progress message decoding, the channel registry and its router."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from reshard.errors import ProtocolViolation
from reshard.routers import progress_router
from reshard.workflow.progress import (
    MalformedProgressMessage,
    ProgressChannelRegistry,
    ProgressEndpointNotFound,
    ProgressError,
    ProgressFinished,
    ProgressInfo,
    decode_progress_message,
)


class TestDecode:

    def test_info_without_counts(self):
        msg = decode_progress_message({"message": "listing vnodes"})
        assert msg == ProgressInfo(message="listing vnodes")

    def test_info_with_counts(self):
        msg = decode_progress_message({"message": "remapping", "processed_units": 5, "total_units": 10})
        assert isinstance(msg, ProgressInfo)
        assert (msg.processed, msg.total) == (5, 10)

    def test_vnode_field_names_accepted(self):
        msg = decode_progress_message({"message": "remapping", "processed_vnodes": 1, "total_vnodes": 4})
        assert (msg.processed, msg.total) == (1, 4)

    def test_null_counts_are_absent(self):
        msg = decode_progress_message({"message": "x", "processed_units": None, "total_units": None})
        assert msg.processed is None and msg.total is None

    def test_error(self):
        msg = decode_progress_message({"message": "boom", "error": True})
        assert msg == ProgressError(message="boom")

    def test_finished(self):
        msg = decode_progress_message({"message": "done", "finished": True, "total_units": 1000})
        assert isinstance(msg, ProgressFinished)
        assert msg.total == 1000

    @pytest.mark.parametrize("body", [
        {"message": "x", "processed_units": 5},
        {"message": "x", "total_units": 5},
        {"message": "x", "error": True, "finished": True},
        {"message": "x", "processed_units": "lots", "total_units": 5},
        ["not", "an", "object"],
        "finished",
    ])
    def test_malformed(self, body):
        with pytest.raises(MalformedProgressMessage) as exc_info:
            decode_progress_message(body)
        assert exc_info.value.kind == "protocol_violation"


class TestRegistry:

    def test_endpoints_are_unique(self):
        registry = ProgressChannelRegistry("http://reshard.test/")
        first = registry.register(lambda m: None)
        second = registry.register(lambda m: None)

        assert first.token != second.token
        assert first.url == f"http://reshard.test/progress/{first.token}"
        assert registry.active_count == 2

    def test_dispatch_to_handler(self):
        received = []
        registry = ProgressChannelRegistry("http://reshard.test")
        endpoint = registry.register(received.append)

        registry.dispatch(endpoint.token, {"message": "hello"})

        assert received == [ProgressInfo(message="hello")]

    def test_unregistered_endpoint_not_found(self):
        registry = ProgressChannelRegistry("http://reshard.test")
        endpoint = registry.register(lambda m: None)
        registry.unregister(endpoint)

        with pytest.raises(ProgressEndpointNotFound):
            registry.dispatch(endpoint.token, {"message": "late"})

    def test_malformed_message_never_reaches_handler(self):
        received = []
        registry = ProgressChannelRegistry("http://reshard.test")
        endpoint = registry.register(received.append)

        with pytest.raises(MalformedProgressMessage):
            registry.dispatch(endpoint.token, {"message": "x", "total_units": 3})

        assert received == []


@pytest.fixture
def app_client():
    app = FastAPI()
    app.include_router(progress_router.router)
    app.state.progress_channels = ProgressChannelRegistry("http://testserver")
    return app, TestClient(app)


class TestProgressRouter:

    def test_accepted(self, app_client):
        app, client = app_client
        received = []
        endpoint = app.state.progress_channels.register(received.append)

        response = client.post(f"/progress/{endpoint.token}", json={"message": "remapping"})

        assert response.status_code == 204
        assert received == [ProgressInfo(message="remapping")]

    def test_unknown_endpoint(self, app_client):
        _, client = app_client

        response = client.post("/progress/nope", json={"message": "x"})

        assert response.status_code == 404

    def test_malformed_payload(self, app_client):
        app, client = app_client
        endpoint = app.state.progress_channels.register(lambda m: None)

        response = client.post(f"/progress/{endpoint.token}", json={"message": "x", "processed_units": 1})

        assert response.status_code == 422

    def test_invalid_json(self, app_client):
        app, client = app_client
        endpoint = app.state.progress_channels.register(lambda m: None)

        response = client.post(
            f"/progress/{endpoint.token}",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    def test_message_after_terminal(self, app_client):
        app, client = app_client

        def handler(message):
            raise ProtocolViolation("progress message after test-remote.sh resolved")

        endpoint = app.state.progress_channels.register(handler)

        response = client.post(f"/progress/{endpoint.token}", json={"message": "again", "finished": True})

        assert response.status_code == 409
