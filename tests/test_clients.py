"""Tests for the collaborator HTTP clients using httpx.MockTransport."""

import json

import httpx
import pytest

from reshard.clients import ImgapiClient, SapiClient, ZoneExecClient
from reshard.errors import CollaboratorError, TransportTimeout


def transport(routes):
    """Route (method, path) to a handler returning an httpx.Response."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return routes[(request.method, request.url.path)](request)

    mock = httpx.MockTransport(handler)
    mock.requests = requests
    return mock


class TestSapiClient:

    @pytest.mark.asyncio
    async def test_get_application(self):
        mock = transport({
            ("GET", "/applications"): lambda r: httpx.Response(200, json=[{
                "uuid": "app-1",
                "owner_uuid": "owner-1",
                "metadata": {"HASH_RING_IMAGE": "img-1"},
            }]),
        })

        async with SapiClient("http://sapi.test", transport=mock) as sapi:
            app = await sapi.get_application("manta")

        assert app.uuid == "app-1"
        assert app.owner_uuid == "owner-1"
        assert app.metadata["HASH_RING_IMAGE"] == "img-1"
        assert mock.requests[0].url.params["name"] == "manta"

    @pytest.mark.asyncio
    async def test_get_application_requires_exactly_one(self):
        mock = transport({("GET", "/applications"): lambda r: httpx.Response(200, json=[])})

        async with SapiClient("http://sapi.test", transport=mock) as sapi:
            with pytest.raises(CollaboratorError):
                await sapi.get_application("manta")

    @pytest.mark.asyncio
    async def test_list_instances(self):
        mock = transport({
            ("GET", "/services"): lambda r: httpx.Response(200, json=[{"uuid": "svc-1"}]),
            ("GET", "/instances"): lambda r: httpx.Response(200, json=[
                {"uuid": "inst-b", "params": {"server_uuid": "cn-1"}},
                {"uuid": "inst-a"},
            ]),
        })

        async with SapiClient("http://sapi.test", transport=mock) as sapi:
            instances = await sapi.list_instances("electric-moray", "app-1")

        assert set(instances) == {"inst-a", "inst-b"}
        assert instances["inst-b"].server_uuid == "cn-1"
        assert instances["inst-a"].service_name == "electric-moray"
        assert mock.requests[1].url.params["service_uuid"] == "svc-1"

    @pytest.mark.asyncio
    async def test_http_error_is_collaborator_error(self):
        mock = transport({("GET", "/applications"): lambda r: httpx.Response(503)})

        async with SapiClient("http://sapi.test", transport=mock) as sapi:
            with pytest.raises(CollaboratorError) as exc_info:
                await sapi.get_application("manta")

        assert exc_info.value.info["status_code"] == 503
        assert exc_info.value.kind == "collaborator_error"


class TestImgapiClient:

    @pytest.mark.asyncio
    async def test_list_images(self):
        mock = transport({
            ("GET", "/images"): lambda r: httpx.Response(200, json=[{
                "uuid": "img-1",
                "name": "manta-hash-ring",
                "owner": "owner-1",
                "tags": {"manta_reshard_plan": "plan-1"},
            }]),
        })

        async with ImgapiClient("http://imgapi.test", transport=mock) as imgapi:
            images = await imgapi.list_images("manta-hash-ring", "owner-1")

        assert images[0].tags == {"manta_reshard_plan": "plan-1"}
        params = mock.requests[0].url.params
        assert params["name"] == "manta-hash-ring"
        assert params["owner"] == "owner-1"

    @pytest.mark.asyncio
    async def test_get_missing_image(self):
        mock = transport({("GET", "/images/img-9"): lambda r: httpx.Response(404)})

        async with ImgapiClient("http://imgapi.test", transport=mock) as imgapi:
            with pytest.raises(CollaboratorError):
                await imgapi.get_image("img-9")


class TestZoneExecClient:

    @pytest.mark.asyncio
    async def test_execute(self):
        def handle(request):
            body = json.loads(request.content)
            assert body["target"] == "zone-1"
            assert body["script"] == "echo hi"
            return httpx.Response(200, json={"exit_status": 0, "stdout": "hi\n", "stderr": ""})

        mock = transport({("POST", "/execute"): handle})

        async with ZoneExecClient("http://exec.test", transport_timeout=5, transport=mock) as ex:
            res = await ex.execute("zone-1", "echo hi")

        assert res.exit_status == 0
        assert res.stdout == "hi\n"

    @pytest.mark.asyncio
    async def test_http_timeout_is_transport_timeout(self):
        def handle(request):
            raise httpx.ReadTimeout("timed out", request=request)

        mock = transport({("POST", "/execute"): handle})

        async with ZoneExecClient("http://exec.test", transport=mock) as ex:
            with pytest.raises(TransportTimeout) as exc_info:
                await ex.execute("zone-1", "sleep 1000")

        assert exc_info.value.kind == "transport_timeout"
        assert isinstance(exc_info.value, CollaboratorError)

    @pytest.mark.asyncio
    async def test_exec_service_timeout_flag(self):
        mock = transport({
            ("POST", "/execute"): lambda r: httpx.Response(200, json={"exec_timeout": True}),
        })

        async with ZoneExecClient("http://exec.test", transport=mock) as ex:
            with pytest.raises(TransportTimeout):
                await ex.execute("zone-1", "sleep 1000")

    @pytest.mark.asyncio
    async def test_connection_error_is_not_a_timeout(self):
        def handle(request):
            raise httpx.ConnectError("refused", request=request)

        mock = transport({("POST", "/execute"): handle})

        async with ZoneExecClient("http://exec.test", transport=mock) as ex:
            with pytest.raises(CollaboratorError) as exc_info:
                await ex.execute("zone-1", "true")

        assert not isinstance(exc_info.value, TransportTimeout)

    @pytest.mark.asyncio
    async def test_reply_without_exit_status(self):
        mock = transport({("POST", "/execute"): lambda r: httpx.Response(200, json={})})

        async with ZoneExecClient("http://exec.test", transport=mock) as ex:
            with pytest.raises(CollaboratorError):
                await ex.execute("zone-1", "true")
