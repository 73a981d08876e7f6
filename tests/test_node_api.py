"""
Node API Tests - status / message / start / stop / getState over HTTP
"""

import httpx
import pytest
import pytest_asyncio

from src.node import NodeService, NodeConfig, create_app
from src.middleware.correlation import HEADER_NAME

from conftest import make_node_config


def build_service(values, node_id=0, max_faulty=0, faulty=(), **kwargs) -> NodeService:
    config = make_node_config(node_id, values, max_faulty, faulty)
    return NodeService(config, **kwargs)


@pytest_asyncio.fixture
async def api():
    """Return a function that wraps a NodeService in an in-process client"""
    clients = []
    services = []

    def factory(service: NodeService) -> httpx.AsyncClient:
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=create_app(service)),
            base_url="http://node.test",
        )
        clients.append(client)
        services.append(service)
        return client

    yield factory

    for service in services:
        await service.close()
    for client in clients:
        await client.aclose()


class TestStatus:
    """GET /status"""

    @pytest.mark.asyncio
    async def test_live_node(self, api):
        client = api(build_service([0, 1, 0]))

        response = await client.get("/status")

        assert response.status_code == 200
        assert response.text == "live"

    @pytest.mark.asyncio
    async def test_faulty_node_reports_unhealthy(self, api):
        client = api(build_service([0, 1, 0], node_id=1, max_faulty=1, faulty=[1]))

        response = await client.get("/status")

        assert response.status_code == 500
        assert response.text == "faulty"

    @pytest.mark.asyncio
    async def test_correlation_header_echoed(self, api):
        client = api(build_service([0, 1, 0]))

        response = await client.get("/status", headers={HEADER_NAME: "node-2-k4"})

        assert response.headers[HEADER_NAME] == "node-2-k4"


class TestMessage:
    """POST /message"""

    @pytest.mark.asyncio
    async def test_vote_is_buffered(self, api):
        service = build_service([0, 1, 0])
        client = api(service)

        response = await client.post("/message", json={"phase": 1, "round": 3, "value": 1, "from": 2})

        assert response.status_code == 200
        assert response.json() == {"success": True, "accepted": True}
        votes = service.store.get(1, 3)
        assert [(v.value, v.sender) for v in votes] == [(1, 2)]

    @pytest.mark.asyncio
    async def test_unknown_value_accepted(self, api):
        service = build_service([0, 1, 0])
        client = api(service)

        response = await client.post("/message", json={"phase": 2, "round": 0, "value": "?", "from": 1})

        assert response.status_code == 200
        assert service.store.get(2, 0)[0].value == "?"

    @pytest.mark.asyncio
    async def test_faulty_node_rejects(self, api):
        service = build_service([0, 1, 0], node_id=1, max_faulty=1, faulty=[1])
        client = api(service)

        response = await client.post("/message", json={"phase": 1, "round": 0, "value": 0, "from": 0})

        assert response.status_code == 500
        assert response.json()["error_code"] == "NODE_FAULTY"
        assert service.store.count(1, 0) == 0

    @pytest.mark.asyncio
    async def test_killed_node_rejects(self, api):
        service = build_service([0, 1, 0])
        client = api(service)
        await client.get("/stop")

        response = await client.post("/message", json={"phase": 1, "round": 0, "value": 0, "from": 1})

        assert response.status_code == 500
        assert response.json()["error_code"] == "NODE_KILLED"
        assert service.store.count(1, 0) == 0

    @pytest.mark.asyncio
    async def test_late_vote_acknowledged_but_dropped(self, api):
        service = build_service([0, 1, 0])
        service.store.clear(1, 0)
        client = api(service)

        response = await client.post("/message", json={"phase": 1, "round": 0, "value": 1, "from": 2})

        assert response.status_code == 200
        assert response.json()["accepted"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"phase": 3, "round": 0, "value": 0, "from": 1},
        {"phase": 1, "round": -1, "value": 0, "from": 1},
        {"phase": 1, "round": 0, "value": 2, "from": 1},
        {"phase": 1, "round": 0, "value": 0},
    ])
    async def test_malformed_vote_rejected(self, api, body):
        service = build_service([0, 1, 0])
        client = api(service)

        response = await client.post("/message", json=body)

        assert response.status_code == 422
        assert service.store.stats()["open_buckets"] == {}


class TestStartStop:
    """GET /start, GET /stop"""

    @pytest.mark.asyncio
    async def test_single_node_start_decides(self, api):
        client = api(build_service([1]))

        response = await client.get("/start")
        state = (await client.get("/getState")).json()

        assert response.status_code == 200
        assert response.json() == {"success": True, "started": True}
        assert state == {"killed": False, "x": 1, "decided": True, "k": 0}

    @pytest.mark.asyncio
    async def test_second_start_is_noop(self, api):
        client = api(build_service([1]))

        await client.get("/start")
        response = await client.get("/start")

        assert response.status_code == 200
        assert response.json() == {"success": True, "started": False}

    @pytest.mark.asyncio
    async def test_faulty_node_refuses_start(self, api):
        client = api(build_service([0, 1, 0], node_id=1, max_faulty=1, faulty=[1]))

        response = await client.get("/start")

        assert response.status_code == 500
        assert response.json()["error_code"] == "NODE_FAULTY"

    @pytest.mark.asyncio
    async def test_start_waits_for_cluster_readiness(self, api):
        ready = {"value": False}
        service = build_service([1], is_cluster_ready=lambda: ready["value"])
        client = api(service)

        response = await client.get("/start")
        assert response.status_code == 503
        assert response.json()["error_code"] == "CLUSTER_NOT_READY"
        assert service.state.decided is False

        ready["value"] = True
        response = await client.get("/start")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_impossible_configuration_reported(self, api):
        service = build_service([0, 1], max_faulty=1)
        client = api(service)

        response = await client.get("/start")

        assert response.status_code == 500
        assert response.json()["error_code"] == "IMPOSSIBLE_CONFIGURATION"
        health = (await client.get("/health")).json()
        assert health["status"] == "failed"

    @pytest.mark.asyncio
    async def test_stop_freezes_state(self, api):
        client = api(build_service([0, 1, 0]))

        response = await client.get("/stop")
        state = (await client.get("/getState")).json()

        assert response.json() == {"success": True}
        assert state == {"killed": True, "x": 0, "decided": False, "k": 0}

    @pytest.mark.asyncio
    async def test_start_after_stop_rejected(self, api):
        client = api(build_service([0, 1, 0]))
        await client.get("/stop")

        response = await client.get("/start")

        assert response.status_code == 500
        assert response.json()["error_code"] == "NODE_KILLED"


class TestGetState:
    """GET /getState"""

    @pytest.mark.asyncio
    async def test_initial_state(self, api):
        client = api(build_service([0, 1, 0], node_id=1))

        state = (await client.get("/getState")).json()

        assert state == {"killed": False, "x": 1, "decided": False, "k": 0}

    @pytest.mark.asyncio
    async def test_faulty_state_is_null(self, api):
        client = api(build_service([0, 1, 0], node_id=1, max_faulty=1, faulty=[1]))

        state = (await client.get("/getState")).json()

        assert state == {"killed": False, "x": None, "decided": None, "k": None}


class TestReadiness:
    """announce_ready hook"""

    def test_announce_once(self):
        announced = []
        service = build_service([0, 1], announce_ready=announced.append)

        service.mark_ready()
        service.mark_ready()

        assert announced == [0]

    def test_node_id_must_be_in_range(self):
        with pytest.raises(ValueError, match="outside"):
            NodeConfig(node_id=3, total_nodes=3, faulty_nodes=0, initial_value=0)
