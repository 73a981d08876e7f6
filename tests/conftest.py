"""
pytest configuration for the Ben-Or node test suite

Cluster tests run every node's FastAPI app in process: peer traffic goes
through ClusterTransport, which dispatches each request to the app whose
port matches, so no sockets are opened.
"""

import asyncio
import random
from typing import Dict, List, Iterable, Optional

import httpx
import pytest
import pytest_asyncio

from src.node import NodeService, NodeConfig, create_app

BASE_PORT = 4100

# Short timings keep cluster tests quick
FAST_TIMINGS = {
    "poll_interval": 0.005,
    "quorum_timeout": 0.1,
    "round_pause": 0.005,
    "send_timeout": 1.0,
}


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "asyncio: mark test as async")


class ClusterTransport(httpx.AsyncBaseTransport):
    """Routes requests to in-process node apps by port; unknown ports refuse"""

    def __init__(self):
        self._transports: Dict[int, httpx.ASGITransport] = {}

    def register(self, port: int, app) -> None:
        self._transports[port] = httpx.ASGITransport(app=app)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        transport = self._transports.get(request.url.port)
        if transport is None:
            raise httpx.ConnectError(f"Connection refused: {request.url}", request=request)
        return await transport.handle_async_request(request)


def make_node_config(
    node_id: int,
    values: List,
    max_faulty: int,
    faulty: Iterable[int] = (),
    **overrides
) -> NodeConfig:
    timings = dict(FAST_TIMINGS)
    timings.update(overrides)
    return NodeConfig(
        node_id=node_id,
        total_nodes=len(values),
        faulty_nodes=max_faulty,
        initial_value=values[node_id],
        is_faulty=node_id in set(faulty),
        host="localhost",
        base_port=BASE_PORT,
        **timings
    )


class Cluster:
    """A set of nodes wired together through one ClusterTransport"""

    def __init__(
        self,
        values: List,
        faulty: Iterable[int] = (),
        max_faulty: Optional[int] = None,
        seed: Optional[int] = None
    ):
        self.values = values
        self.faulty = set(faulty)
        self.max_faulty = len(self.faulty) if max_faulty is None else max_faulty
        self.transport = ClusterTransport()
        self.client = httpx.AsyncClient(transport=self.transport)
        self.services: List[NodeService] = []

        for node_id in range(len(values)):
            config = make_node_config(node_id, values, self.max_faulty, self.faulty)
            rng = random.Random(seed * 1000 + node_id) if seed is not None else None
            service = NodeService(config, client=self.client, rng=rng)
            self.transport.register(config.port, create_app(service))
            self.services.append(service)

    @property
    def honest(self) -> List[int]:
        return [i for i in range(len(self.values)) if i not in self.faulty]

    def url(self, node_id: int) -> str:
        return f"http://localhost:{BASE_PORT + node_id}"

    async def get(self, node_id: int, path: str) -> httpx.Response:
        return await self.client.get(f"{self.url(node_id)}{path}")

    async def start_all(self) -> List[httpx.Response]:
        return await asyncio.gather(*(self.get(i, "/start") for i in range(len(self.values))))

    async def states(self) -> List[dict]:
        responses = await asyncio.gather(*(self.get(i, "/getState") for i in range(len(self.values))))
        return [response.json() for response in responses]

    async def wait_for_decisions(self, timeout: float = 10.0) -> List[dict]:
        """Poll /getState until every honest node decided or timeout"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            states = await self.states()
            if all(states[i]["decided"] for i in self.honest) or loop.time() > deadline:
                return states
            await asyncio.sleep(0.02)

    async def close(self) -> None:
        for service in self.services:
            service.stop()
        for service in self.services:
            await service.engine.wait_closed(timeout=2.0)
        await self.client.aclose()


@pytest_asyncio.fixture
async def cluster_factory():
    """Build clusters that are stopped and closed after the test"""
    clusters: List[Cluster] = []

    def factory(values, faulty=(), max_faulty=None, seed=None) -> Cluster:
        cluster = Cluster(values, faulty=faulty, max_faulty=max_faulty, seed=seed)
        clusters.append(cluster)
        return cluster

    yield factory

    for cluster in clusters:
        await cluster.close()
