#!/usr/bin/env python3
"""
Ben-Or Network Launcher

Starts N nodes in one process (one uvicorn server per node on
BASE_NODE_PORT + id), waits for every node to announce readiness, starts
consensus over HTTP and polls /getState until every honest node has
decided or the deadline passes.

Example:
    python scripts/launch_network.py --values 0,1,0,0 --faulty 1 --max-faulty 1
"""

import argparse
import asyncio
import logging
import logging.config
import sys
from pathlib import Path
from typing import Dict, Any, List, Set, Tuple, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import aiohttp
import uvicorn

from src.config import get_settings
from src.node import NodeService, NodeConfig, create_app

logger = logging.getLogger("benor.harness")


class ReadinessRegistry:
    """Collects announce_ready calls from the nodes"""

    def __init__(self, total_nodes: int):
        self.total_nodes = total_nodes
        self._ready: Set[int] = set()

    def announce_ready(self, node_id: int) -> None:
        self._ready.add(node_id)
        logger.debug(f"Node {node_id} ready ({len(self._ready)}/{self.total_nodes})")

    def is_cluster_ready(self) -> bool:
        return len(self._ready) >= self.total_nodes


class NetworkHarness:
    """Runs a whole cluster of nodes inside one event loop"""

    def __init__(
        self,
        initial_values: List[int],
        faulty: Set[int],
        max_faulty: int,
        base_port: int,
        host: str = "localhost"
    ):
        self.initial_values = initial_values
        self.faulty = faulty
        self.max_faulty = max_faulty
        self.base_port = base_port
        self.host = host
        self.total_nodes = len(initial_values)

        self.registry = ReadinessRegistry(self.total_nodes)
        self.services: List[NodeService] = []
        self.servers: List[uvicorn.Server] = []
        self._server_tasks: List[asyncio.Task] = []

    def build(self) -> None:
        for node_id, value in enumerate(self.initial_values):
            config = NodeConfig(
                node_id=node_id,
                total_nodes=self.total_nodes,
                faulty_nodes=self.max_faulty,
                initial_value=value,
                is_faulty=node_id in self.faulty,
                host=self.host,
                base_port=self.base_port,
            )
            service = NodeService(
                config,
                is_cluster_ready=self.registry.is_cluster_ready,
                announce_ready=self.registry.announce_ready,
            )
            server = uvicorn.Server(uvicorn.Config(
                create_app(service),
                host=self.host,
                port=config.port,
                log_level="warning",
                lifespan="on",
            ))
            self.services.append(service)
            self.servers.append(server)

    def url(self, node_id: int) -> str:
        return f"http://{self.host}:{self.base_port + node_id}"

    async def launch(self, ready_timeout: float = 10.0) -> None:
        """Serve every node and wait until all are listening"""
        self._server_tasks = [asyncio.create_task(server.serve()) for server in self.servers]

        loop = asyncio.get_running_loop()
        deadline = loop.time() + ready_timeout
        while not (self.registry.is_cluster_ready() and all(s.started for s in self.servers)):
            if loop.time() > deadline:
                raise RuntimeError(f"Cluster not ready after {ready_timeout}s")
            await asyncio.sleep(0.05)

        logger.info(f"{self.total_nodes} nodes listening from port {self.base_port}")

    async def shutdown(self) -> None:
        for server in self.servers:
            server.should_exit = True
        await asyncio.gather(*self._server_tasks, return_exceptions=True)

    async def _get(
        self,
        session: aiohttp.ClientSession,
        node_id: int,
        path: str
    ) -> Tuple[int, Any]:
        async with session.get(f"{self.url(node_id)}{path}") as response:
            if response.content_type == "application/json":
                return response.status, await response.json()
            return response.status, await response.text()

    async def start_consensus(self, session: aiohttp.ClientSession) -> None:
        results = await asyncio.gather(
            *(self._get(session, node_id, "/start") for node_id in range(self.total_nodes))
        )
        for node_id, (status, payload) in enumerate(results):
            if status != 200:
                logger.info(f"Node {node_id} refused start: HTTP {status} {payload}")

    async def get_states(self, session: aiohttp.ClientSession) -> Dict[int, Dict[str, Any]]:
        results = await asyncio.gather(
            *(self._get(session, node_id, "/getState") for node_id in range(self.total_nodes))
        )
        return {node_id: payload for node_id, (_, payload) in enumerate(results)}

    async def wait_for_decisions(
        self,
        session: aiohttp.ClientSession,
        timeout: float
    ) -> Dict[int, Dict[str, Any]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        honest = [i for i in range(self.total_nodes) if i not in self.faulty]

        while True:
            states = await self.get_states(session)
            if all(states[i]["decided"] for i in honest) or loop.time() > deadline:
                return states
            await asyncio.sleep(0.1)

    async def stop_consensus(self, session: aiohttp.ClientSession) -> None:
        await asyncio.gather(
            *(self._get(session, node_id, "/stop") for node_id in range(self.total_nodes))
        )

    async def run(self, timeout: float) -> Dict[int, Dict[str, Any]]:
        self.build()
        await self.launch()
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=5)) as session:
                await self.start_consensus(session)
                states = await self.wait_for_decisions(session, timeout)
                await self.stop_consensus(session)
                return states
        finally:
            await self.shutdown()


def summarize(states: Dict[int, Dict[str, Any]], faulty: Set[int]) -> bool:
    """Print a per-node table; True when every honest node decided the same value"""
    print(f"{'node':>4}  {'faulty':>6}  {'x':>4}  {'decided':>7}  {'k':>4}")
    for node_id, state in sorted(states.items()):
        print(
            f"{node_id:>4}  {str(node_id in faulty):>6}  {str(state['x']):>4}  "
            f"{str(state['decided']):>7}  {str(state['k']):>4}"
        )

    honest = [state for node_id, state in states.items() if node_id not in faulty]
    decided_values = {state["x"] for state in honest if state["decided"]}
    all_decided = all(state["decided"] for state in honest)

    if all_decided and len(decided_values) == 1:
        print(f"Agreement on {decided_values.pop()}")
        return True
    print(f"No agreement: decided values={sorted(map(str, decided_values))}, all_decided={all_decided}")
    return False


def parse_int_list(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    return [int(item) for item in raw.split(",") if item.strip()]


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run a Ben-Or consensus cluster locally")
    parser.add_argument(
        "--values",
        type=str,
        default="0,1,0,0",
        help="Comma separated initial values, one per node. Default: 0,1,0,0"
    )
    parser.add_argument(
        "--faulty",
        type=str,
        default="",
        help="Comma separated ids of faulty nodes. Default: none"
    )
    parser.add_argument(
        "--max-faulty",
        type=int,
        default=None,
        help="Fault bound F used for thresholds. Default: number of faulty nodes"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Seconds to wait for all honest nodes to decide. Default: 10"
    )
    parser.add_argument(
        "--base-port",
        type=int,
        default=settings.BASE_NODE_PORT,
        help=f"Port of node 0. Default: {settings.BASE_NODE_PORT}"
    )

    args = parser.parse_args()
    logging.config.dictConfig(settings.get_log_config())

    values = parse_int_list(args.values)
    faulty = set(parse_int_list(args.faulty))
    max_faulty = args.max_faulty if args.max_faulty is not None else len(faulty)

    harness = NetworkHarness(
        initial_values=values,
        faulty=faulty,
        max_faulty=max_faulty,
        base_port=args.base_port,
        host=settings.NODE_HOST,
    )

    try:
        states = asyncio.run(harness.run(args.timeout))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(1)

    sys.exit(0 if summarize(states, faulty) else 1)


if __name__ == "__main__":
    main()
