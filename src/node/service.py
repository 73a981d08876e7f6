# src/node/service.py
"""
Node Service - the control surface of one consensus node

Transport-independent implementation of status / message / start / stop /
getState. The FastAPI app in src/node/app.py is a thin HTTP layer over it.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Callable

import httpx

from src.config import get_settings
from src.ben_or import (
    Broadcaster,
    ConsensusEngine,
    EngineConfig,
    MessageStore,
    NodeState,
    Value,
    Vote,
    NodeFaultyError,
    NodeKilledError,
    ClusterNotReadyError,
)

logger = logging.getLogger("benor.node")

LIVE = "live"
FAULTY = "faulty"


@dataclass
class NodeConfig:
    """Identity of one node plus transport and protocol timings"""
    node_id: int
    total_nodes: int
    faulty_nodes: int
    initial_value: Value
    is_faulty: bool = False

    host: str = field(default_factory=lambda: get_settings().NODE_HOST)
    base_port: int = field(default_factory=lambda: get_settings().BASE_NODE_PORT)
    poll_interval: float = field(default_factory=lambda: get_settings().poll_interval)
    quorum_timeout: float = field(default_factory=lambda: get_settings().quorum_timeout)
    round_pause: float = field(default_factory=lambda: get_settings().round_pause)
    send_timeout: float = field(default_factory=lambda: get_settings().send_timeout)

    def __post_init__(self):
        if not 0 <= self.node_id < self.total_nodes:
            raise ValueError(f"node_id {self.node_id} outside [0, {self.total_nodes})")

    @property
    def port(self) -> int:
        return self.base_port + self.node_id

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            node_id=self.node_id,
            total_nodes=self.total_nodes,
            faulty_nodes=self.faulty_nodes,
            poll_interval=self.poll_interval,
            quorum_timeout=self.quorum_timeout,
            round_pause=self.round_pause,
        )


class NodeService:
    """
    One node: its state, vote buffer, broadcaster and engine.

    Harness hooks:
        is_cluster_ready()      consulted by start; False rejects the call
        announce_ready(node_id) called once the node is serving
    """

    def __init__(
        self,
        config: NodeConfig,
        client: Optional[httpx.AsyncClient] = None,
        is_cluster_ready: Optional[Callable[[], bool]] = None,
        announce_ready: Optional[Callable[[int], None]] = None,
        rng: Optional[random.Random] = None
    ):
        self.config = config
        self.state = NodeState.initial(config.initial_value, config.is_faulty)
        self.store = MessageStore()
        self.broadcaster = Broadcaster(
            node_id=config.node_id,
            total_nodes=config.total_nodes,
            base_port=config.base_port,
            host=config.host,
            send_timeout=config.send_timeout,
            client=client,
        )
        self.engine = ConsensusEngine(
            config.engine_config(),
            self.state,
            self.store,
            self.broadcaster,
            rng=rng,
        )
        self._is_cluster_ready = is_cluster_ready
        self._announce_ready = announce_ready
        self._announced = False

    @property
    def node_id(self) -> int:
        return self.config.node_id

    @property
    def is_faulty(self) -> bool:
        return self.config.is_faulty

    def status(self) -> str:
        return FAULTY if self.is_faulty else LIVE

    def receive_message(self, phase: int, round_number: int, value: Value, sender: int) -> bool:
        """
        Buffer a peer's vote.

        Returns:
            False if the vote arrived for an already consumed round
        """
        if self.state.killed:
            raise NodeKilledError(self.node_id)
        if self.is_faulty:
            raise NodeFaultyError(self.node_id)

        return self.store.put(Vote(value=value, sender=sender, phase=phase, round=round_number))

    def start(self) -> bool:
        """Start consensus in the background; a second call is a no-op"""
        if self.is_faulty:
            raise NodeFaultyError(self.node_id)
        if self.state.killed:
            raise NodeKilledError(self.node_id)
        if self._is_cluster_ready is not None and not self._is_cluster_ready():
            raise ClusterNotReadyError(self.node_id)

        return self.engine.start()

    def stop(self) -> None:
        self.engine.stop()

    def get_state(self) -> Dict[str, Any]:
        return self.state.to_dict()

    def get_health(self) -> Dict[str, Any]:
        health = self.engine.get_status()
        health["node_status"] = self.status()
        return health

    def mark_ready(self) -> None:
        """Announce readiness to the harness, once"""
        if self._announced:
            return
        self._announced = True
        logger.info(f"Node {self.node_id} is listening on port {self.config.port}")
        if self._announce_ready is not None:
            self._announce_ready(self.node_id)

    async def close(self) -> None:
        """Release transport resources; a running engine is stopped first"""
        if self.engine.is_running:
            self.engine.stop()
            await self.engine.wait_closed(timeout=self.config.quorum_timeout + self.config.send_timeout)
        await self.broadcaster.close()
