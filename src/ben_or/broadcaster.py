# src/ben_or/broadcaster.py
"""
Broadcaster - best-effort fan-out of a node's vote to every peer

Each peer send runs as its own task; a failure (unreachable peer, timeout,
rejection by a faulty or killed peer) is caught inside that task and only
logged. The broadcast returns once every send has settled.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

import httpx

from src.middleware.correlation import HEADER_NAME, get_correlation_id

from .state import Value

logger = logging.getLogger("benor.broadcaster")


@dataclass
class BroadcastResult:
    """Which peers accepted a vote"""
    phase: int
    round: int
    delivered: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "round": self.round,
            "delivered": self.delivered,
            "failed": self.failed,
        }


class Broadcaster:
    """
    Sends votes to peers addressed as http://{host}:{base_port + peer_id}.

    The httpx client is created lazily and may be injected (tests route it
    through an in-process transport).
    """

    def __init__(
        self,
        node_id: int,
        total_nodes: int,
        base_port: int,
        host: str = "localhost",
        send_timeout: float = 1.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.node_id = node_id
        self.total_nodes = total_nodes
        self.base_port = base_port
        self.host = host
        self.send_timeout = send_timeout
        self._client = client
        self._owns_client = client is None

    @property
    def peers(self) -> List[int]:
        return [peer for peer in range(self.total_nodes) if peer != self.node_id]

    def peer_url(self, peer_id: int) -> str:
        return f"http://{self.host}:{self.base_port + peer_id}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx async client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the httpx client if this broadcaster created it"""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.debug(f"Broadcaster for node {self.node_id} closed")

    async def _send(self, client: httpx.AsyncClient, peer_id: int, payload: Dict[str, Any]) -> bool:
        try:
            response = await client.post(
                f"{self.peer_url(peer_id)}/message",
                json=payload,
                headers={HEADER_NAME: get_correlation_id()},
                timeout=httpx.Timeout(self.send_timeout),
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.debug(
                f"Vote to node {peer_id} not delivered "
                f"(phase={payload['phase']}, round={payload['round']}): {type(e).__name__}"
            )
            return False

    async def broadcast(self, phase: int, round_number: int, value: Value) -> BroadcastResult:
        """Send (phase, round, value) to every peer except self"""
        payload = {
            "phase": phase,
            "round": round_number,
            "value": value,
            "from": self.node_id,
        }
        peers = self.peers
        result = BroadcastResult(phase=phase, round=round_number)
        if not peers:
            return result

        client = await self._get_client()
        outcomes = await asyncio.gather(*(self._send(client, peer, payload) for peer in peers))

        for peer, delivered in zip(peers, outcomes):
            if delivered:
                result.delivered.append(peer)
            else:
                result.failed.append(peer)
        return result
