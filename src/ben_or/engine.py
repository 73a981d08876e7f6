# src/ben_or/engine.py
"""
Consensus Engine - Ben-Or randomized binary consensus, one node

Each round k runs two phases strictly in sequence:

Phase 1 (propagate & filter)
    broadcast x, wait for n-f votes, then x := v if v holds a strict
    majority (floor(n/2)+1) of the binary votes seen, else x := "?"

Phase 2 (decide, adopt or randomize)
    broadcast x, wait for n-f votes, then in order:
    - decide v   if count(v) >= floor((n-f)/2)+1 and own x == v
    - adopt v    if count(v) >= floor((n-f)/3)+1
    - otherwise  x := random bit

The loop ends only when the node decides or is stopped.
"""

import asyncio
import logging
import random
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Callable, Iterable, Tuple

from src.middleware.correlation import bind_correlation_id, round_correlation_id

from .errors import NodeKilledError, ImpossibleConfigurationError
from .message_store import MessageStore
from .quorum import QuorumCalculator, QuorumWaiter
from .state import NodeState, Value, UNKNOWN, is_binary, is_vote

logger = logging.getLogger("benor.engine")

PHASE_ONE = 1
PHASE_TWO = 2


class EngineStatus(str, Enum):
    """Engine lifecycle"""
    IDLE = "idle"              # Constructed, start not called yet
    RUNNING = "running"        # Executing rounds
    DECIDED = "decided"        # Decision fixed, terminal
    KILLED = "killed"          # Stopped externally, terminal
    FAILED = "failed"          # Impossible configuration, terminal


class PhaseTwoOutcome(str, Enum):
    """Which phase 2 rule fired"""
    DECIDED = "decided"
    ADOPTED = "adopted"
    RANDOMIZED = "randomized"


@dataclass
class EngineConfig:
    """Cluster shape and timings (seconds) for one engine"""
    node_id: int
    total_nodes: int
    faulty_nodes: int = 0
    poll_interval: float = 0.01
    quorum_timeout: float = 0.2
    round_pause: float = 0.01


def filter_majority(own: Value, received: Iterable[Value], quorum: QuorumCalculator) -> Value:
    """Phase 1 rule: the binary value holding a majority, else UNKNOWN"""
    counts = Counter(value for value in [own, *received] if is_binary(value))
    if counts[0] >= quorum.majority_threshold:
        return 0
    if counts[1] >= quorum.majority_threshold:
        return 1
    return UNKNOWN


def resolve_phase_two(
    own: Value,
    received: Iterable[Value],
    quorum: QuorumCalculator,
    rng: random.Random
) -> Tuple[Value, PhaseTwoOutcome]:
    """Phase 2 rule, evaluated in priority order"""
    counts = Counter(value for value in [own, *received] if is_vote(value))

    for value in (0, 1):
        if counts[value] >= quorum.decision_threshold and is_binary(own) and own == value:
            return value, PhaseTwoOutcome.DECIDED
    for value in (0, 1):
        if counts[value] >= quorum.adoption_threshold:
            return value, PhaseTwoOutcome.ADOPTED
    return rng.randint(0, 1), PhaseTwoOutcome.RANDOMIZED


class ConsensusEngine:
    """
    Round/phase state machine for one node.

    Owns the node's NodeState; the MessageStore is filled by the control
    surface and read and cleared here. Everything runs on the event loop,
    so the state has a single writer.
    """

    def __init__(
        self,
        config: EngineConfig,
        state: NodeState,
        store: MessageStore,
        broadcaster: Any,
        rng: Optional[random.Random] = None
    ):
        self.config = config
        self.state = state
        self.store = store
        self.broadcaster = broadcaster
        self.quorum = QuorumCalculator(
            total_nodes=config.total_nodes,
            faulty_nodes=config.faulty_nodes
        )
        self.waiter = QuorumWaiter(
            store,
            poll_interval=config.poll_interval,
            timeout=config.quorum_timeout,
            is_killed=lambda: self.state.killed
        )
        self._rng = rng or random.Random()

        self.status = EngineStatus.IDLE
        self.rounds_completed = 0
        self.random_fallbacks = 0
        self.started_at: Optional[datetime] = None
        self.decided_at: Optional[datetime] = None

        self._task: Optional[asyncio.Task] = None
        self._decision_callbacks: List[Callable] = []

    @property
    def node_id(self) -> int:
        return self.config.node_id

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and self.status == EngineStatus.RUNNING

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """
        Launch the round loop in the background.

        Returns:
            True if this call started consensus, False if it was already
            running or already decided

        Raises:
            NodeKilledError: node was stopped
            ImpossibleConfigurationError: f >= n/2, engine moves to FAILED
        """
        if self.state.killed:
            raise NodeKilledError(self.node_id)

        if self.status in (EngineStatus.RUNNING, EngineStatus.DECIDED):
            logger.debug(f"Node {self.node_id}: start ignored, engine already {self.status.value}")
            return False

        if self.status == EngineStatus.FAILED or not self.quorum.is_viable:
            self.status = EngineStatus.FAILED
            logger.error(
                f"Node {self.node_id}: impossible configuration "
                f"n={self.quorum.n}, f={self.quorum.f}"
            )
            raise ImpossibleConfigurationError(self.node_id, self.quorum.n, self.quorum.f)

        self.started_at = datetime.utcnow()

        if self.quorum.n == 1:
            # A lone honest node agrees with itself
            self._record_decision(self.state.x)
            self._task = asyncio.create_task(self._notify_decision())
            return True

        self.status = EngineStatus.RUNNING
        self._task = asyncio.create_task(self.run(), name=f"ben-or-node-{self.node_id}")
        logger.info(
            f"Node {self.node_id} consensus started: x={self.state.x}, "
            f"n={self.quorum.n}, f={self.quorum.f}, quorum={self.quorum.quorum_size}"
        )
        return True

    def stop(self) -> None:
        """Mark the node killed; the loop halts at its next check"""
        if self.state.killed:
            return
        self.state.killed = True
        if self.status in (EngineStatus.IDLE, EngineStatus.RUNNING):
            self.status = EngineStatus.KILLED
        logger.info(f"Node {self.node_id} stopped at round {self.state.k}")

    async def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Wait for the background loop to exit. Returns True if it has."""
        if self._task is None:
            return True
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        return bool(done)

    # =========================================================================
    # Protocol
    # =========================================================================

    async def run(self) -> None:
        """Round loop; exits once decided or killed"""
        try:
            while self.state.is_active:
                await self.run_round()
                if not self.state.is_active:
                    break
                self.state.k += 1
                await asyncio.sleep(self.config.round_pause)
        except Exception:
            self.status = EngineStatus.FAILED
            logger.exception(f"Node {self.node_id} consensus loop crashed at round {self.state.k}")
            raise

        if self.state.killed and self.status == EngineStatus.RUNNING:
            self.status = EngineStatus.KILLED

    async def run_round(self) -> None:
        """Execute phase 1 then phase 2 of the current round"""
        bind_correlation_id(round_correlation_id(self.node_id, self.state.k))
        logger.debug(f"Node {self.node_id} round {self.state.k} started: x={self.state.x}")

        await self._phase_one()
        await self._phase_two()

        if not self.state.killed:
            self.rounds_completed += 1

    async def _phase_one(self) -> None:
        if not self.state.is_active:
            return
        k = self.state.k

        await self.broadcaster.broadcast(PHASE_ONE, k, self.state.x)
        await self.waiter.wait_for_quorum(PHASE_ONE, k, self.quorum.quorum_size)
        if self.state.killed:
            return

        received = [vote.value for vote in self.store.get(PHASE_ONE, k)]
        self.state.x = filter_majority(self.state.x, received, self.quorum)
        self.store.clear(PHASE_ONE, k)

        logger.debug(
            f"Node {self.node_id} round {k} phase 1: "
            f"{len(received)} votes, x={self.state.x}"
        )

    async def _phase_two(self) -> None:
        if not self.state.is_active:
            return
        k = self.state.k

        await self.broadcaster.broadcast(PHASE_TWO, k, self.state.x)
        await self.waiter.wait_for_quorum(PHASE_TWO, k, self.quorum.quorum_size)
        if self.state.killed:
            return

        received = [vote.value for vote in self.store.get(PHASE_TWO, k)]
        value, outcome = resolve_phase_two(self.state.x, received, self.quorum, self._rng)
        self.store.clear(PHASE_TWO, k)

        logger.debug(
            f"Node {self.node_id} round {k} phase 2: "
            f"{len(received)} votes, {outcome.value} x={value}"
        )

        if outcome == PhaseTwoOutcome.DECIDED:
            self._record_decision(value)
            await self._notify_decision()
            return

        if outcome == PhaseTwoOutcome.RANDOMIZED:
            self.random_fallbacks += 1
        self.state.x = value

    def _record_decision(self, value: Value) -> None:
        self.state.x = value
        self.state.decided = True
        self.status = EngineStatus.DECIDED
        self.decided_at = datetime.utcnow()

        duration_ms = 0.0
        if self.started_at:
            duration_ms = (self.decided_at - self.started_at).total_seconds() * 1000
        logger.info(
            f"Node {self.node_id} DECIDED: value={value}, round={self.state.k}, "
            f"duration={duration_ms:.1f}ms"
        )

    # =========================================================================
    # Callbacks
    # =========================================================================

    def on_decision(self, callback: Callable) -> None:
        """Register callback(value, round) invoked once on decision"""
        self._decision_callbacks.append(callback)

    async def _notify_decision(self) -> None:
        for callback in self._decision_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(self.state.x, self.state.k)
                else:
                    callback(self.state.x, self.state.k)
            except Exception as e:
                logger.error(f"Decision callback error: {e}")

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Engine status for the /health endpoint"""
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "round": self.state.k,
            "x": self.state.x,
            "decided": self.state.decided,
            "rounds_completed": self.rounds_completed,
            "random_fallbacks": self.random_fallbacks,
            "quorum": self.quorum.to_dict(),
            "messages": self.store.stats(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "timestamp": datetime.utcnow().isoformat(),
        }
