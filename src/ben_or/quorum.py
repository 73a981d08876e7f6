# src/ben_or/quorum.py
"""
Quorum - threshold arithmetic and the bounded quorum wait

Thresholds for n nodes of which at most f are faulty:
- quorum             = n - f            (votes awaited per phase)
- majority           = floor(n/2) + 1   (phase 1 filter)
- decision           = floor((n-f)/2) + 1
- adoption           = floor((n-f)/3) + 1

For n=4, f=1: quorum=3, majority=3, decision=2, adoption=2.
The protocol can only converge while f < n/2.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Dict, Any

from .message_store import MessageStore

logger = logging.getLogger("benor.quorum")


class QuorumStatus(str, Enum):
    """Outcome of a quorum wait"""
    ACHIEVED = "achieved"      # Enough votes arrived
    TIMED_OUT = "timed_out"    # Deadline passed, caller proceeds with what it has
    ABORTED = "aborted"        # Node killed mid-wait


@dataclass
class QuorumCalculator:
    """Thresholds for a cluster of total_nodes tolerating faulty_nodes"""

    total_nodes: int
    faulty_nodes: int = 0

    def __post_init__(self):
        if self.total_nodes < 1:
            raise ValueError(f"A cluster needs at least one node, got {self.total_nodes}")
        if self.faulty_nodes < 0:
            raise ValueError(f"Faulty node count cannot be negative, got {self.faulty_nodes}")

    @property
    def n(self) -> int:
        return self.total_nodes

    @property
    def f(self) -> int:
        return self.faulty_nodes

    @property
    def non_faulty(self) -> int:
        return self.total_nodes - self.faulty_nodes

    @property
    def quorum_size(self) -> int:
        """Votes awaited before a phase proceeds (n - f)"""
        return self.non_faulty

    @property
    def majority_threshold(self) -> int:
        return self.total_nodes // 2 + 1

    @property
    def decision_threshold(self) -> int:
        return self.non_faulty // 2 + 1

    @property
    def adoption_threshold(self) -> int:
        return self.non_faulty // 3 + 1

    @property
    def is_viable(self) -> bool:
        """Whether an honest majority can exist (f < n/2)"""
        return 2 * self.faulty_nodes < self.total_nodes

    def has_quorum(self, votes: int) -> bool:
        return votes >= self.quorum_size

    def votes_needed(self, current_votes: int) -> int:
        return max(0, self.quorum_size - current_votes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "faulty_nodes": self.faulty_nodes,
            "quorum_size": self.quorum_size,
            "majority_threshold": self.majority_threshold,
            "decision_threshold": self.decision_threshold,
            "adoption_threshold": self.adoption_threshold,
            "viable": self.is_viable,
        }


class QuorumWaiter:
    """
    Polls a MessageStore until a (phase, round) bucket holds enough votes.

    Every wait is bounded by the timeout and returns early once the node
    is killed. It never raises: a timeout is the normal path when faulty
    or slow peers stay silent.
    """

    def __init__(
        self,
        store: MessageStore,
        poll_interval: float = 0.01,
        timeout: float = 0.2,
        is_killed: Optional[Callable[[], bool]] = None
    ):
        self.store = store
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._is_killed = is_killed or (lambda: False)

    async def wait_for_quorum(
        self,
        phase: int,
        round_number: int,
        required: int,
        timeout: Optional[float] = None
    ) -> QuorumStatus:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.timeout if timeout is None else timeout)

        while True:
            if self._is_killed():
                return QuorumStatus.ABORTED
            if self.store.count(phase, round_number) >= required:
                return QuorumStatus.ACHIEVED

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.debug(
                    f"Quorum timeout: phase={phase}, round={round_number}, "
                    f"votes={self.store.count(phase, round_number)}/{required}"
                )
                return QuorumStatus.TIMED_OUT

            await asyncio.sleep(min(self.poll_interval, remaining))
