# src/ben_or/message_store.py
"""
Message Store - per-round, per-phase buffer of received votes

Buckets are keyed by (phase, round). Votes for future rounds wait in their
own bucket until the engine reaches that round. Once the engine clears a
bucket the (phase, round) pair is closed: late votes for it, or for any
earlier round of the same phase, are dropped.

No de-duplication by sender: the engine only needs a count.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Tuple, Any

from .state import Value

logger = logging.getLogger("benor.message_store")


@dataclass
class Vote:
    """A vote received from a peer"""
    value: Value
    sender: int
    phase: int
    round: int
    received_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "from": self.sender,
            "phase": self.phase,
            "round": self.round,
            "received_at": self.received_at.isoformat(),
        }


class MessageStore:
    """Vote buffer for a single node"""

    def __init__(self):
        self._buckets: Dict[Tuple[int, int], List[Vote]] = {}
        # phase -> highest round already consumed
        self._closed_through: Dict[int, int] = {}
        self._dropped = 0

    def is_closed(self, phase: int, round_number: int) -> bool:
        closed = self._closed_through.get(phase)
        return closed is not None and round_number <= closed

    def put(self, vote: Vote) -> bool:
        """
        Append a vote to its (phase, round) bucket.

        Returns:
            False if the bucket was already consumed and the vote dropped
        """
        if self.is_closed(vote.phase, vote.round):
            self._dropped += 1
            logger.debug(
                f"Dropped late vote from node {vote.sender}: "
                f"phase={vote.phase}, round={vote.round}"
            )
            return False

        self._buckets.setdefault((vote.phase, vote.round), []).append(vote)
        return True

    def get(self, phase: int, round_number: int) -> List[Vote]:
        """Votes received so far for (phase, round), empty if none"""
        return list(self._buckets.get((phase, round_number), ()))

    def count(self, phase: int, round_number: int) -> int:
        return len(self._buckets.get((phase, round_number), ()))

    def clear(self, phase: int, round_number: int) -> None:
        """Drop the bucket and close it, along with older rounds of the phase"""
        stale = [key for key in self._buckets if key[0] == phase and key[1] <= round_number]
        for key in stale:
            del self._buckets[key]

        previous = self._closed_through.get(phase)
        if previous is None or round_number > previous:
            self._closed_through[phase] = round_number

    def stats(self) -> Dict[str, Any]:
        """Open buckets and dropped late votes"""
        return {
            "open_buckets": {
                f"{phase}:{round_number}": len(votes)
                for (phase, round_number), votes in sorted(self._buckets.items())
            },
            "closed_through": {str(phase): r for phase, r in self._closed_through.items()},
            "dropped_votes": self._dropped,
        }
