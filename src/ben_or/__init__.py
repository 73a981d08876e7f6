# src/ben_or/__init__.py
"""
Ben-Or Consensus Module - randomized binary consensus for one node

Each round has two phases:
- PHASE 1: broadcast x, keep it only if a majority agrees (else "?")
- PHASE 2: broadcast x, decide on a strong count, adopt on a weak one,
  otherwise flip a coin

Tolerates f faulty (silent) nodes out of n while f < n/2.
"""

from .state import NodeState, Value, UNKNOWN, is_binary, is_vote
from .errors import (
    ConsensusError,
    NodeFaultyError,
    NodeKilledError,
    ClusterNotReadyError,
    ImpossibleConfigurationError,
)
from .message_store import MessageStore, Vote
from .quorum import QuorumCalculator, QuorumStatus, QuorumWaiter
from .broadcaster import Broadcaster, BroadcastResult
from .engine import (
    ConsensusEngine,
    EngineConfig,
    EngineStatus,
    PhaseTwoOutcome,
    filter_majority,
    resolve_phase_two,
)

__all__ = [
    # State
    "NodeState",
    "Value",
    "UNKNOWN",
    "is_binary",
    "is_vote",
    # Errors
    "ConsensusError",
    "NodeFaultyError",
    "NodeKilledError",
    "ClusterNotReadyError",
    "ImpossibleConfigurationError",
    # Messaging
    "MessageStore",
    "Vote",
    "Broadcaster",
    "BroadcastResult",
    # Quorum
    "QuorumCalculator",
    "QuorumStatus",
    "QuorumWaiter",
    # Engine
    "ConsensusEngine",
    "EngineConfig",
    "EngineStatus",
    "PhaseTwoOutcome",
    "filter_majority",
    "resolve_phase_two",
]
