# src/ben_or/state.py
"""
Node State - the per-node view of the consensus protocol

x        current working value: 0, 1 or UNKNOWN ("?"); None for faulty nodes
decided  True exactly once the decision is fixed; None for faulty nodes
k        current round; None for faulty nodes
killed   set by an explicit stop, terminal
"""

from dataclasses import dataclass
from typing import Optional, Union, Dict, Any

UNKNOWN = "?"
BINARY_VALUES = (0, 1)

# 0, 1 or UNKNOWN
Value = Union[int, str]


def is_binary(value: Any) -> bool:
    """True for the votes 0 and 1 (bools are not votes)"""
    return not isinstance(value, bool) and value in BINARY_VALUES


def is_vote(value: Any) -> bool:
    """True for any value a node may broadcast"""
    return is_binary(value) or value == UNKNOWN


@dataclass
class NodeState:
    """Consensus state of one node, owned exclusively by its engine"""
    killed: bool = False
    x: Optional[Value] = None
    decided: Optional[bool] = None
    k: Optional[int] = None

    @classmethod
    def initial(cls, initial_value: Value, is_faulty: bool = False) -> "NodeState":
        """State at node startup; faulty nodes never hold protocol values"""
        if is_faulty:
            return cls()
        if not is_vote(initial_value):
            raise ValueError(f"Initial value must be 0, 1 or '{UNKNOWN}', got {initial_value!r}")
        return cls(x=initial_value, decided=False, k=0)

    @property
    def is_active(self) -> bool:
        """Still expected to execute protocol phases"""
        return not self.killed and self.decided is False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "killed": self.killed,
            "x": self.x,
            "decided": self.decided,
            "k": self.k,
        }
