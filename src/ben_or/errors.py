# src/ben_or/errors.py
"""
Consensus Errors - standardized error envelope for rejected node operations

Transport failures and quorum timeouts are expected and never raised;
only operations the node refuses end up here.
"""

from typing import Optional, Dict, Any


class ConsensusError(Exception):
    """
    Base error for operations a node rejects.

    Carries an error code and context so the HTTP layer can report a
    consistent envelope to the caller.
    """

    error_code = "CONSENSUS_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        node_id: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.node_id = node_id
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error dict for API responses"""
        return {
            "error": self.message,
            "error_code": self.error_code,
            "node_id": self.node_id,
            "context": self.context,
        }


class NodeFaultyError(ConsensusError):
    """The node is simulated as faulty and refuses protocol participation"""

    error_code = "NODE_FAULTY"

    def __init__(self, node_id: int):
        super().__init__(f"Node {node_id} is faulty", node_id=node_id)


class NodeKilledError(ConsensusError):
    """The node has been stopped"""

    error_code = "NODE_KILLED"

    def __init__(self, node_id: int):
        super().__init__(f"Node {node_id} is killed", node_id=node_id)


class ClusterNotReadyError(ConsensusError):
    """Start was requested before every node announced readiness"""

    error_code = "CLUSTER_NOT_READY"
    http_status = 503

    def __init__(self, node_id: int):
        super().__init__(f"Cluster is not ready, node {node_id} cannot start", node_id=node_id)


class ImpossibleConfigurationError(ConsensusError):
    """The fault bound leaves no honest majority, the protocol cannot converge"""

    error_code = "IMPOSSIBLE_CONFIGURATION"

    def __init__(self, node_id: int, total_nodes: int, faulty_nodes: int):
        super().__init__(
            f"Cannot run consensus with n={total_nodes}, f={faulty_nodes}: requires f < n/2",
            node_id=node_id,
            context={"total_nodes": total_nodes, "faulty_nodes": faulty_nodes},
        )
