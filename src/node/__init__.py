"""
Node Module - HTTP control surface for one consensus participant
"""

from .service import NodeService, NodeConfig, LIVE, FAULTY
from .app import create_app, VoteMessage

__all__ = [
    "NodeService",
    "NodeConfig",
    "LIVE",
    "FAULTY",
    "create_app",
    "VoteMessage",
]
