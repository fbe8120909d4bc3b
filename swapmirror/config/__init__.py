"""Configuration module for swap replication"""

from .replicator_config import ReplicatorConfig

__all__ = ["ReplicatorConfig"]
