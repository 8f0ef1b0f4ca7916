"""Building blocks for Raft consensus: membership, commitment, settings, RPC messages and snapshots."""

__version__ = "0.1.0"

__all__ = [
    "commands",
    "commitment",
    "config",
    "configuration",
    "file_snapshot",
    "snapshot",
]