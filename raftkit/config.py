"""Settings for a Raft server and their validation."""

from __future__ import annotations

import dataclasses
import logging
import queue
import sys
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, TextIO


class ConfigValidationError(ValueError):
    """Raised when a Config holds values that cannot work."""


class ProtocolVersion(IntEnum):
    """Versions of the wire protocol and log entries this server understands.

    0: the original, unversioned protocol.
    1: changes propagated with the legacy peer-removal entry; IDs equal addresses.
    2: transitional; configuration entries carry full ID information.
    3: full support for server IDs and the ID-based membership APIs.
    """

    V0 = 0
    V1 = 1
    V2 = 2
    V3 = 3
    MIN = 0
    MAX = 3


class SnapshotVersion(IntEnum):
    """Versions of the snapshot format this server understands.

    0: legacy peers encoding only.
    1: full configuration and its index, plus legacy peers.
    """

    V0 = 0
    V1 = 1
    MIN = 0
    MAX = 1


_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 1,
}


def _level_from_string(level: str) -> int:
    return _LEVELS.get(level.strip().lower(), logging.NOTSET)


def _format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:g}ms"
    return f"{seconds:g}s"


@dataclass
class Config:
    """Configuration of a Raft server. All timeouts and intervals are in seconds.

    A freshly constructed Config holds usable defaults except for ``local_id``,
    which must be set before the configuration validates.
    """

    protocol_version: int = ProtocolVersion.MAX
    heartbeat_timeout: float = 1.0
    election_timeout: float = 1.0
    commit_timeout: float = 0.05
    max_append_entries: int = 64
    batch_apply: bool = False
    shutdown_on_remove: bool = True
    trailing_logs: int = 10240
    snapshot_interval: float = 120.0
    snapshot_threshold: int = 8192
    leader_lease_timeout: float = 0.5
    local_id: str = ""
    notify_queue: Optional["queue.Queue[bool]"] = None
    log_output: Optional[TextIO] = None
    log_level: str = "DEBUG"
    logger: Optional[logging.Logger] = None
    no_snapshot_restore_on_start: bool = False
    skip_startup: bool = False

    def make_logger(self) -> logging.Logger:
        """Return the configured logger, or build one writing to ``log_output``."""
        if self.logger is not None:
            return self.logger
        if self.log_output is None:
            self.log_output = sys.stderr

        logger = logging.Logger("raft", _level_from_string(self.log_level))
        handler = logging.StreamHandler(self.log_output)
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        logger.addHandler(handler)
        logger.propagate = False
        return logger


@dataclass
class ReloadableConfig:
    """The subset of Config that may be changed while the server runs."""

    trailing_logs: int = 0
    snapshot_interval: float = 0.0
    snapshot_threshold: int = 0
    heartbeat_timeout: float = 0.0
    election_timeout: float = 0.0

    def apply(self, to: Config) -> Config:
        """Return a copy of ``to`` with the reloadable fields taken from this one."""
        return dataclasses.replace(
            to,
            trailing_logs=self.trailing_logs,
            snapshot_interval=self.snapshot_interval,
            snapshot_threshold=self.snapshot_threshold,
            heartbeat_timeout=self.heartbeat_timeout,
            election_timeout=self.election_timeout,
        )

    @classmethod
    def from_config(cls, config: Config) -> ReloadableConfig:
        """Copy the reloadable fields out of a full Config."""
        return cls(
            trailing_logs=config.trailing_logs,
            snapshot_interval=config.snapshot_interval,
            snapshot_threshold=config.snapshot_threshold,
            heartbeat_timeout=config.heartbeat_timeout,
            election_timeout=config.election_timeout,
        )


def default_config() -> Config:
    """Return a Config with usable defaults."""
    return Config()


_MIN_TIMEOUT = 0.005


def validate_config(config: Config) -> None:
    """Raise ConfigValidationError unless the configuration is sane."""
    # Version 0 is understood but no longer supported for running.
    protocol_min = int(ProtocolVersion.MIN) or 1
    protocol_max = int(ProtocolVersion.MAX)
    if not protocol_min <= config.protocol_version <= protocol_max:
        raise ConfigValidationError(
            f"ProtocolVersion {int(config.protocol_version)} must be >= {protocol_min} "
            f"and <= {protocol_max}"
        )
    if not config.local_id:
        raise ConfigValidationError("LocalID cannot be empty")
    if config.heartbeat_timeout < _MIN_TIMEOUT:
        raise ConfigValidationError("HeartbeatTimeout is too low")
    if config.election_timeout < _MIN_TIMEOUT:
        raise ConfigValidationError("ElectionTimeout is too low")
    if config.commit_timeout < 0.001:
        raise ConfigValidationError("CommitTimeout is too low")
    if config.max_append_entries <= 0:
        raise ConfigValidationError("MaxAppendEntries must be positive")
    if config.max_append_entries > 1024:
        raise ConfigValidationError("MaxAppendEntries is too large")
    if config.snapshot_interval < _MIN_TIMEOUT:
        raise ConfigValidationError("SnapshotInterval is too low")
    if config.leader_lease_timeout < _MIN_TIMEOUT:
        raise ConfigValidationError("LeaderLeaseTimeout is too low")
    if config.leader_lease_timeout > config.heartbeat_timeout:
        raise ConfigValidationError(
            f"LeaderLeaseTimeout ({_format_duration(config.leader_lease_timeout)}) cannot be "
            f"larger than heartbeat timeout ({_format_duration(config.heartbeat_timeout)})"
        )
    if config.election_timeout < config.heartbeat_timeout:
        raise ConfigValidationError(
            f"ElectionTimeout ({_format_duration(config.election_timeout)}) must be equal or "
            f"greater than Heartbeat Timeout ({_format_duration(config.heartbeat_timeout)})"
        )