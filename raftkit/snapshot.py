"""State machine and snapshot interfaces, and a snapshot store that keeps nothing."""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Optional

from raftkit.config import SnapshotVersion
from raftkit.configuration import Configuration, PeerCodec


@dataclass
class SnapshotMeta:
    """Metadata describing a stored snapshot."""

    version: int = SnapshotVersion.V0
    id: str = ""
    index: int = 0
    term: int = 0
    peers: bytes = b""  # legacy peers encoding
    configuration: Configuration = field(default_factory=Configuration)
    configuration_index: int = 0
    size: int = 0


class SnapshotSink(ABC):
    """Destination of a snapshot being written.

    Used as a context manager it closes on success and cancels on error.
    """

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Append data to the snapshot and return the number of bytes taken."""

    @abstractmethod
    def close(self) -> None:
        """Finish the snapshot successfully."""

    @abstractmethod
    def id(self) -> str:
        """Return the identifier of the snapshot."""

    @abstractmethod
    def cancel(self) -> None:
        """Abandon the snapshot."""

    def __enter__(self) -> SnapshotSink:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.cancel()


class SnapshotStore(ABC):
    """Storage for snapshots."""

    @abstractmethod
    def create(
        self,
        version: int,
        index: int,
        term: int,
        configuration: Configuration,
        configuration_index: int,
        trans: PeerCodec,
    ) -> SnapshotSink:
        """Start a new snapshot and return the sink to write it to."""

    @abstractmethod
    def list(self) -> list[SnapshotMeta]:
        """Return the available snapshots, newest first."""

    @abstractmethod
    def open(self, snapshot_id: str) -> tuple[SnapshotMeta, BinaryIO]:
        """Return the metadata and a readable stream for a snapshot."""


class FSMSnapshot(ABC):
    """A point-in-time state captured by an FSM.

    Its methods must be safe to call while the FSM keeps applying entries.
    """

    @abstractmethod
    def persist(self, sink: SnapshotSink) -> None:
        """Write the state to ``sink``, closing it when done or cancelling on error."""

    @abstractmethod
    def release(self) -> None:
        """Called when the snapshot is no longer needed."""


class FSM(ABC):
    """The client state machine that committed log entries are applied to."""

    @abstractmethod
    def apply(self, log: Any) -> Any:
        """Apply a committed entry; the result goes back to the caller of Apply."""

    @abstractmethod
    def snapshot(self) -> FSMSnapshot:
        """Capture the current state quickly; expensive work belongs in persist."""

    @abstractmethod
    def restore(self, source: BinaryIO) -> None:
        """Discard all state and load it from a snapshot stream."""


class BatchingFSM(FSM):
    """An FSM that can apply several committed entries at once."""

    @abstractmethod
    def apply_batch(self, logs: list[Any]) -> list[Any]:
        """Apply entries in commit order; return one response per entry."""


class ConfigurationStore(FSM):
    """An FSM that also records committed configuration changes."""

    @abstractmethod
    def store_configuration(self, index: int, configuration: Configuration) -> None:
        """Record a configuration committed at ``index``."""


class DiscardSnapshotSink(SnapshotSink):
    """A sink that accepts everything and keeps nothing. For tests only."""

    def write(self, data: bytes) -> int:
        return len(data)

    def close(self) -> None:
        return None

    def id(self) -> str:
        return "discard"

    def cancel(self) -> None:
        return None


class DiscardSnapshotStore(SnapshotStore):
    """A store whose snapshots always succeed and are always thrown away.

    Useful when the log should be truncated but no snapshot kept. For tests only.
    """

    def create(
        self,
        version: int,
        index: int,
        term: int,
        configuration: Configuration,
        configuration_index: int,
        trans: Optional[PeerCodec],
    ) -> DiscardSnapshotSink:
        return DiscardSnapshotSink()

    def list(self) -> list[SnapshotMeta]:
        return []

    def open(self, snapshot_id: str) -> tuple[SnapshotMeta, BinaryIO]:
        raise io.UnsupportedOperation("open is not supported")