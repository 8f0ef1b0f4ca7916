"""Messages exchanged between Raft peers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from raftkit.config import ProtocolVersion, SnapshotVersion


@dataclass
class RPCHeader:
    """Protocol version and sender identity carried by every message.

    Messages from peers that predate versioning read as a zero-valued header.
    """

    protocol_version: int = ProtocolVersion.V0
    id: bytes = b""
    addr: bytes = b""


@dataclass
class AppendEntriesRequest:
    """Asks a follower to append entries to its replicated log."""

    header: RPCHeader = field(default_factory=RPCHeader)
    term: int = 0
    leader: bytes = b""  # deprecated: use header.addr
    prev_log_entry: int = 0
    prev_log_term: int = 0
    entries: list[Any] = field(default_factory=list)
    leader_commit_index: int = 0


@dataclass
class AppendEntriesResponse:
    """Reply to an AppendEntriesRequest."""

    header: RPCHeader = field(default_factory=RPCHeader)
    term: int = 0
    last_log: int = 0
    success: bool = False
    no_retry_backoff: bool = False


@dataclass
class RequestVoteRequest:
    """Sent by a candidate to ask a peer for its vote."""

    header: RPCHeader = field(default_factory=RPCHeader)
    term: int = 0
    candidate: bytes = b""  # deprecated: use header.addr
    last_log_index: int = 0
    last_log_term: int = 0
    leadership_transfer: bool = False


@dataclass
class RequestVoteResponse:
    """Reply to a RequestVoteRequest."""

    header: RPCHeader = field(default_factory=RPCHeader)
    term: int = 0
    peers: bytes = b""  # only for protocol version 0 peers
    granted: bool = False


@dataclass
class InstallSnapshotRequest:
    """Asks a peer to replace its log and state machine with a snapshot."""

    header: RPCHeader = field(default_factory=RPCHeader)
    snapshot_version: int = SnapshotVersion.V0
    term: int = 0
    leader: bytes = b""
    last_log_index: int = 0
    last_log_term: int = 0
    peers: bytes = b""  # deprecated in favour of configuration
    configuration: bytes = b""
    configuration_index: int = 0
    size: int = 0


@dataclass
class InstallSnapshotResponse:
    """Reply to an InstallSnapshotRequest."""

    header: RPCHeader = field(default_factory=RPCHeader)
    term: int = 0
    success: bool = False


@dataclass
class TimeoutNowRequest:
    """Sent by a leader to make another server start an election at once."""

    header: RPCHeader = field(default_factory=RPCHeader)


@dataclass
class TimeoutNowResponse:
    """Reply to a TimeoutNowRequest."""

    header: RPCHeader = field(default_factory=RPCHeader)