"""Cluster membership configurations and the changes that can be made to them."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Protocol

import msgpack


class ConfigurationError(ValueError):
    """Raised when a configuration is invalid or cannot be encoded or decoded."""


class ServerSuffrage(IntEnum):
    """Whether a server in a configuration gets a vote.

    The numbers are written into the log and must not change.
    """

    VOTER = 0
    NONVOTER = 1
    STAGING = 2  # deprecated: behaves like NONVOTER

    def __str__(self) -> str:
        return _SUFFRAGE_NAMES[self]


_SUFFRAGE_NAMES = {
    ServerSuffrage.VOTER: "Voter",
    ServerSuffrage.NONVOTER: "Nonvoter",
    ServerSuffrage.STAGING: "Staging",
}


@dataclass
class Server:
    """A single member of a configuration."""

    suffrage: ServerSuffrage
    id: str
    address: str

    def __str__(self) -> str:
        return f"{{{self.suffrage} {self.id} {self.address}}}"


@dataclass
class Configuration:
    """The servers in the cluster and whether they have votes."""

    servers: list[Server] = field(default_factory=list)

    def clone(self) -> Configuration:
        """Return a deep copy that shares no servers with this one."""
        return Configuration([dataclasses.replace(server) for server in self.servers])

    def __str__(self) -> str:
        return "{[" + " ".join(str(server) for server in self.servers) + "]}"


class ConfigurationChangeCommand(IntEnum):
    """The ways in which a cluster configuration can be changed."""

    ADD_VOTER = 0
    ADD_NONVOTER = 1
    DEMOTE_VOTER = 2
    REMOVE_SERVER = 3
    PROMOTE = 4  # deprecated: use ADD_VOTER
    ADD_STAGING = 0  # deprecated alias of ADD_VOTER

    def __str__(self) -> str:
        return _COMMAND_NAMES[self]


_COMMAND_NAMES = {
    ConfigurationChangeCommand.ADD_VOTER: "AddVoter",
    ConfigurationChangeCommand.ADD_NONVOTER: "AddNonvoter",
    ConfigurationChangeCommand.DEMOTE_VOTER: "DemoteVoter",
    ConfigurationChangeCommand.REMOVE_SERVER: "RemoveServer",
    ConfigurationChangeCommand.PROMOTE: "Promote",
}


@dataclass
class ConfigurationChangeRequest:
    """A change a leader would like to make to its current configuration.

    A nonzero ``prev_index`` is the index of the only configuration on which
    the change may be applied.
    """

    command: ConfigurationChangeCommand
    server_id: str
    server_address: str = ""
    prev_index: int = 0


@dataclass
class Configurations:
    """The latest and the latest committed configuration known to a server."""

    committed: Configuration = field(default_factory=Configuration)
    committed_index: int = 0
    latest: Configuration = field(default_factory=Configuration)
    latest_index: int = 0

    def clone(self) -> Configurations:
        """Return a deep copy of both configurations and their indexes."""
        return Configurations(
            committed=self.committed.clone(),
            committed_index=self.committed_index,
            latest=self.latest.clone(),
            latest_index=self.latest_index,
        )


class PeerCodec(Protocol):
    """The part of a transport used to encode legacy peer entries."""

    def encode_peer(self, server_id: str, address: str) -> bytes: ...

    def decode_peer(self, buf: bytes) -> str: ...


def has_vote(configuration: Configuration, server_id: str) -> bool:
    """Return True if the server is a voter in the configuration."""
    for server in configuration.servers:
        if server.id == server_id:
            return server.suffrage == ServerSuffrage.VOTER
    return False


def in_configuration(configuration: Configuration, server_id: str) -> bool:
    """Return True if the server appears in the configuration at all."""
    return any(server.id == server_id for server in configuration.servers)


def check_configuration(configuration: Configuration) -> None:
    """Raise ConfigurationError if the configuration has a common mistake."""
    ids: set[str] = set()
    addresses: set[str] = set()
    voters = 0
    for server in configuration.servers:
        if not server.id:
            raise ConfigurationError(f"empty ID in configuration: {configuration}")
        if not server.address:
            raise ConfigurationError(f"empty address in configuration: {server}")
        if server.id in ids:
            raise ConfigurationError(f"found duplicate ID in configuration: {server.id}")
        ids.add(server.id)
        if server.address in addresses:
            raise ConfigurationError(
                f"found duplicate address in configuration: {server.address}"
            )
        addresses.add(server.address)
        if server.suffrage == ServerSuffrage.VOTER:
            voters += 1
    if voters == 0:
        raise ConfigurationError(f"need at least one voter in configuration: {configuration}")


def _find(configuration: Configuration, server_id: str) -> int | None:
    return next(
        (pos for pos, server in enumerate(configuration.servers) if server.id == server_id),
        None,
    )


def next_configuration(
    current: Configuration, current_index: int, change: ConfigurationChangeRequest
) -> Configuration:
    """Return the configuration that results from applying ``change`` to ``current``."""
    if change.prev_index > 0 and change.prev_index != current_index:
        raise ConfigurationError(
            f"configuration changed since {change.prev_index} (latest is {current_index})"
        )

    configuration = current.clone()
    servers = configuration.servers
    pos = _find(configuration, change.server_id)
    command = change.command

    if command in (ConfigurationChangeCommand.ADD_VOTER, ConfigurationChangeCommand.ADD_NONVOTER):
        suffrage = (
            ServerSuffrage.VOTER
            if command == ConfigurationChangeCommand.ADD_VOTER
            else ServerSuffrage.NONVOTER
        )
        new_server = Server(suffrage, change.server_id, change.server_address)
        if pos is None:
            servers.append(new_server)
        else:
            existing = servers[pos]
            keep_suffrage = (
                existing.suffrage == ServerSuffrage.VOTER
                if suffrage == ServerSuffrage.VOTER
                else existing.suffrage != ServerSuffrage.NONVOTER
            )
            if keep_suffrage:
                existing.address = change.server_address
            else:
                servers[pos] = new_server
    elif command == ConfigurationChangeCommand.DEMOTE_VOTER:
        if pos is not None:
            servers[pos].suffrage = ServerSuffrage.NONVOTER
    elif command == ConfigurationChangeCommand.REMOVE_SERVER:
        if pos is not None:
            del servers[pos]
    elif command == ConfigurationChangeCommand.PROMOTE:
        if pos is not None and servers[pos].suffrage == ServerSuffrage.STAGING:
            servers[pos].suffrage = ServerSuffrage.VOTER

    # Make sure nothing bad happened, such as removing the last voter.
    check_configuration(configuration)
    return configuration


def encode_peers(configuration: Configuration, trans: PeerCodec) -> bytes:
    """Serialize the voters of a configuration into the legacy peers format."""
    peers = [
        trans.encode_peer(server.id, server.address)
        for server in configuration.servers
        if server.suffrage == ServerSuffrage.VOTER
    ]
    try:
        return msgpack.packb(peers, use_bin_type=True)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"failed to encode peers: {exc}") from exc


def decode_peers(buf: bytes, trans: PeerCodec) -> Configuration:
    """Deserialize a legacy list of peers into a configuration of voters."""
    try:
        peers = msgpack.unpackb(buf, raw=False)
    except Exception as exc:
        raise ConfigurationError(f"failed to decode peers: {exc}") from exc
    if peers is None:
        peers = []
    if not isinstance(peers, list):
        raise ConfigurationError("failed to decode peers: expected a list")

    servers = []
    for enc in peers:
        if isinstance(enc, str):
            enc = enc.encode()
        address = trans.decode_peer(enc)
        servers.append(Server(ServerSuffrage.VOTER, str(address), address))
    return Configuration(servers)


def _as_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    if isinstance(value, str):
        return value
    raise TypeError(f"expected a string, got {type(value).__name__}")


def encode_configuration(configuration: Configuration) -> bytes:
    """Serialize a configuration with MessagePack."""
    document = {
        "Servers": [
            {"Suffrage": int(server.suffrage), "ID": server.id, "Address": server.address}
            for server in configuration.servers
        ]
    }
    try:
        return msgpack.packb(document, use_bin_type=True)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"failed to encode configuration: {exc}") from exc


def decode_configuration(buf: bytes) -> Configuration:
    """Deserialize a configuration written by encode_configuration."""
    try:
        document = msgpack.unpackb(buf, raw=False)
        if not isinstance(document, dict):
            raise TypeError("expected a map")
        entries = document.get("Servers") or []
        servers = [
            Server(
                ServerSuffrage(int(entry.get("Suffrage", 0))),
                _as_str(entry.get("ID", "")),
                _as_str(entry.get("Address", "")),
            )
            for entry in entries
        ]
    except Exception as exc:
        raise ConfigurationError(f"failed to decode configuration: {exc}") from exc
    return Configuration(servers)