# raftkit

Building blocks for a Raft consensus node.

- **Cluster membership** (`raftkit.configuration`): `Server`, `Configuration`,
  `Configurations`, `ServerSuffrage`, `ConfigurationChangeCommand` and
  `ConfigurationChangeRequest`. `check_configuration` raises
  `ConfigurationError` for empty IDs or addresses, duplicate IDs or addresses,
  or a configuration without a voter. `next_configuration` applies a change
  (add voter, add non-voter, demote, remove, promote) and checks the result.
  `has_vote` and `in_configuration` query membership. `encode_configuration` /
  `decode_configuration` use MessagePack, as do the legacy `encode_peers` /
  `decode_peers`.
- **Commit tracking** (`raftkit.commitment`): `Commitment` keeps the match
  index of every voter, works out the index stored by a quorum, and sets a
  `threading.Event` whenever the commit index advances. Nothing is committed
  until the quorum has reached the start index of the leader's term.
- **Settings** (`raftkit.config`): `Config` (all timeouts in seconds) with
  usable defaults, `default_config()`, `validate_config()` which raises
  `ConfigValidationError`, `Config.make_logger()`, and `ReloadableConfig` with
  `apply()` and `from_config()` for the fields that may change at run time.
  `ProtocolVersion` and `SnapshotVersion` name the supported versions.
- **RPC messages** (`raftkit.commands`): dataclasses for the AppendEntries,
  RequestVote, InstallSnapshot and TimeoutNow requests and responses, each
  carrying an `RPCHeader`.
- **Snapshots** (`raftkit.snapshot`, `raftkit.file_snapshot`): the abstract
  `FSM`, `BatchingFSM`, `ConfigurationStore`, `FSMSnapshot`, `SnapshotStore`
  and `SnapshotSink` classes and `SnapshotMeta`; a `DiscardSnapshotStore` that
  accepts snapshots and keeps none (meant for tests); and a
  `FileSnapshotStore` that keeps CRC-64-checked snapshots on disk and retains
  only the newest ones.

## Installation

```
pip install raftkit
```

## Membership and commitment

```python
import threading

from raftkit.commitment import Commitment
from raftkit.configuration import (
    Configuration,
    ConfigurationChangeCommand,
    ConfigurationChangeRequest,
    Server,
    ServerSuffrage,
    next_configuration,
)

conf = Configuration([Server(ServerSuffrage.VOTER, "s1", "10.0.0.1:7000")])
conf = next_configuration(
    conf,
    1,
    ConfigurationChangeRequest(ConfigurationChangeCommand.ADD_VOTER, "s2", "10.0.0.2:7000"),
)
print(conf)  # {[{Voter s1 10.0.0.1:7000} {Voter s2 10.0.0.2:7000}]}

committed = threading.Event()
commitment = Commitment(committed, conf, 1)
commitment.match("s1", 5)
commitment.match("s2", 5)
assert committed.is_set() and commitment.commit_index == 5
```

## Settings

```python
from raftkit.config import ReloadableConfig, default_config, validate_config

config = default_config()
config.local_id = "s1"
validate_config(config)  # raises ConfigValidationError if something is off

reload = ReloadableConfig.from_config(config)
reload.heartbeat_timeout = 2.0
reload.election_timeout = 2.0
updated = reload.apply(config)  # a new Config; the old one is unchanged
```

## Keeping snapshots on disk

A snapshot store needs an object that encodes peer addresses for the legacy
peers field; it must have `encode_peer(server_id, address)` and, for
`decode_peers`, `decode_peer(data)`.

```python
from raftkit.config import SnapshotVersion
from raftkit.file_snapshot import FileSnapshotStore


class AddressCodec:
    def encode_peer(self, server_id, address):
        return address.encode()

    def decode_peer(self, data):
        return data.decode()


store = FileSnapshotStore("/var/lib/mynode", 3, None)
with store.create(SnapshotVersion.MAX, 10, 3, conf, 2, AddressCodec()) as sink:
    sink.write(b"state bytes")   # closed on success, cancelled on error

meta, reader = store.open(store.list()[0].id)
with reader:
    data = reader.read()
```

Snapshots live under `<base>/snapshots`, one directory each, holding
`meta.json` and `state.bin`. `list()` returns them newest first (by term,
then index, then ID); closing a sink removes all but the newest `retain`.
`open()` raises `SnapshotStoreError` if the stored checksum does not match.

## What this package does not do

It does not run a Raft node: there is no election or replication loop, no
network transport, no log store or stable store, and no command-line
program. It provides the data types, checks and snapshot storage that such a
node is built from.

## Running the tests

```
pip install -e ".[test]"
pytest
```