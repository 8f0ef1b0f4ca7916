import base64
import json
import logging
import shutil
import time

import pytest

from raftkit.configuration import Configuration, Server, ServerSuffrage
from raftkit.file_snapshot import (
    FileSnapshotSink,
    FileSnapshotStore,
    SnapshotStoreError,
    snapshot_name,
)
from raftkit.snapshot import SnapshotSink, SnapshotStore


class _Trans:
    def encode_peer(self, server_id, address):
        return address.encode()

    def decode_peer(self, buf):
        return buf.decode()


TRANS = _Trans()
LOGGER = logging.getLogger("test-file-snapshot")


def _store(tmp_path, retain=3):
    return FileSnapshotStore(tmp_path, retain, LOGGER)


def test_store_and_sink_implement_interfaces(tmp_path):
    store = _store(tmp_path)
    sink = store.create(1, 1, 1, Configuration(), 0, TRANS)
    try:
        assert isinstance(store, SnapshotStore)
        assert isinstance(sink, SnapshotSink)
        assert isinstance(sink, FileSnapshotSink)
        assert store.path == tmp_path / "snapshots"
        assert sink.id().startswith("1-1-")
    finally:
        sink.cancel()
    assert store.list() == []


def test_snapshot_name_format():
    before = int(time.time() * 1000)
    name = snapshot_name(3, 10)
    after = int(time.time() * 1000)
    term, index, msec = name.split("-")
    assert (term, index) == ("3", "10")
    assert before <= int(msec) <= after


def test_retain_must_be_positive(tmp_path):
    with pytest.raises(SnapshotStoreError, match="at least one"):
        FileSnapshotStore(tmp_path, 0, LOGGER)


def test_create_snapshot_missing_parent_dir(tmp_path):
    parent = tmp_path / "parent"
    base = parent / "raft"
    base.mkdir(parents=True)
    store = _store(base)
    shutil.rmtree(parent)
    sink = store.create(1, 10, 3, Configuration(), 0, TRANS)
    sink.close()
    assert [m.index for m in store.list()] == [10]


def test_create_snapshot(tmp_path):
    store = _store(tmp_path)
    assert store.list() == []

    configuration = Configuration([Server(ServerSuffrage.VOTER, "my id", "over here")])
    sink = store.create(1, 10, 3, configuration, 2, TRANS)

    assert store.list() == []

    assert sink.write(b"first\n") == 6
    assert sink.write(b"second\n") == 7
    sink.close()

    snaps = store.list()
    assert len(snaps) == 1
    latest = snaps[0]
    assert latest.index == 10
    assert latest.term == 3
    assert latest.configuration == configuration
    assert latest.configuration_index == 2
    assert latest.size == 13
    assert latest.id == sink.id()

    meta, reader = store.open(latest.id)
    with reader:
        content = reader.read()
    assert content == b"first\nsecond\n"
    assert meta.index == 10


def test_unsupported_version(tmp_path):
    store = _store(tmp_path)
    with pytest.raises(SnapshotStoreError, match="unsupported snapshot version"):
        store.create(0, 10, 3, Configuration(), 0, TRANS)


def test_cancel_snapshot(tmp_path):
    store = _store(tmp_path)
    sink = store.create(1, 10, 3, Configuration(), 0, TRANS)
    sink.cancel()
    assert store.list() == []
    assert list(store.path.iterdir()) == []


def test_close_is_idempotent(tmp_path):
    store = _store(tmp_path)
    sink = store.create(1, 10, 3, Configuration(), 0, TRANS)
    sink.close()
    sink.close()
    sink.cancel()
    assert len(store.list()) == 1


def test_context_manager_closes_on_success(tmp_path):
    store = _store(tmp_path)
    with store.create(1, 7, 2, Configuration(), 0, TRANS) as sink:
        sink.write(b"abc")
    snaps = store.list()
    assert [(m.index, m.size) for m in snaps] == [(7, 3)]


def test_context_manager_cancels_on_error(tmp_path):
    store = _store(tmp_path)
    with pytest.raises(RuntimeError):
        with store.create(1, 7, 2, Configuration(), 0, TRANS) as sink:
            sink.write(b"abc")
            raise RuntimeError("boom")
    assert store.list() == []
    assert list(store.path.iterdir()) == []


def test_retention(tmp_path):
    store = _store(tmp_path, retain=2)
    for index in range(10, 15):
        store.create(1, index, 3, Configuration(), 0, TRANS).close()

    snaps = store.list()
    assert [m.index for m in snaps] == [14, 13]
    dirs = [p for p in store.path.iterdir() if p.is_dir()]
    assert len(dirs) == 2


def test_bad_path(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(SnapshotStoreError, match="not accessible"):
        FileSnapshotStore(blocker, 3)


def test_missing_parent_dir(tmp_path):
    base = tmp_path / "parent" / "raft"
    store = FileSnapshotStore(base, 3)
    assert store.path == base / "snapshots"
    assert store.path.is_dir()


def test_ordering(tmp_path):
    store = _store(tmp_path)
    store.create(1, 130350, 5, Configuration(), 0, TRANS).close()
    store.create(1, 204917, 36, Configuration(), 0, TRANS).close()

    snaps = store.list()
    assert [m.term for m in snaps] == [36, 5]


def test_crc_is_crc64_ecma(tmp_path):
    store = _store(tmp_path)
    sink = store.create(1, 1, 1, Configuration(), 0, TRANS)
    sink.write(b"123456789")
    sink.close()
    doc = json.loads((store.path / sink.id() / "meta.json").read_text())
    assert base64.b64decode(doc["CRC"]) == bytes.fromhex("995dc9bbdf1939fa")
    assert doc["Size"] == 9


def test_open_detects_corruption(tmp_path):
    store = _store(tmp_path)
    sink = store.create(1, 1, 1, Configuration(), 0, TRANS)
    sink.write(b"payload")
    sink.close()
    (store.path / sink.id() / "state.bin").write_bytes(b"tampered")
    with pytest.raises(SnapshotStoreError, match="CRC mismatch"):
        store.open(sink.id())


def test_unsupported_version_on_disk_is_skipped(tmp_path):
    store = _store(tmp_path)
    sink = store.create(1, 1, 1, Configuration(), 0, TRANS)
    sink.close()
    meta_path = store.path / sink.id() / "meta.json"
    doc = json.loads(meta_path.read_text())
    doc["Version"] = 5
    meta_path.write_text(json.dumps(doc))
    assert store.list() == []


def test_unreadable_meta_is_skipped(tmp_path):
    store = _store(tmp_path)
    store.create(1, 1, 1, Configuration(), 0, TRANS).close()
    sink = store.create(1, 2, 1, Configuration(), 0, TRANS)
    sink.close()
    (store.path / sink.id() / "meta.json").write_text("{not json")
    assert [m.index for m in store.list()] == [1]


def test_open_missing_snapshot(tmp_path):
    store = _store(tmp_path)
    with pytest.raises(FileNotFoundError):
        store.open("1-1-1")


def test_peers_are_recorded(tmp_path):
    store = _store(tmp_path)
    configuration = Configuration(
        [
            Server(ServerSuffrage.VOTER, "a", "addr-a"),
            Server(ServerSuffrage.NONVOTER, "b", "addr-b"),
        ]
    )
    store.create(1, 4, 2, configuration, 3, TRANS).close()
    meta = store.list()[0]
    assert meta.peers
    assert meta.version == 1
    assert meta.configuration == configuration