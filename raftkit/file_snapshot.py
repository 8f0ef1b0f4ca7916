"""A snapshot store that keeps snapshots as directories on the local disk."""

from __future__ import annotations

import base64
import json
import logging
import os
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Optional

from raftkit.config import SnapshotVersion
from raftkit.configuration import (
    Configuration,
    PeerCodec,
    Server,
    ServerSuffrage,
    encode_peers,
)
from raftkit.snapshot import SnapshotMeta, SnapshotSink, SnapshotStore

_TEST_PATH = "permTest"
_SNAP_PATH = "snapshots"
_META_FILE = "meta.json"
_STATE_FILE = "state.bin"
_TMP_SUFFIX = ".tmp"
_CHUNK = 64 * 1024


class SnapshotStoreError(Exception):
    """Raised when a snapshot cannot be created, listed or opened."""


# CRC-64 with the ECMA-182 polynomial in reflected form, inverted before and after.
_CRC_MASK = 0xFFFFFFFFFFFFFFFF
_CRC_POLY = 0xC96C5795D7870F42


def _make_crc_table() -> list[int]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = (crc >> 1) ^ _CRC_POLY if crc & 1 else crc >> 1
        table.append(crc)
    return table


_CRC_TABLE = _make_crc_table()


class _Crc64:
    """Incremental CRC-64/ECMA checksum."""

    def __init__(self) -> None:
        self._crc = 0

    def update(self, data: bytes) -> None:
        crc = ~self._crc & _CRC_MASK
        table = _CRC_TABLE
        for byte in data:
            crc = table[(crc ^ byte) & 0xFF] ^ (crc >> 8)
        self._crc = ~crc & _CRC_MASK

    def digest(self) -> bytes:
        return self._crc.to_bytes(8, "big")


@dataclass
class _FileSnapshotMeta:
    """Snapshot metadata as stored on disk, with the CRC of the state file."""

    meta: SnapshotMeta
    crc: Optional[bytes] = None

    def to_json(self) -> dict[str, Any]:
        meta = self.meta
        servers = [
            {"Suffrage": int(s.suffrage), "ID": s.id, "Address": s.address}
            for s in meta.configuration.servers
        ]
        return {
            "Version": int(meta.version),
            "ID": meta.id,
            "Index": meta.index,
            "Term": meta.term,
            "Peers": _b64(meta.peers),
            "Configuration": {"Servers": servers or None},
            "ConfigurationIndex": meta.configuration_index,
            "Size": meta.size,
            "CRC": _b64(self.crc),
        }

    @classmethod
    def from_json(cls, doc: dict[str, Any]) -> _FileSnapshotMeta:
        if not isinstance(doc, dict):
            raise ValueError("metadata is not an object")
        conf_doc = doc.get("Configuration") or {}
        servers = [
            Server(
                ServerSuffrage(int(entry.get("Suffrage", 0))),
                str(entry.get("ID", "")),
                str(entry.get("Address", "")),
            )
            for entry in conf_doc.get("Servers") or []
        ]
        meta = SnapshotMeta(
            version=int(doc.get("Version", 0)),
            id=str(doc.get("ID", "")),
            index=int(doc.get("Index", 0)),
            term=int(doc.get("Term", 0)),
            peers=_unb64(doc.get("Peers")),
            configuration=Configuration(servers),
            configuration_index=int(doc.get("ConfigurationIndex", 0)),
            size=int(doc.get("Size", 0)),
        )
        crc = doc.get("CRC")
        return cls(meta, _unb64(crc) if crc is not None else None)

    def sort_key(self) -> tuple[int, int, str]:
        return (self.meta.term, self.meta.index, self.meta.id)


def _b64(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return base64.b64encode(data).decode("ascii")


def _unb64(text: Optional[str]) -> bytes:
    if not text:
        return b""
    return base64.b64decode(text)


def snapshot_name(term: int, index: int) -> str:
    """Return a name for a snapshot: term, index and the time in milliseconds."""
    msec = time.time_ns() // 1_000_000
    return f"{term}-{index}-{msec}"


def _fsync_dir(path: Path) -> None:
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class FileSnapshotStore(SnapshotStore):
    """Keeps snapshots under ``<base>/snapshots``, retaining the newest ``retain``."""

    def __init__(self, base: str | os.PathLike, retain: int, logger: Optional[logging.Logger] = None) -> None:
        if retain < 1:
            raise SnapshotStoreError("must retain at least one snapshot")
        self._logger = logger if logger is not None else logging.getLogger("raftkit.snapshot")
        self._retain = retain
        self._no_sync = False

        self._path = Path(base) / _SNAP_PATH
        try:
            self._path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SnapshotStoreError(f"snapshot path not accessible: {exc}") from exc

        try:
            self._test_permissions()
        except OSError as exc:
            raise SnapshotStoreError(f"permissions test failed: {exc}") from exc

    @property
    def path(self) -> Path:
        """The directory that holds the snapshots."""
        return self._path

    def _test_permissions(self) -> None:
        probe = self._path / _TEST_PATH
        with open(probe, "wb"):
            pass
        probe.unlink()

    def create(
        self,
        version: int,
        index: int,
        term: int,
        configuration: Configuration,
        configuration_index: int,
        trans: PeerCodec,
    ) -> FileSnapshotSink:
        """Start a new snapshot in a temporary directory."""
        if version != 1:
            raise SnapshotStoreError(f"unsupported snapshot version {int(version)}")

        name = snapshot_name(term, index)
        path = self._path / (name + _TMP_SUFFIX)
        self._logger.info("creating new snapshot path=%s", path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._logger.error("failed to make snapshot directory error=%s", exc)
            raise

        meta = _FileSnapshotMeta(
            SnapshotMeta(
                version=version,
                id=name,
                index=index,
                term=term,
                peers=encode_peers(configuration, trans),
                configuration=configuration,
                configuration_index=configuration_index,
            )
        )
        return FileSnapshotSink(self, path, meta)

    def list(self) -> list[SnapshotMeta]:
        """Return the retained snapshots, newest first."""
        snapshots = self._get_snapshots()
        return [entry.meta for entry in snapshots[: self._retain]]

    def _get_snapshots(self) -> list[_FileSnapshotMeta]:
        try:
            entries = list(self._path.iterdir())
        except OSError as exc:
            self._logger.error("failed to scan snapshot directory error=%s", exc)
            raise

        found = []
        for entry in entries:
            if not entry.is_dir():
                continue
            name = entry.name
            if name.endswith(_TMP_SUFFIX):
                self._logger.warning("found temporary snapshot name=%s", name)
                continue
            try:
                meta = self._read_meta(name)
            except (OSError, ValueError, TypeError, KeyError, AttributeError) as exc:
                self._logger.warning("failed to read metadata name=%s error=%s", name, exc)
                continue
            if not SnapshotVersion.MIN <= meta.meta.version <= SnapshotVersion.MAX:
                self._logger.warning(
                    "snapshot version not supported name=%s version=%s", name, meta.meta.version
                )
                continue
            found.append(meta)

        found.sort(key=_FileSnapshotMeta.sort_key, reverse=True)
        return found

    def _read_meta(self, name: str) -> _FileSnapshotMeta:
        with open(self._path / name / _META_FILE, encoding="utf-8") as fh:
            return _FileSnapshotMeta.from_json(json.load(fh))

    def open(self, snapshot_id: str) -> tuple[SnapshotMeta, BinaryIO]:
        """Verify a snapshot's checksum and return its metadata and state stream."""
        try:
            meta = self._read_meta(snapshot_id)
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as exc:
            self._logger.error("failed to get meta data to open snapshot error=%s", exc)
            raise

        fh = open(self._path / snapshot_id / _STATE_FILE, "rb")
        try:
            crc = _Crc64()
            for chunk in iter(lambda: fh.read(_CHUNK), b""):
                crc.update(chunk)
            computed = crc.digest()
            if (meta.crc or b"") != computed:
                self._logger.error(
                    "CRC checksum failed stored=%s computed=%s", meta.crc, computed
                )
                raise SnapshotStoreError("CRC mismatch")
            fh.seek(0)
        except BaseException:
            fh.close()
            raise
        return meta.meta, fh

    def reap_snapshots(self) -> None:
        """Delete every snapshot beyond the retain count."""
        for entry in self._get_snapshots()[self._retain :]:
            path = self._path / entry.meta.id
            self._logger.info("reaping snapshot path=%s", path)
            try:
                shutil.rmtree(path)
            except OSError as exc:
                self._logger.error("failed to reap snapshot path=%s error=%s", path, exc)
                raise


class FileSnapshotSink(SnapshotSink):
    """Writes a snapshot's state to a file, checksumming it as it goes."""

    def __init__(self, store: FileSnapshotStore, directory: Path, meta: _FileSnapshotMeta) -> None:
        self._store = store
        self._logger = store._logger
        self._dir = directory
        self._parent_dir = store.path
        self._meta = meta
        self._no_sync = store._no_sync
        self._closed = False
        self._hash = _Crc64()

        try:
            self._write_meta()
        except OSError as exc:
            self._logger.error("failed to write metadata error=%s", exc)
            raise
        try:
            self._state = open(directory / _STATE_FILE, "wb")
        except OSError as exc:
            self._logger.error("failed to create state file error=%s", exc)
            raise

    def id(self) -> str:
        return self._meta.meta.id

    def write(self, data: bytes) -> int:
        written = self._state.write(data)
        self._hash.update(data)
        return written

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            self._finalize()
        except OSError as exc:
            self._logger.error("failed to finalize snapshot error=%s", exc)
            shutil.rmtree(self._dir)
            raise

        try:
            self._write_meta()
        except OSError as exc:
            self._logger.error("failed to write metadata error=%s", exc)
            raise

        new_path = self._dir.with_name(self._dir.name[: -len(_TMP_SUFFIX)])
        try:
            os.rename(self._dir, new_path)
        except OSError as exc:
            self._logger.error("failed to move snapshot into place error=%s", exc)
            raise

        # Directory entries only need syncing on POSIX-style file systems.
        if not self._no_sync and not sys.platform.startswith("win"):
            try:
                _fsync_dir(self._parent_dir)
            except OSError as exc:
                self._logger.error(
                    "failed syncing parent directory path=%s error=%s", self._parent_dir, exc
                )
                raise

        self._store.reap_snapshots()

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._finalize()
        except OSError as exc:
            self._logger.error("failed to finalize snapshot error=%s", exc)
            raise
        shutil.rmtree(self._dir)

    def _finalize(self) -> None:
        state = self._state
        try:
            state.flush()
            if not self._no_sync:
                os.fsync(state.fileno())
            size = os.fstat(state.fileno()).st_size
        finally:
            state.close()
        self._meta.meta.size = size
        self._meta.crc = self._hash.digest()

    def _write_meta(self) -> None:
        with open(self._dir / _META_FILE, "w", encoding="utf-8") as fh:
            json.dump(self._meta.to_json(), fh)
            fh.write("\n")
            fh.flush()
            if not self._no_sync:
                os.fsync(fh.fileno())