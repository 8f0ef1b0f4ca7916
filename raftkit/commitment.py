"""Tracking of the leader's commit index from the match indexes of voters."""

from __future__ import annotations

import threading

from raftkit.configuration import Configuration, ServerSuffrage


class Commitment:
    """Advances the leader's commit index as voters report written entries.

    ``commit_event`` is set whenever the commit index increases.
    ``start_index`` is the first index of this leader's term: nothing is
    marked committed until a quorum has stored it.
    """

    def __init__(
        self, commit_event: threading.Event, configuration: Configuration, start_index: int
    ) -> None:
        self._lock = threading.Lock()
        self._commit_event = commit_event
        self._match_indexes: dict[str, int] = {
            server.id: 0
            for server in configuration.servers
            if server.suffrage == ServerSuffrage.VOTER
        }
        self._commit_index = 0
        self._start_index = start_index

    def set_configuration(self, configuration: Configuration) -> None:
        """Use a new membership for commitment, keeping known match indexes."""
        with self._lock:
            old = self._match_indexes
            self._match_indexes = {
                server.id: old.get(server.id, 0)
                for server in configuration.servers
                if server.suffrage == ServerSuffrage.VOTER
            }
            self._recalculate()

    @property
    def commit_index(self) -> int:
        """The highest index stored by a quorum of voters."""
        with self._lock:
            return self._commit_index

    def match(self, server: str, match_index: int) -> None:
        """Record that ``server`` has stored entries up through ``match_index``."""
        with self._lock:
            prev = self._match_indexes.get(server)
            if prev is not None and match_index > prev:
                self._match_indexes[server] = match_index
                self._recalculate()

    def _recalculate(self) -> None:
        if not self._match_indexes:
            return
        matched = sorted(self._match_indexes.values())
        quorum_match_index = matched[(len(matched) - 1) // 2]
        if quorum_match_index > self._commit_index and quorum_match_index >= self._start_index:
            self._commit_index = quorum_match_index
            self._commit_event.set()