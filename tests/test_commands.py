import dataclasses

import pytest

from raftkit.commands import (
    AppendEntriesRequest,
    AppendEntriesResponse,
    InstallSnapshotRequest,
    InstallSnapshotResponse,
    RequestVoteRequest,
    RequestVoteResponse,
    RPCHeader,
    TimeoutNowRequest,
    TimeoutNowResponse,
)
from raftkit.config import ProtocolVersion
from raftkit.configuration import (
    Configuration,
    Server,
    ServerSuffrage,
    decode_configuration,
    encode_configuration,
)

MESSAGE_TYPES = [
    AppendEntriesRequest,
    AppendEntriesResponse,
    RequestVoteRequest,
    RequestVoteResponse,
    InstallSnapshotRequest,
    InstallSnapshotResponse,
    TimeoutNowRequest,
    TimeoutNowResponse,
]


@pytest.mark.parametrize("message_type", MESSAGE_TYPES)
def test_default_header_is_zero_valued(message_type):
    message = message_type()
    assert message.header == RPCHeader(protocol_version=0, id=b"", addr=b"")


@pytest.mark.parametrize("message_type", MESSAGE_TYPES)
def test_headers_are_not_shared_between_messages(message_type):
    first = message_type()
    second = message_type()
    first.header.id = b"node-a"
    assert second.header == RPCHeader()
    assert first.header == RPCHeader(id=b"node-a")
    assert first.header is not second.header


def test_header_carries_sender_identity():
    header = RPCHeader(protocol_version=ProtocolVersion.MAX, id=b"id1", addr=b"addr1")
    request = RequestVoteRequest(header=header, term=7, last_log_index=3, last_log_term=2)
    assert request.header.protocol_version == ProtocolVersion.MAX
    assert request.header.id == b"id1"
    assert request.header.addr == b"addr1"
    assert request.leadership_transfer is False


def test_append_entries_lists_are_independent():
    first = AppendEntriesRequest()
    second = AppendEntriesRequest()
    first.entries.append("entry")
    assert second.entries == []
    assert first.entries == ["entry"]


def test_responses_default_to_failure():
    assert AppendEntriesResponse().success is False
    assert AppendEntriesResponse().no_retry_backoff is False
    assert RequestVoteResponse().granted is False
    assert InstallSnapshotResponse().success is False


def test_install_snapshot_carries_encoded_configuration():
    configuration = Configuration([Server(ServerSuffrage.VOTER, "id1", "addr1")])
    request = InstallSnapshotRequest(
        term=3,
        last_log_index=10,
        last_log_term=3,
        configuration=encode_configuration(configuration),
        configuration_index=2,
        size=13,
    )
    assert decode_configuration(request.configuration) == configuration
    assert request.configuration_index == 2
    assert request.size == 13


def test_messages_compare_by_value_and_replace_copies():
    original = AppendEntriesRequest(term=5, prev_log_entry=4, prev_log_term=5, leader_commit_index=4)
    copy = dataclasses.replace(original, term=6)
    assert original.term == 5
    assert copy.term == 6
    assert dataclasses.replace(copy, term=5) == original