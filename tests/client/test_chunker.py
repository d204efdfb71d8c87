import pytest

from mqtt_qos_probe.client.chunker import PayloadChunker
from mqtt_qos_probe.client.payload import PAYLOAD

"""
Payload Chunker Tests.
"""


def test_probe_payload_splits_into_four_full_chunks_and_a_short_one():
    chunker = PayloadChunker(PAYLOAD, 300)

    chunks = list(chunker.iter_chunks())

    assert [len(c.data) for c in chunks] == [300, 300, 300, 300, 137]
    assert [c.final for c in chunks] == [False, False, False, False, True]
    assert b"".join(c.data for c in chunks) == PAYLOAD


def test_next_chunk_is_a_pure_function_of_position():
    chunker = PayloadChunker(PAYLOAD, 300)

    assert chunker.next_chunk(600) == chunker.next_chunk(600)
    assert chunker.next_chunk(600).data == PAYLOAD[600:900]
    assert chunker.next_chunk(1200).data == PAYLOAD[1200:]
    assert chunker.next_chunk(1200).final is True


@pytest.mark.parametrize("length", [1, 7, 299, 300, 301, 600, 1337])
@pytest.mark.parametrize("chunk_size", [1, 64, 300, 2000])
def test_chunks_cover_the_payload_exactly(length, chunk_size):
    payload = bytes(i % 251 for i in range(length))
    chunks = list(PayloadChunker(payload, chunk_size).iter_chunks())

    assert sum(len(c.data) for c in chunks) == length
    assert all(0 < len(c.data) <= chunk_size for c in chunks)
    assert [c.final for c in chunks].count(True) == 1
    assert chunks[-1].final is True
    assert b"".join(c.data for c in chunks) == payload


def test_chunk_larger_than_payload_gives_a_single_final_chunk():
    chunk = PayloadChunker(b"abc", 300).next_chunk(0)

    assert chunk.data == b"abc"
    assert chunk.final is True


@pytest.mark.parametrize("position", [-1, 1337, 5000])
def test_position_outside_the_payload_is_rejected(position):
    with pytest.raises(ValueError):
        PayloadChunker(PAYLOAD, 300).next_chunk(position)


@pytest.mark.parametrize("chunk_size", [0, -300])
def test_chunk_size_must_be_positive(chunk_size):
    with pytest.raises(ValueError):
        PayloadChunker(PAYLOAD, chunk_size)


def test_empty_payload_is_rejected():
    with pytest.raises(ValueError):
        PayloadChunker(b"", 300)
