"""
Payload Chunking.

Splits the fixed probe payload into bounded-size writes. The chunker
holds no cursor of its own: the session passes in the position it has
reached, so restarting a publish is just a matter of passing 0 again.
"""
from dataclasses import dataclass
from typing import Iterator

DEFAULT_CHUNK_SIZE = 300


@dataclass(frozen=True)
class Chunk:
    data: bytes
    final: bool


class PayloadChunker:
    payload: bytes
    chunk_size: int

    def __init__(self, payload: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not payload:
            raise ValueError("payload must not be empty")
        self.payload = bytes(payload)
        self.chunk_size = chunk_size

    def __len__(self) -> int:
        return len(self.payload)

    def next_chunk(self, position: int) -> Chunk:
        """
        Returns the chunk starting at `position`, at most `chunk_size` bytes.
        `final` is set only on the chunk that ends exactly at the payload end.
        """
        total = len(self.payload)
        if position < 0 or position >= total:
            raise ValueError(f"position {position} outside payload of {total} bytes")

        length = min(self.chunk_size, total - position)
        return Chunk(data=self.payload[position:position + length],
                     final=position + length == total)

    def iter_chunks(self) -> Iterator[Chunk]:
        position = 0
        while position < len(self.payload):
            chunk = self.next_chunk(position)
            yield chunk
            position += len(chunk.data)
