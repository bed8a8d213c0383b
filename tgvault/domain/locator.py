"""Where an object's ciphertext lives on the remote transport."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ChunkHandle:
    """Remote-assigned reference to a single uploaded chunk.

    ``file_id`` is what the transport needs to download the chunk again,
    ``message_id`` is what it needs to delete it.
    """

    file_id: str
    message_id: int


@dataclass(frozen=True, slots=True)
class Locator:
    """Ordered chunk handles plus the total ciphertext length.

    Chunk order is the upload order; reassembly always follows it.
    """

    chunks: tuple[ChunkHandle, ...]
    total_length: int

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)
