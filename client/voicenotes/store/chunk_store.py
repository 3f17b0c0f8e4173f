"""Ordered, bounded buffer of captured chunks.

Every operation takes the current tuple of chunks and returns a new one, so
the recording session can apply them inside its pure transition function.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from ..audio.types import AudioChunk
from ..config import MAX_CHUNKS

Chunks = Tuple[AudioChunk, ...]


@dataclass(frozen=True, slots=True)
class AppendResult:
    chunks: Chunks
    dropped: bool = False


def append(chunks: Chunks, chunk: AudioChunk, limit: int = MAX_CHUNKS) -> AppendResult:
    # A full store drops the chunk instead of failing; the capture loop stops
    # at the same limit, so this only triggers on misuse.
    if len(chunks) >= limit:
        return AppendResult(chunks, dropped=True)
    return AppendResult(chunks + (chunk,))


def mark_sent(chunks: Chunks, chunk_id: str, storage_ref: str | None = None) -> Chunks:
    return tuple(chunk.mark_sent(storage_ref) if chunk.id == chunk_id else chunk for chunk in chunks)


def prune_sent(chunks: Chunks) -> Chunks:
    return tuple(chunk for chunk in chunks if not chunk.sent)


def unsent(chunks: Chunks) -> Chunks:
    return tuple(chunk for chunk in chunks if not chunk.sent)


def is_full(chunks: Chunks, limit: int = MAX_CHUNKS) -> bool:
    return len(chunks) >= limit


__all__ = ["AppendResult", "Chunks", "append", "is_full", "mark_sent", "prune_sent", "unsent"]
