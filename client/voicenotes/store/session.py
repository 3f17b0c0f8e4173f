"""Recording session state and its transition function."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Tuple, Union

from ..audio.types import AudioChunk
from ..config import MAX_CHUNKS
from . import chunk_store

LOGGER = logging.getLogger("voicenotes.session")


@dataclass(frozen=True, slots=True)
class RecordingSession:
    is_recording: bool = False
    chunks: Tuple[AudioChunk, ...] = ()
    uploaded_keys: Tuple[str, ...] = ()
    merged_result: bytes | None = None
    merged_key: str | None = None
    last_error: str | None = None
    is_uploading: bool = False
    is_merging: bool = False
    recording_finished: bool = False
    dropped_chunks: int = 0
    max_chunks: int = MAX_CHUNKS

    @property
    def unsent_chunks(self) -> Tuple[AudioChunk, ...]:
        return chunk_store.unsent(self.chunks)

    @property
    def awaiting_download(self) -> bool:
        """The server holds a merged object the client has not fetched yet."""
        return self.merged_key is not None and self.merged_result is None


# events -------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RecordingStarted:
    max_chunks: int = MAX_CHUNKS


@dataclass(frozen=True, slots=True)
class ChunkCaptured:
    chunk: AudioChunk


@dataclass(frozen=True, slots=True)
class RecordingStopped:
    error: str | None = None


@dataclass(frozen=True, slots=True)
class CaptureFailed:
    error: str


@dataclass(frozen=True, slots=True)
class UploadStarted:
    pass


@dataclass(frozen=True, slots=True)
class ChunkUploaded:
    chunk_id: str
    storage_key: str


@dataclass(frozen=True, slots=True)
class UploadSucceeded:
    pass


@dataclass(frozen=True, slots=True)
class UploadFailed:
    error: str


@dataclass(frozen=True, slots=True)
class MergeStarted:
    pass


@dataclass(frozen=True, slots=True)
class MergeCompleted:
    merged_key: str


@dataclass(frozen=True, slots=True)
class MergeSucceeded:
    merged_key: str
    data: bytes


@dataclass(frozen=True, slots=True)
class MergeFailed:
    error: str


@dataclass(frozen=True, slots=True)
class SessionReset:
    pass


SessionEvent = Union[
    RecordingStarted,
    ChunkCaptured,
    RecordingStopped,
    CaptureFailed,
    UploadStarted,
    ChunkUploaded,
    UploadSucceeded,
    UploadFailed,
    MergeStarted,
    MergeCompleted,
    MergeSucceeded,
    MergeFailed,
    SessionReset,
]


def reduce(state: RecordingSession, event: SessionEvent) -> RecordingSession:
    """Return the session that results from applying ``event`` to ``state``."""

    if isinstance(event, RecordingStarted):
        return replace(
            state,
            is_recording=True,
            recording_finished=False,
            last_error=None,
            merged_result=None,
            merged_key=None,
            max_chunks=event.max_chunks,
        )
    if isinstance(event, ChunkCaptured):
        result = chunk_store.append(state.chunks, event.chunk, state.max_chunks)
        if result.dropped:
            return replace(state, dropped_chunks=state.dropped_chunks + 1)
        return replace(state, chunks=result.chunks)
    if isinstance(event, RecordingStopped):
        return replace(
            state,
            is_recording=False,
            recording_finished=True,
            last_error=event.error if event.error else state.last_error,
        )
    if isinstance(event, CaptureFailed):
        return replace(state, is_recording=False, last_error=event.error)
    if isinstance(event, UploadStarted):
        return replace(state, is_uploading=True)
    if isinstance(event, ChunkUploaded):
        if not any(chunk.id == event.chunk_id for chunk in state.chunks):
            return state
        return replace(
            state,
            chunks=chunk_store.mark_sent(state.chunks, event.chunk_id, event.storage_key),
            uploaded_keys=state.uploaded_keys + (event.storage_key,),
        )
    if isinstance(event, UploadSucceeded):
        return replace(
            state,
            chunks=chunk_store.prune_sent(state.chunks),
            is_uploading=False,
            last_error=None,
        )
    if isinstance(event, UploadFailed):
        return replace(state, is_uploading=False, last_error=event.error)
    if isinstance(event, MergeStarted):
        return replace(state, is_merging=True)
    if isinstance(event, MergeCompleted):
        # the server has already deleted the sources, so their keys are spent
        return replace(state, merged_key=event.merged_key, merged_result=None, uploaded_keys=())
    if isinstance(event, MergeSucceeded):
        return replace(
            state,
            is_merging=False,
            merged_key=event.merged_key,
            merged_result=event.data,
            uploaded_keys=(),
            last_error=None,
        )
    if isinstance(event, MergeFailed):
        return replace(state, is_merging=False, last_error=event.error)
    if isinstance(event, SessionReset):
        return RecordingSession()
    raise TypeError(f"Unknown session event: {event!r}")


Listener = Callable[[RecordingSession, SessionEvent], None]


class SessionStore:
    """Owns the current session and applies events through :func:`reduce`."""

    def __init__(self, initial: RecordingSession | None = None) -> None:
        self._state = initial or RecordingSession()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> RecordingSession:
        return self._state

    def dispatch(self, event: SessionEvent) -> RecordingSession:
        previous = self._state
        self._state = reduce(previous, event)
        if self._state.dropped_chunks > previous.dropped_chunks:
            LOGGER.warning(
                "Chunk store full (%d entries); captured chunk dropped",
                len(self._state.chunks),
            )
        LOGGER.debug("%s -> chunks=%d", type(event).__name__, len(self._state.chunks))
        for listener in list(self._listeners):
            listener(self._state, event)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


__all__ = [
    "CaptureFailed",
    "ChunkCaptured",
    "ChunkUploaded",
    "MergeCompleted",
    "MergeFailed",
    "MergeStarted",
    "MergeSucceeded",
    "RecordingSession",
    "RecordingStarted",
    "RecordingStopped",
    "SessionEvent",
    "SessionReset",
    "SessionStore",
    "UploadFailed",
    "UploadStarted",
    "UploadSucceeded",
    "reduce",
]
