"""Sequential upload of captured chunks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from ..audio.types import AudioChunk
from ..errors import ApiError, ServerRejected, TransportFailure, UploadNotAllowed
from ..store.session import ChunkUploaded, SessionStore, UploadFailed, UploadStarted, UploadSucceeded
from .logger import LogBuffer
from .network import ApiClient

TRANSIENT_STATUS_CODES = frozenset({502, 503, 504})


class RetryPolicy(Protocol):
    def delay_for(self, attempt: int, error: ApiError) -> float | None:
        """Seconds to wait before retry ``attempt`` (1-based), or None to give up."""


class NoRetry:
    def delay_for(self, attempt: int, error: ApiError) -> float | None:  # noqa: ARG002
        return None


@dataclass(slots=True)
class LimitedRetry:
    """Retry transient failures with capped exponential backoff."""

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int, error: ApiError) -> float | None:
        if attempt > self.attempts:
            return None
        transient = isinstance(error, TransportFailure) or (
            isinstance(error, ServerRejected) and error.status_code in TRANSIENT_STATUS_CODES
        )
        if not transient:
            return None
        return min(self.max_delay, self.base_delay * 2 ** (attempt - 1))


@dataclass(slots=True)
class UploadReport:
    sent: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UploadCoordinator:
    """Upload unsent chunks in capture order, stopping at the first failure."""

    def __init__(
        self,
        store: SessionStore,
        client: ApiClient,
        logger: LogBuffer,
        *,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.logger = logger
        self.retry = retry or NoRetry()
        self._sleep = sleep

    def check_allowed(self) -> None:
        state = self.store.state
        if state.is_uploading:
            raise UploadNotAllowed("An upload is already in progress")
        if not state.recording_finished:
            raise UploadNotAllowed("Recording has not finished")
        if not state.unsent_chunks:
            raise UploadNotAllowed("No unsent chunks to upload")

    async def upload_all(self) -> UploadReport:
        self.check_allowed()
        self.store.dispatch(UploadStarted())
        pending = self.store.state.unsent_chunks
        self.logger.add(f"Uploading {len(pending)} chunk(s)")
        sent = 0
        for chunk in pending:
            try:
                key = await self._upload_one(chunk)
            except ApiError as exc:
                message = f"Upload failed for chunk {chunk.sequence}: {exc}"
                self.logger.error(message)
                self.store.dispatch(UploadFailed(message))
                return UploadReport(sent=sent, error=message)
            except BaseException as exc:
                self.store.dispatch(UploadFailed(f"Upload interrupted: {exc!r}"))
                raise
            self.store.dispatch(ChunkUploaded(chunk.id, key))
            sent += 1
            self.logger.add(f"Chunk {chunk.sequence} sent as {key}")
        self.store.dispatch(UploadSucceeded())
        self.logger.add(f"All {sent} chunk(s) uploaded")
        return UploadReport(sent=sent)

    async def _upload_one(self, chunk: AudioChunk) -> str:
        attempt = 0
        while True:
            try:
                return await self.client.upload_chunk(chunk)
            except ApiError as exc:
                attempt += 1
                delay = self.retry.delay_for(attempt, exc)
                if delay is None:
                    raise
                self.logger.warning(f"Chunk {chunk.sequence} upload failed ({exc}); retry {attempt} in {delay:.1f}s")
                await self._sleep(delay)


__all__ = ["LimitedRetry", "NoRetry", "RetryPolicy", "UploadCoordinator", "UploadReport"]
