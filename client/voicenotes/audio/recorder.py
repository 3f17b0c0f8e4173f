"""Capture controller that rotates fixed-duration chunks."""

from __future__ import annotations

import asyncio
import contextlib
import enum
from datetime import datetime, timezone

from ..config import CONFIG, MAX_CHUNKS
from ..errors import CaptureError, CaptureStateError, DeviceInactive
from ..services.logger import LogBuffer
from ..store import chunk_store
from ..store.session import CaptureFailed, ChunkCaptured, RecordingStarted, RecordingStopped, SessionStore
from .device import CaptureDevice
from .types import AudioChunk


class CaptureState(str, enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    STOPPED = "stopped"


class _Boundary(enum.Enum):
    TIMER = "timer"
    STOP = "stop"
    DEVICE_LOST = "device_lost"


class CaptureController:
    """Drive a capture device through a bounded run of fixed-length segments.

    ``start`` acquires the device and spawns the capture loop. Each loop
    iteration waits for whichever comes first: the segment timer, a stop
    request, or the device going inactive. The stop request doubles as the
    cancellation token checked at every iteration boundary.
    """

    def __init__(
        self,
        store: SessionStore,
        device: CaptureDevice,
        logger: LogBuffer,
        *,
        segment_seconds: float = CONFIG.chunk_seconds,
        max_chunks: int = MAX_CHUNKS,
    ) -> None:
        self.store = store
        self.device = device
        self.logger = logger
        self.segment_seconds = segment_seconds
        self.max_chunks = max_chunks
        self._state = CaptureState.IDLE
        self._segment_index = 0
        self._stop_requested = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def segment_index(self) -> int:
        return self._segment_index

    async def start(self) -> None:
        if self._state is CaptureState.CAPTURING:
            raise CaptureStateError("Capture already running")
        if chunk_store.is_full(self.store.state.chunks, self.max_chunks):
            raise CaptureStateError("Chunk limit reached; upload or reset before recording again")
        try:
            await self.device.open()
        except CaptureError as exc:
            self.logger.error(f"Recording failed to start: {exc}")
            self.store.dispatch(CaptureFailed(f"Failed to start recording: {exc}"))
            raise
        self._stop_requested = asyncio.Event()
        self._segment_index = 0
        self._state = CaptureState.CAPTURING
        self.store.dispatch(RecordingStarted(max_chunks=self.max_chunks))
        self.logger.add("Recording started")
        self._task = asyncio.create_task(self._run(), name="capture-loop")

    async def stop(self) -> None:
        if self._state is not CaptureState.CAPTURING:
            raise CaptureStateError("Capture is not running")
        self._stop_requested.set()
        await self.wait_stopped()

    async def wait_stopped(self) -> None:
        if self._task is not None:
            await asyncio.shield(self._task)

    async def close(self) -> None:
        """Tear down without flushing; used on process exit."""

        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.device.release()

    async def _run(self) -> None:
        error: str | None = None
        try:
            while True:
                self.device.begin_segment()
                captured_at = datetime.now(timezone.utc)
                boundary = await self._await_boundary()
                if boundary is _Boundary.DEVICE_LOST:
                    raise DeviceInactive("Input device became inactive during capture")
                payload = await self.device.flush()
                if payload:
                    self._append(payload, captured_at)
                else:
                    self.logger.add(f"Segment {self._segment_index} was empty; skipped")
                if boundary is _Boundary.STOP:
                    self.logger.add("Recording stopped by user")
                    break
                if self._segment_index + 1 >= self.max_chunks:
                    self.logger.add(f"Chunk limit of {self.max_chunks} reached")
                    break
                if chunk_store.is_full(self.store.state.chunks, self.max_chunks):
                    self.logger.add("Chunk store full; recording stopped")
                    break
                if not self.device.is_active:
                    self.logger.warning("Input device no longer active; recording stopped")
                    break
                self._segment_index += 1
        except CaptureError as exc:
            error = str(exc)
            self.logger.error(f"Recording aborted: {exc}")
        except Exception as exc:
            error = f"Recording failed: {exc}"
            self.logger.error(error)
        finally:
            self.device.release()
            self._state = CaptureState.STOPPED
            self.store.dispatch(RecordingStopped(error=error))

    async def _await_boundary(self) -> _Boundary:
        waiters = {
            asyncio.ensure_future(asyncio.sleep(self.segment_seconds)): _Boundary.TIMER,
            asyncio.ensure_future(self._stop_requested.wait()): _Boundary.STOP,
            asyncio.ensure_future(self.device.wait_inactive()): _Boundary.DEVICE_LOST,
        }
        try:
            done, _ = await asyncio.wait(set(waiters), return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        outcomes = {waiters[waiter] for waiter in done}
        for boundary in (_Boundary.DEVICE_LOST, _Boundary.STOP, _Boundary.TIMER):
            if boundary in outcomes:
                return boundary
        raise RuntimeError("capture boundary wait returned no outcome")

    def _append(self, payload: bytes, captured_at: datetime) -> None:
        chunk = AudioChunk(
            payload=payload,
            duration_ms=int(self.segment_seconds * 1000),
            captured_at=captured_at,
            sequence=self._segment_index,
            content_type=self.device.content_type,
        )
        before = len(self.store.state.chunks)
        state = self.store.dispatch(ChunkCaptured(chunk))
        if len(state.chunks) > before:
            self.logger.add(f"Chunk {chunk.sequence} captured ({chunk.size} bytes)")


__all__ = ["CaptureController", "CaptureState"]
