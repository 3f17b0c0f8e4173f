"""Microphone capture devices used by the capture controller."""

from __future__ import annotations

import asyncio
import io
import logging
import threading
from typing import List, Optional, Protocol

import numpy as np
import soundfile as sf

from ..config import CONFIG
from ..errors import DeviceInactive, DeviceUnavailable, PermissionDenied
from .types import FORMAT_CONTENT_TYPES

LOGGER = logging.getLogger("voicenotes.device")

_PERMISSION_HINTS = ("permission", "denied", "not authorized", "unauthorized")


class CaptureDevice(Protocol):
    """Exclusive handle on an audio input.

    ``open`` acquires the device, ``begin_segment``/``flush`` bracket one
    segment, ``wait_inactive`` resolves when the hardware goes away and
    ``release`` frees the handle. ``release`` must be safe to call twice.
    """

    content_type: str

    async def open(self) -> None: ...

    def begin_segment(self) -> None: ...

    async def flush(self) -> bytes: ...

    @property
    def is_active(self) -> bool: ...

    async def wait_inactive(self) -> None: ...

    def release(self) -> None: ...


class SoundDeviceCapture:
    """PortAudio input stream that encodes each segment with soundfile."""

    def __init__(
        self,
        *,
        sample_rate: int = CONFIG.sample_rate,
        channels: int = CONFIG.channels,
        audio_format: str = CONFIG.chunk_format,
        device: int | str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.audio_format = audio_format.upper()
        self.content_type = FORMAT_CONTENT_TYPES.get(self.audio_format, "audio/wav")
        self.device = device
        self._sd = None
        self._stream = None
        self._frames: List[np.ndarray] = []
        self._frames_lock = threading.Lock()
        self._recording = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inactive = asyncio.Event()

    def _try_import_sounddevice(self):
        try:
            import sounddevice as sd  # type: ignore

            return sd
        except Exception:
            return None

    async def open(self) -> None:
        self._sd = self._try_import_sounddevice()
        if self._sd is None:
            raise DeviceUnavailable("Audio capture is not available (sounddevice/PortAudio missing)")
        self._loop = asyncio.get_running_loop()
        self._inactive = asyncio.Event()
        try:
            self._sd.query_devices(self.device, kind="input")
            stream = self._sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self.device,
                callback=self._on_audio,
                finished_callback=self._on_finished,
            )
            stream.start()
        except Exception as exc:
            message = str(exc)
            if any(hint in message.lower() for hint in _PERMISSION_HINTS):
                raise PermissionDenied(f"Microphone access denied: {message}") from exc
            raise DeviceUnavailable(f"No usable input device: {message}") from exc
        self._stream = stream
        LOGGER.info("Input stream opened (%d Hz, %d ch)", self.sample_rate, self.channels)

    def begin_segment(self) -> None:
        if not self.is_active:
            raise DeviceInactive("Input stream is not active")
        with self._frames_lock:
            self._frames = []
            self._recording = True

    async def flush(self) -> bytes:
        with self._frames_lock:
            frames = self._frames
            self._frames = []
            self._recording = False
        if not frames:
            return b""
        pcm = np.concatenate(frames)
        return await asyncio.to_thread(self._encode, pcm)

    @property
    def is_active(self) -> bool:
        return self._stream is not None and bool(getattr(self._stream, "active", False))

    async def wait_inactive(self) -> None:
        await self._inactive.wait()

    def release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            LOGGER.warning("Closing input stream failed: %s", exc)
        LOGGER.info("Input stream released")

    def _on_audio(self, indata, frames, time_info, status) -> None:  # noqa: ARG002
        if status:
            LOGGER.debug("Input status: %s", status)
        with self._frames_lock:
            if self._recording:
                self._frames.append(np.array(indata, dtype=np.int16, copy=True))

    def _on_finished(self) -> None:
        # PortAudio calls this from its own thread when the stream ends
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._inactive.set)

    def _encode(self, pcm: np.ndarray) -> bytes:
        buffer = io.BytesIO()
        sf.write(buffer, pcm, self.sample_rate, format=self.audio_format, subtype="PCM_16")
        return buffer.getvalue()


__all__ = ["CaptureDevice", "SoundDeviceCapture"]
