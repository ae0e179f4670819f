"""Exclusive microphone access: permission caching, constraint fallback and error classification."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Callable, List, Optional
from urllib.parse import urlparse

import numpy as np

from ..config import CONFIG
from .types import InputDevice

LOGGER = logging.getLogger("voicecoach.capture")

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}

# PortAudio error codes (portaudio.h)
PA_INVALID_CHANNEL_COUNT = -9998
PA_INVALID_SAMPLE_RATE = -9997
PA_INVALID_DEVICE = -9996
PA_SAMPLE_FORMAT_NOT_SUPPORTED = -9994
PA_BAD_IO_DEVICE_COMBINATION = -9993
PA_DEVICE_UNAVAILABLE = -9985
PA_HOST_API_NOT_FOUND = -9979


class CaptureError(Exception):
    message = "Could not start recording"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class PermissionDeniedError(CaptureError):
    message = "Microphone permission denied. Please allow microphone access and try again."


class DeviceNotFoundError(CaptureError):
    message = "No microphone found. Please check your device settings."


class DeviceBusyError(CaptureError):
    message = "Microphone is being used by another application. Please close other apps and try again."


class UnsupportedError(CaptureError):
    message = "Audio recording not supported on this device."


class InsecureContextError(CaptureError):
    message = "Audio recording requires HTTPS on mobile devices. Please access this page via HTTPS."


def classify_capture_error(exc: BaseException) -> CaptureError:
    """Map sounddevice / PortAudio failures onto the capture error hierarchy."""
    if isinstance(exc, CaptureError):
        return exc
    text = str(exc)
    lowered = text.lower()
    code = None
    args = getattr(exc, "args", ())
    if len(args) > 1 and isinstance(args[1], int):
        code = args[1]
    if "permission" in lowered or "not allowed" in lowered or "access denied" in lowered:
        return PermissionDeniedError()
    if code == PA_DEVICE_UNAVAILABLE or "unavailable" in lowered or "busy" in lowered:
        return DeviceBusyError()
    if (
        code == PA_INVALID_DEVICE
        or "no input device" in lowered
        or "error querying device" in lowered
        or "invalid device" in lowered
        or "no such device" in lowered
    ):
        return DeviceNotFoundError()
    if code in {
        PA_INVALID_CHANNEL_COUNT,
        PA_INVALID_SAMPLE_RATE,
        PA_SAMPLE_FORMAT_NOT_SUPPORTED,
        PA_BAD_IO_DEVICE_COMBINATION,
        PA_HOST_API_NOT_FOUND,
    } or "portaudio library not found" in lowered:
        return UnsupportedError()
    return CaptureError(f"Could not start recording: {text}" if text else None)


@dataclass(frozen=True, slots=True)
class CaptureEnvironment:
    is_mobile: bool = False
    origin: Optional[str] = None

    @classmethod
    def detect(cls, origin: Optional[str] = None) -> "CaptureEnvironment":
        mobile = (
            "ANDROID_ARGUMENT" in os.environ
            or "ANDROID_PRIVATE" in os.environ
            or sys.platform == "ios"
        )
        return cls(is_mobile=mobile, origin=origin)

    @property
    def requires_https(self) -> bool:
        if not self.is_mobile or not self.origin:
            return False
        parsed = urlparse(self.origin)
        return parsed.scheme != "https" and (parsed.hostname or "") not in LOCAL_HOSTS


class MicrophoneStream:
    """Single platform input stream fanned out to recorder and detector subscribers.

    PortAudio invokes callbacks on its own thread; blocks are handed to the
    asyncio loop so every subscriber runs on the loop thread.
    """

    def __init__(self, raw: Any, loop: asyncio.AbstractEventLoop, *, device: Any, requested_rate: int) -> None:
        self._raw = raw
        self._loop = loop
        self.device = device
        self.requested_rate = requested_rate
        self.sample_rate = int(getattr(raw, "samplerate", requested_rate) or requested_rate)
        self._subscribers: List[Callable[[np.ndarray], None]] = []
        self._end_listeners: List[Callable[[], None]] = []
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed and bool(getattr(self._raw, "active", False))

    def matches(self, device: Any, sample_rate: int) -> bool:
        return self.device == device and self.requested_rate == int(sample_rate)

    def subscribe(self, callback: Callable[[np.ndarray], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def on_end(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._end_listeners.append(callback)

        def _remove() -> None:
            if callback in self._end_listeners:
                self._end_listeners.remove(callback)

        return _remove

    def handle_block(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        block = np.array(indata[:, 0] if indata.ndim > 1 else indata, dtype=np.float32, copy=True)
        try:
            self._loop.call_soon_threadsafe(self._dispatch, block, status)
        except RuntimeError:
            # loop already closed during shutdown
            pass

    def handle_finished(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._notify_end)
        except RuntimeError:
            pass

    def _dispatch(self, block: np.ndarray, status: Any) -> None:
        if status:
            LOGGER.warning("Input stream status: %s", status)
        for callback in list(self._subscribers):
            callback(block)

    def _notify_end(self) -> None:
        self._closed = True
        listeners, self._end_listeners = self._end_listeners, []
        for callback in listeners:
            callback()

    def close(self) -> None:
        if self._closed:
            return
        try:
            self._raw.stop()
            self._raw.close()
        except Exception as exc:  # pragma: no cover - driver specific teardown
            LOGGER.warning("Closing input stream failed: %s", exc)
        self._notify_end()
        self._subscribers.clear()


def _try_import_sounddevice():
    try:
        import sounddevice as sd  # type: ignore

        return sd
    except Exception as exc:
        LOGGER.warning("sounddevice unavailable: %s", exc)
        return None


def _device_argument(microphone_id: str | int | None) -> Any:
    if microphone_id in (None, ""):
        return None
    if isinstance(microphone_id, int):
        return microphone_id
    text = str(microphone_id).strip()
    return int(text) if text.isdigit() else text


class CaptureSession:
    """Owns the microphone and the cached permission/stream state."""

    def __init__(self, *, environment: CaptureEnvironment | None = None, sd_module: Any = None) -> None:
        self.environment = environment or CaptureEnvironment.detect()
        self._sd = sd_module if sd_module is not None else _try_import_sounddevice()
        self._stream: MicrophoneStream | None = None
        self.permission_granted = False

    @property
    def stream(self) -> MicrophoneStream | None:
        return self._stream

    def acquire(self, microphone_id: str | int | None = "", sample_rate: int = 44100) -> MicrophoneStream:
        device = _device_argument(microphone_id)
        cached = self._stream
        if self.permission_granted and cached is not None and cached.active and cached.matches(device, sample_rate):
            return cached
        if self.environment.requires_https:
            self.permission_granted = False
            raise InsecureContextError()
        if self._sd is None:
            self.permission_granted = False
            raise UnsupportedError()
        loop = asyncio.get_running_loop()
        try:
            stream = self._open(loop, device, sample_rate)
        except Exception as exc:
            LOGGER.warning("Requested input constraints failed (%s); trying basic audio", exc)
            try:
                stream = self._open(loop, None, None)
            except Exception as fallback_exc:
                self.permission_granted = False
                error = classify_capture_error(fallback_exc)
                LOGGER.error("Microphone access failed: %s", fallback_exc)
                raise error from fallback_exc
            stream.device = device
            stream.requested_rate = int(sample_rate)
        if cached is not None and cached is not stream:
            cached.close()
        self._stream = stream
        self.permission_granted = True
        LOGGER.info("Microphone stream opened (device=%s, %d Hz)", device, stream.sample_rate)
        return stream

    def _open(self, loop: asyncio.AbstractEventLoop, device: Any, sample_rate: Optional[int]) -> MicrophoneStream:
        holder: dict[str, MicrophoneStream] = {}

        def _callback(indata, frames, time_info, status):
            holder["stream"].handle_block(indata, frames, time_info, status)

        def _finished():
            if "stream" in holder:
                holder["stream"].handle_finished()

        raw = self._sd.InputStream(
            device=device,
            samplerate=sample_rate,
            channels=CONFIG.channels,
            dtype="float32",
            callback=_callback,
            finished_callback=_finished,
        )
        stream = MicrophoneStream(raw, loop, device=device, requested_rate=int(sample_rate or raw.samplerate))
        holder["stream"] = stream
        try:
            raw.start()
        except BaseException:
            raw.close()
            raise
        return stream

    def release(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def list_input_devices(self) -> List[InputDevice]:
        return list_input_devices(self._sd)


def list_input_devices(sd_module: Any = None) -> List[InputDevice]:
    sd = sd_module if sd_module is not None else _try_import_sounddevice()
    if sd is None:
        return []
    try:
        devices = sd.query_devices()
        default_input = sd.default.device[0]
    except Exception as exc:
        LOGGER.error("Error enumerating audio devices: %s", exc)
        return []
    result: List[InputDevice] = []
    for index, info in enumerate(devices):
        if int(info.get("max_input_channels", 0)) <= 0:
            continue
        result.append(
            InputDevice(
                id=index,
                name=str(info.get("name") or f"Microphone {index}"),
                default_sample_rate=float(info.get("default_samplerate", 0.0)),
                is_default=index == default_input,
            )
        )
    return result


__all__ = [
    "CaptureEnvironment",
    "CaptureError",
    "CaptureSession",
    "DeviceBusyError",
    "DeviceNotFoundError",
    "InsecureContextError",
    "MicrophoneStream",
    "PermissionDeniedError",
    "UnsupportedError",
    "classify_capture_error",
    "list_input_devices",
]
