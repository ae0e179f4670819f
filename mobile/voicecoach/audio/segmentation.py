"""Auto-split state machine: one user recording action, many silence-bounded segments.

Asynchronous callbacks (recorder stop, detector events) never trust values
captured when they were registered; they re-read ``RecordingSession`` cells at
fire time. The recorder's stop handler is the only place that decides whether
the next segment starts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..config import CONFIG
from ..store.recording_store import RecordingStore
from ..store.settings_store import AppSettings
from .capture import CaptureError, CaptureSession
from .encoding import PREFERRED_FORMATS, negotiate_format
from .post_processor import SegmentPostProcessor
from .recorder import RecorderError, SegmentRecorder
from .silence_detector import SilenceDetector
from .types import AudioFormat, RecordedSegment, RecordingSession, SilenceDetectionConfig

LOGGER = logging.getLogger("voicecoach.segments")


class SegmentState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"


class SegmentationError(Exception):
    pass


class SegmentationController:
    def __init__(
        self,
        capture: CaptureSession,
        store: RecordingStore,
        settings: Callable[[], AppSettings],
        *,
        post_processor: SegmentPostProcessor | None = None,
        key_provider: Callable[[], str] = lambda: "shared",
        formats: Sequence[AudioFormat] = PREFERRED_FORMATS,
        settle_delay: float = CONFIG.settle_delay,
        frame_rate: float = CONFIG.frame_rate,
        fft_size: int = CONFIG.fft_size,
        smoothing: float = CONFIG.smoothing,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_level: Callable[[float], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self.capture = capture
        self.store = store
        self.post_processor = post_processor or SegmentPostProcessor(store)
        self._settings = settings
        self._key_provider = key_provider
        self._formats = tuple(formats)
        self._settle_delay = max(0.0, float(settle_delay))
        self._frame_rate = frame_rate
        self._fft_size = fft_size
        self._smoothing = smoothing
        self._clock = clock
        self._sleep = sleep
        self.on_level = on_level
        self.on_error = on_error

        self.session = RecordingSession()
        self.level = 0.0
        self.last_error: Optional[Exception] = None
        self._state = SegmentState.IDLE
        self._stream: Any = None
        self._recorder: Optional[SegmentRecorder] = None
        self._detector: Optional[SilenceDetector] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> SegmentState:
        return self._state

    @property
    def detector(self) -> Optional[SilenceDetector]:
        return self._detector

    async def start(self) -> None:
        if self._state is not SegmentState.IDLE:
            raise SegmentationError("A recording session is already active")
        settings = self._settings()
        try:
            stream = self.capture.acquire(settings.microphone_id, settings.sample_rate)
        except CaptureError as exc:
            LOGGER.error("Could not start recording: %s", exc)
            self.last_error = exc
            raise

        self._stream = stream
        self.last_error = None
        self.session = RecordingSession(
            segment=1,
            is_recording=True,
            auto_split_enabled=settings.auto_split_enabled,
        )
        self._idle.clear()
        self._detector = SilenceDetector(
            SilenceDetectionConfig(
                threshold=settings.auto_split_threshold,
                duration=settings.auto_split_duration,
                min_recording_length=settings.min_recording_length,
                enabled=settings.auto_split_enabled,
                on_silence_detected=self._handle_silence,
                on_speech_detected=self._handle_speech,
                on_audio_level_update=self._handle_level,
            ),
            frame_rate=self._frame_rate,
            fft_size=self._fft_size,
            smoothing=self._smoothing,
            clock=self._clock,
            sleep=self._sleep,
            debug=settings.recording_debug_mode,
        )
        try:
            self.start_segment()
        except (RecorderError, SegmentationError) as exc:
            LOGGER.error("Could not start first segment: %s", exc)
            self.last_error = exc
            self._finish_session()
            raise
        self._detector.start(stream)
        LOGGER.info("Recording session started (auto-split %s)", "on" if settings.auto_split_enabled else "off")

    def stop(self) -> None:
        """User stop: the in-progress segment is still committed through the filters."""
        if self._state is SegmentState.IDLE:
            return
        self.session.is_recording = False
        self._cancel_restart()
        if self._detector is not None:
            self._detector.stop()
        recorder = self._recorder
        if recorder is None:
            self._finish_session()
        elif recorder.active:
            self._state = SegmentState.STOPPING
            recorder.stop()
        # otherwise a stop is already in flight and its handler finalizes

    async def toggle(self) -> None:
        if self._state is SegmentState.IDLE:
            await self.start()
        else:
            self.stop()

    def start_segment(self) -> None:
        if self._stream is None or not self.session.is_recording:
            raise SegmentationError("No active recording session")
        if self._recorder is not None:
            raise SegmentationError("A segment is already recording; the microphone is exclusive")
        number = self.session.segment
        audio_format = negotiate_format(self._stream.sample_rate, self._formats)
        recorder = SegmentRecorder(
            self._stream,
            audio_format,
            segment=number,
            group_key=self._key_provider(),
            on_stop=lambda result: self._handle_recorder_stopped(recorder, result),
            on_error=lambda exc: self._handle_recorder_error(recorder, exc),
            clock=self._clock,
        )
        recorder.start()
        self._recorder = recorder
        self._state = SegmentState.RECORDING
        self.session.is_auto_splitting = False
        self.session.history.append(number)
        LOGGER.info("Segment %d recording (%s)", number, audio_format.mime_type)

    def set_auto_split(self, enabled: bool) -> None:
        self.session.auto_split_enabled = bool(enabled)
        detector = self._detector
        if detector is None:
            return
        detector.config.enabled = bool(enabled)
        if enabled and self.session.is_recording and not detector.running:
            detector.start(self._stream)

    def update_detection(self, settings: AppSettings) -> None:
        """Apply threshold, silence duration and minimum length to the running detector."""
        detector = self._detector
        if detector is None:
            return
        config = detector.config
        config.threshold = settings.auto_split_threshold
        config.duration = settings.auto_split_duration
        config.min_recording_length = settings.min_recording_length
        detector.debug = settings.recording_debug_mode
        LOGGER.info(
            "Silence detection updated (threshold=%.3f, duration=%.2fs, min length=%.2fs)",
            config.threshold,
            config.duration,
            config.min_recording_length,
        )

    async def drain(self) -> None:
        """Wait until the session is idle and every segment has been processed."""
        await self._idle.wait()
        await self.post_processor.drain()

    def _handle_silence(self) -> None:
        session = self.session
        if not session.is_recording or not session.auto_split_enabled:
            return
        recorder = self._recorder
        if self._state is not SegmentState.RECORDING or recorder is None or not recorder.active:
            return
        session.is_auto_splitting = True
        self._state = SegmentState.STOPPING
        LOGGER.info("Auto-splitting after segment %d", recorder.segment)
        recorder.stop()

    def _handle_speech(self) -> None:
        LOGGER.debug("Speech detected in segment %d", self.session.segment)

    def _handle_level(self, level: float) -> None:
        self.level = level
        if self.on_level is not None:
            self.on_level(level)

    def _handle_recorder_stopped(self, recorder: SegmentRecorder, result: RecordedSegment) -> None:
        session = self.session
        final = not (session.is_recording and session.auto_split_enabled)
        self.post_processor.submit(result, self._settings(), final=final)
        if recorder is not self._recorder:
            LOGGER.debug("Stop event from a superseded recorder (segment %d)", result.segment)
            return
        self._recorder = None
        if final:
            self._finish_session()
            return
        self._restart_handle = asyncio.get_running_loop().call_later(
            self._settle_delay, self._restart_after_settle
        )

    def _restart_after_settle(self) -> None:
        self._restart_handle = None
        if not self.session.is_recording:
            self._finish_session()
            return
        self.session.segment += 1
        try:
            self.start_segment()
        except (RecorderError, SegmentationError) as exc:
            LOGGER.error("Could not start segment %d: %s", self.session.segment, exc)
            self._fail(exc)

    def _handle_recorder_error(self, recorder: SegmentRecorder, exc: Exception) -> None:
        LOGGER.error("Recording error in segment %d: %s", recorder.segment, exc)
        if recorder is not self._recorder:
            return
        self._recorder = None
        self._fail(exc)

    def _fail(self, exc: Exception) -> None:
        self.last_error = exc
        self.session.is_recording = False
        self._finish_session()
        if self.on_error is not None:
            self.on_error(exc)

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _finish_session(self) -> None:
        self._cancel_restart()
        if self._detector is not None:
            self._detector.stop()
            self._detector = None
        if self._recorder is not None and self._recorder.active:
            self._recorder.stop()
        self._recorder = None
        self.session.is_recording = False
        self.session.is_auto_splitting = False
        self.session.segment = 1
        self.level = 0.0
        self._state = SegmentState.IDLE
        self._idle.set()
        LOGGER.info("Recording session finished")


__all__ = ["SegmentState", "SegmentationController", "SegmentationError"]
