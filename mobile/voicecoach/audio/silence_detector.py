"""Real-time silence/speech detection over a live input stream."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from ..config import CONFIG
from .analyser import SpectrumAnalyser
from .types import SilenceDetectionConfig, SilenceDetectionState

LOGGER = logging.getLogger("voicecoach.detector")


class SilenceDetector:
    """Runs a cooperative per-frame analysis loop on the event loop.

    Silence is only tracked once speech has been heard in the current
    segment, so leading silence never triggers a split. The silence event is
    edge-triggered: after it fires, the next one needs fresh speech first.
    """

    def __init__(
        self,
        config: SilenceDetectionConfig,
        *,
        frame_rate: float = CONFIG.frame_rate,
        fft_size: int = CONFIG.fft_size,
        smoothing: float = CONFIG.smoothing,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        debug: bool = False,
    ) -> None:
        self.config = config
        self.frame_interval = 1.0 / max(1.0, float(frame_rate))
        self.analyser = SpectrumAnalyser(fft_size, smoothing=smoothing)
        self.debug = debug
        self._clock = clock
        self._sleep = sleep
        self._state = SilenceDetectionState()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._stream: Any = None
        self._silence_started: Optional[float] = None
        self._last_speech: Optional[float] = None
        self._has_speech = False

    @property
    def state(self) -> SilenceDetectionState:
        current = self._state
        return SilenceDetectionState(
            is_active=current.is_active,
            current_level=current.current_level,
            is_silent=current.is_silent,
            silence_duration=current.silence_duration,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, stream: Any) -> None:
        self.stop()
        if stream is None or not self.config.enabled or not stream.active:
            return
        self._stream = stream
        self._unsubscribe = stream.subscribe(self.analyser.write)
        self._reset_markers()
        self._state.is_active = True
        LOGGER.info("Silence detection initialized - waiting for speech")
        self._task = asyncio.get_running_loop().create_task(self._run(stream))

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._release()

    async def _run(self, stream: Any) -> None:
        try:
            while self._should_continue(stream):
                self.analyze()
                await self._sleep(self.frame_interval)
        finally:
            self._release()

    def _should_continue(self, stream: Any) -> bool:
        return self._unsubscribe is not None and self.config.enabled and stream.active

    def analyze(self) -> float:
        """Run one analysis tick and return the normalised level."""
        level = self.analyser.level()
        config = self.config
        config.on_audio_level_update(level)
        now = self._clock()
        state = self._state
        state.current_level = level

        if level < config.threshold:
            state.is_silent = True
            if not self._has_speech:
                state.silence_duration = 0.0
                return level
            if self._silence_started is None:
                self._silence_started = now
            silence = now - self._silence_started
            state.silence_duration = silence
            if silence >= config.duration:
                since_speech = now - self._last_speech if self._last_speech is not None else 0.0
                if since_speech >= config.min_recording_length:
                    LOGGER.info(
                        "Silence after speech detected (silence=%.2fs, since speech=%.2fs)",
                        silence,
                        since_speech,
                    )
                    self._reset_markers()
                    state.silence_duration = 0.0
                    config.on_silence_detected()
                elif self.debug:
                    LOGGER.debug(
                        "Recording too short - waiting for more content (%.2fs < %.2fs)",
                        since_speech,
                        config.min_recording_length,
                    )
            return level

        if not self._has_speech:
            LOGGER.debug("First speech detected in this segment")
            self._has_speech = True
            config.on_speech_detected()
        elif self._silence_started is not None:
            config.on_speech_detected()
        self._last_speech = now
        self._silence_started = None
        state.is_silent = False
        state.silence_duration = 0.0
        if self.debug:
            LOGGER.debug("level=%.3f speech", level)
        return level

    def _reset_markers(self) -> None:
        self._silence_started = None
        self._last_speech = None
        self._has_speech = False

    def _release(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._stream = None
        self.analyser.reset()
        self._reset_markers()
        self._state = SilenceDetectionState()


__all__ = ["SilenceDetector"]
