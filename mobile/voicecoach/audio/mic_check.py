"""Short test recording used to verify the microphone before practising."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..config import CONFIG
from ..store.settings_store import AppSettings
from .analyser import SpectrumAnalyser
from .capture import CaptureSession
from .encoding import PREFERRED_FORMATS, assemble, negotiate_format
from .recorder import RecorderError, SegmentRecorder
from .types import AudioFormat, RecordedSegment

LOGGER = logging.getLogger("voicecoach.mic_check")


@dataclass(slots=True)
class MicCheckResult:
    payload: bytes
    audio_format: AudioFormat
    duration: float
    peak_level: float
    timestamp: str


class MicrophoneCheck:
    def __init__(
        self,
        capture: CaptureSession,
        settings: Callable[[], AppSettings],
        *,
        formats: Sequence[AudioFormat] = PREFERRED_FORMATS,
        frame_rate: float = CONFIG.frame_rate,
        fft_size: int = CONFIG.fft_size,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.capture = capture
        self._settings = settings
        self._formats = tuple(formats)
        self._interval = 1.0 / max(1.0, float(frame_rate))
        self._fft_size = fft_size
        self._clock = clock
        self._sleep = sleep

    async def run(self, seconds: float = 3.0, on_level: Optional[Callable[[float], None]] = None) -> MicCheckResult:
        settings = self._settings()
        stream = self.capture.acquire(settings.microphone_id, settings.sample_rate)
        loop = asyncio.get_running_loop()
        done: asyncio.Future[RecordedSegment] = loop.create_future()
        analyser = SpectrumAnalyser(self._fft_size)
        unsubscribe = stream.subscribe(analyser.write)
        recorder = SegmentRecorder(
            stream,
            negotiate_format(stream.sample_rate, self._formats),
            segment=0,
            group_key="mic-check",
            on_stop=lambda result: done.done() or done.set_result(result),
            on_error=lambda exc: done.done() or done.set_exception(exc),
            clock=self._clock,
        )
        peak = 0.0
        try:
            recorder.start()
            deadline = self._clock() + max(0.0, seconds)
            while self._clock() < deadline and not done.done():
                level = analyser.level()
                peak = max(peak, level)
                if on_level is not None:
                    on_level(level)
                await self._sleep(self._interval)
            recorder.stop()
            result = await done
        finally:
            unsubscribe()
            recorder.stop()

        if not result.chunks:
            raise RecorderError("Test recording failed: No audio data captured")
        payload, _samples = assemble(result.chunks, result.sample_rate, result.audio_format)
        LOGGER.info("Test recording completed (%.1fs, peak level %.2f)", result.duration, peak)
        return MicCheckResult(
            payload=payload,
            audio_format=result.audio_format,
            duration=result.duration,
            peak_level=peak,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )


__all__ = ["MicrophoneCheck", "MicCheckResult"]
