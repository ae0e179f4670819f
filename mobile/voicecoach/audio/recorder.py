"""Per-segment recorder that collects chunked audio from the shared input stream."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

import numpy as np

from ..config import CONFIG
from .types import AudioFormat, RecordedSegment

LOGGER = logging.getLogger("voicecoach.recorder")


class RecorderError(Exception):
    pass


class SegmentRecorder:
    """Records one segment; ``on_stop`` / ``on_error`` fire on a later loop iteration."""

    def __init__(
        self,
        stream: Any,
        audio_format: AudioFormat,
        *,
        segment: int,
        on_stop: Callable[[RecordedSegment], None],
        on_error: Callable[[Exception], None],
        group_key: str = "shared",
        chunk_seconds: float = CONFIG.chunk_seconds,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stream = stream
        self.audio_format = audio_format
        self.segment = segment
        self.group_key = group_key
        self.on_stop = on_stop
        self.on_error = on_error
        self.sample_rate = int(stream.sample_rate)
        self._chunk_frames = max(1, int(self.sample_rate * chunk_seconds))
        self._clock = clock
        self._state = "inactive"
        self._chunks: List[np.ndarray] = []
        self._pending: List[np.ndarray] = []
        self._pending_frames = 0
        self._started_at = 0.0
        self._started_wall: Optional[datetime] = None
        self._detach: List[Callable[[], None]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def active(self) -> bool:
        return self._state == "recording"

    def start(self) -> None:
        if self._state != "inactive":
            raise RecorderError(f"Recorder for segment {self.segment} already {self._state}")
        if not self.stream.active:
            raise RecorderError("Input stream is not active")
        self._loop = asyncio.get_running_loop()
        self._detach = [
            self.stream.subscribe(self._on_block),
            self.stream.on_end(self._on_stream_end),
        ]
        self._started_at = self._clock()
        self._started_wall = datetime.now(timezone.utc)
        self._state = "recording"
        LOGGER.debug("Segment %d recorder started (%s)", self.segment, self.audio_format.mime_type)

    def stop(self) -> None:
        if self._state != "recording":
            return
        duration = max(0.0, self._clock() - self._started_at)
        self._state = "stopped"
        self._release()
        self._flush()
        result = RecordedSegment(
            segment=self.segment,
            chunks=list(self._chunks),
            sample_rate=self.sample_rate,
            audio_format=self.audio_format,
            duration=duration,
            started_at=self._started_wall or datetime.now(timezone.utc),
            group_key=self.group_key,
        )
        self._chunks = []
        self._loop.call_soon(self.on_stop, result)  # type: ignore[union-attr]

    def _on_block(self, block: np.ndarray) -> None:
        if self._state != "recording":
            return
        self._pending.append(block)
        self._pending_frames += len(block)
        if self._pending_frames >= self._chunk_frames:
            self._flush()

    def _flush(self) -> None:
        if not self._pending:
            return
        self._chunks.append(np.concatenate(self._pending))
        self._pending = []
        self._pending_frames = 0

    def _on_stream_end(self) -> None:
        if self._state != "recording":
            return
        self._state = "stopped"
        self._release()
        self._chunks = []
        self._pending = []
        LOGGER.error("Input stream ended during segment %d", self.segment)
        self._loop.call_soon(self.on_error, RecorderError("Input stream ended while recording"))  # type: ignore[union-attr]

    def _release(self) -> None:
        for detach in self._detach:
            detach()
        self._detach = []


__all__ = ["RecorderError", "SegmentRecorder"]
