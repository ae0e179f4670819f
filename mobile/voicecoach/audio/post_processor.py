"""Filtering, commit and background edge trimming for completed segments."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import timezone
from typing import Optional, Set

import numpy as np

from ..config import CONFIG
from ..store.recording_store import RecordingStore
from ..store.settings_store import AppSettings
from .encoding import EncodingError, assemble, decode, encode
from .types import AudioPiece, RecordedSegment

LOGGER = logging.getLogger("voicecoach.post")


def is_silent(samples: np.ndarray, threshold: float, silent_fraction: float = CONFIG.silent_fraction) -> bool:
    """Mean absolute amplitude below threshold, or nearly every sample below it."""
    data = np.abs(np.asarray(samples, dtype=np.float32).reshape(-1))
    if data.size == 0:
        return True
    if float(np.mean(data)) < threshold:
        return True
    return float(np.count_nonzero(data < threshold)) / data.size > silent_fraction


def trim_edges(samples: np.ndarray, sample_rate: int, threshold: float, max_edge_silence: float) -> np.ndarray:
    """Cut leading/trailing silence, keeping up to ``max_edge_silence`` seconds on each side."""
    data = np.asarray(samples).reshape(-1)
    loud = np.flatnonzero(np.abs(data) >= threshold)
    if loud.size == 0:
        return data
    guard = max(0, int(round(max_edge_silence * sample_rate)))
    start = max(0, int(loud[0]) - guard)
    end = min(data.size, int(loud[-1]) + 1 + guard)
    return data[start:end]


class SegmentPostProcessor:
    """Applies min-length and full-silence filters, commits, then trims in the background."""

    def __init__(self, store: RecordingStore, *, silent_fraction: float = CONFIG.silent_fraction) -> None:
        self.store = store
        self.silent_fraction = silent_fraction
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, segment: RecordedSegment, settings: AppSettings, *, final: bool = False) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.process(segment, settings, final=final))
        self._track(task)
        return task

    async def process(
        self, segment: RecordedSegment, settings: AppSettings, *, final: bool = False
    ) -> Optional[AudioPiece]:
        minimum = settings.min_recording_length
        if minimum > 0 and segment.duration < minimum:
            LOGGER.info(
                "Segment %d discarded: %.2fs shorter than minimum %.2fs%s",
                segment.segment,
                segment.duration,
                minimum,
                " (final)" if final else "",
            )
            return None

        try:
            payload, samples = assemble(segment.chunks, segment.sample_rate, segment.audio_format)
        except EncodingError as exc:
            LOGGER.error("Segment %d could not be assembled: %s", segment.segment, exc)
            return None

        threshold = settings.auto_split_threshold
        if settings.drop_silent_recordings and is_silent(samples, threshold, self.silent_fraction):
            LOGGER.info("Segment %d discarded: no audible content", segment.segment)
            return None

        piece = AudioPiece(
            id=uuid.uuid4().hex,
            payload=payload,
            audio_format=segment.audio_format,
            duration=segment.duration,
            timestamp=segment.started_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            group_key=segment.group_key,
            segment=segment.segment,
        )
        self.store.add(segment.group_key, piece)
        LOGGER.info("Segment %d committed (%.2fs, %s)", segment.segment, piece.duration, piece.audio_format.mime_type)

        if settings.trim_silence_from_edges:
            self._track(asyncio.get_running_loop().create_task(self._trim_in_background(piece, settings)))
        return piece

    async def _trim_in_background(self, piece: AudioPiece, settings: AppSettings) -> None:
        loop = asyncio.get_running_loop()
        try:
            trimmed = await loop.run_in_executor(
                None,
                trim_payload,
                piece,
                settings.auto_split_threshold,
                settings.max_edge_silence,
            )
            if trimmed is None:
                return
            minimum = settings.min_recording_length
            if minimum > 0 and trimmed.duration < minimum:
                LOGGER.debug("Trim of segment %d kept untrimmed: result below minimum length", piece.segment)
                return
            self.store.replace(piece.group_key, piece.id, trimmed)
            LOGGER.info("Segment %d trimmed %.2fs -> %.2fs", piece.segment, piece.duration, trimmed.duration)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Edge trimming failed for segment %d, keeping original: %s", piece.segment, exc)

    async def drain(self) -> None:
        """Wait for every pending commit and trim task, including ones spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def trim_payload(piece: AudioPiece, threshold: float, max_edge_silence: float) -> Optional[AudioPiece]:
    """Decode, trim and re-encode; ``None`` when trimming changes nothing."""
    samples, sample_rate = decode(piece.payload)
    trimmed = trim_edges(samples, sample_rate, threshold, max_edge_silence)
    if trimmed.size == samples.size or trimmed.size == 0:
        return None
    payload = encode(trimmed, sample_rate, piece.audio_format)
    return replace(piece, payload=payload, duration=trimmed.size / float(sample_rate))


__all__ = ["SegmentPostProcessor", "is_silent", "trim_edges", "trim_payload"]
