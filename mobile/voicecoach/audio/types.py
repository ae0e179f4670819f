"""Dataclasses shared across audio helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

import numpy as np


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Negotiated encoding for one segment (mime-equivalent + soundfile container)."""

    mime_type: str
    extension: str
    container: str
    subtype: str
    bitrate: Optional[int] = None


@dataclass(slots=True)
class AudioPiece:
    """A committed recording unit handed to the recording store."""

    id: str
    payload: bytes
    audio_format: AudioFormat
    duration: float
    timestamp: str
    group_key: str
    segment: int
    title: Optional[str] = None

    @property
    def filename(self) -> str:
        return f"{self.group_key}_{self.segment:03d}_{self.id[:8]}.{self.audio_format.extension}"


@dataclass(slots=True)
class RecordedSegment:
    """Raw capture of one segment as handed over by the recorder's stop event."""

    segment: int
    chunks: List[np.ndarray]
    sample_rate: int
    audio_format: AudioFormat
    duration: float
    started_at: datetime
    group_key: str = "shared"

    def samples(self) -> np.ndarray:
        if not self.chunks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self.chunks).astype(np.float32, copy=False)


@dataclass(slots=True)
class SilenceDetectionConfig:
    threshold: float
    duration: float
    min_recording_length: float
    enabled: bool
    on_silence_detected: Callable[[], None]
    on_speech_detected: Callable[[], None]
    on_audio_level_update: Callable[[float], None]


@dataclass(slots=True)
class SilenceDetectionState:
    """Observable detector snapshot; the session cells stay authoritative."""

    is_active: bool = False
    current_level: float = 0.0
    is_silent: bool = False
    silence_duration: float = 0.0


@dataclass(slots=True)
class RecordingSession:
    """Synchronously updated cells that asynchronous callbacks re-read when they fire."""

    segment: int = 1
    is_recording: bool = False
    auto_split_enabled: bool = True
    is_auto_splitting: bool = False
    history: List[int] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class InputDevice:
    id: int
    name: str
    default_sample_rate: float
    is_default: bool = False
