"""Process-wide constants for the VoiceCoach recorder."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RecorderConfig:
    channels: int = 1
    frame_rate: float = float(os.getenv("VOICECOACH_FRAME_RATE", "60"))
    fft_size: int = 2048
    smoothing: float = 0.0
    min_decibels: float = -100.0
    max_decibels: float = -30.0
    chunk_seconds: float = 0.1
    settle_delay: float = float(os.getenv("VOICECOACH_SETTLE_DELAY", "0.1"))
    silent_fraction: float = 0.95
    settings_file: str = "settings.json"
    log_history: int = 200


CONFIG = RecorderConfig()


__all__ = ["CONFIG", "RecorderConfig"]
