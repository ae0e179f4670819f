"""Persistent recorder settings (microphone, auto-split and trimming policy)."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

LOGGER = logging.getLogger("voicecoach.settings")


class AppSettings(BaseModel):
    microphone_id: str = Field(default="")
    sample_rate: int = Field(default=44100, ge=8000, le=192000)
    auto_split_enabled: bool = Field(default=True)
    auto_split_threshold: float = Field(default=0.02, ge=0.01, le=0.1)
    auto_split_duration: float = Field(default=1.0, ge=0.5, le=5.0)
    min_recording_length: float = Field(default=0.5, ge=0.0)
    drop_silent_recordings: bool = Field(default=True)
    trim_silence_from_edges: bool = Field(default=True)
    max_edge_silence: float = Field(default=0.5, ge=0.0)
    recording_debug_mode: bool = Field(default=False)


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._settings = self._load()

    def _load(self) -> AppSettings:
        if not self.path.exists():
            return AppSettings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return AppSettings.model_validate(raw)
        except (OSError, ValueError) as exc:
            # ValidationError and JSONDecodeError are both ValueErrors
            LOGGER.warning("Settings file %s unusable, using defaults: %s", self.path, exc)
            return AppSettings()

    def get(self) -> AppSettings:
        return self._settings

    def update(self, **kwargs) -> AppSettings:
        known = {key: value for key, value in kwargs.items() if key in AppSettings.model_fields}
        merged = {**self._settings.model_dump(), **known}
        try:
            updated = AppSettings.model_validate(merged)
        except ValidationError:
            LOGGER.warning("Rejected settings update: %s", sorted(known))
            raise
        self._settings = updated
        self._persist()
        return self._settings

    def _persist(self) -> None:
        self.path.write_text(self._settings.model_dump_json(indent=2), encoding="utf-8")


__all__ = ["AppSettings", "SettingsStore"]
