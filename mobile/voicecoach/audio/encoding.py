"""Capability-probed encoding negotiation and soundfile encode/decode helpers."""

from __future__ import annotations

import io
import logging
from typing import Any, Dict, Iterable, Sequence, Tuple

import numpy as np
import soundfile as sf

from .types import AudioFormat

LOGGER = logging.getLogger("voicecoach.encoding")

OPUS_FORMAT = AudioFormat("audio/ogg;codecs=opus", "ogg", "OGG", "OPUS", bitrate=128_000)
VORBIS_FORMAT = AudioFormat("audio/ogg", "ogg", "OGG", "VORBIS")
FLAC_FORMAT = AudioFormat("audio/flac", "flac", "FLAC", "PCM_16")
WAV_FORMAT = AudioFormat("audio/wav", "wav", "WAV", "PCM_16")

# compressed-lossy, compressed-container, lossless, encoder default
PREFERRED_FORMATS: Tuple[AudioFormat, ...] = (OPUS_FORMAT, VORBIS_FORMAT, FLAC_FORMAT, WAV_FORMAT)
ENCODER_DEFAULT = WAV_FORMAT

_PROBE_SECONDS = 0.05
# Opus bitrate range libsndfile maps compression levels onto
_MIN_BITRATE = 6_000
_MAX_BITRATE = 256_000
_probe_cache: Dict[Tuple[AudioFormat, int], bool] = {}


class EncodingError(Exception):
    pass


def is_supported(audio_format: AudioFormat, sample_rate: int) -> bool:
    """Probe by encoding a short silent buffer; results are cached per rate."""
    key = (audio_format, int(sample_rate))
    cached = _probe_cache.get(key)
    if cached is not None:
        return cached
    probe = np.zeros(max(1, int(sample_rate * _PROBE_SECONDS)), dtype=np.float32)
    try:
        encode(probe, sample_rate, audio_format)
    except EncodingError as exc:
        LOGGER.debug("Encoding %s unavailable at %d Hz: %s", audio_format.mime_type, sample_rate, exc)
        supported = False
    else:
        supported = True
    _probe_cache[key] = supported
    return supported


def negotiate_format(
    sample_rate: int, preferences: Sequence[AudioFormat] = PREFERRED_FORMATS
) -> AudioFormat:
    for candidate in preferences:
        if is_supported(candidate, sample_rate):
            return candidate
    LOGGER.warning("No preferred encoding available at %d Hz; using encoder default", sample_rate)
    return ENCODER_DEFAULT


def bitrate_options(audio_format: AudioFormat) -> Dict[str, Any]:
    """soundfile write options for a target bitrate; libsndfile scales level 0..1 onto its bitrate range."""
    if audio_format.bitrate is None:
        return {}
    span = _MAX_BITRATE - _MIN_BITRATE
    level = 1.0 - (min(max(audio_format.bitrate, _MIN_BITRATE), _MAX_BITRATE) - _MIN_BITRATE) / span
    return {"bitrate_mode": "CONSTANT", "compression_level": round(level, 3)}


def encode(samples: np.ndarray, sample_rate: int, audio_format: AudioFormat) -> bytes:
    data = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    buffer = io.BytesIO()
    try:
        sf.write(
            buffer,
            data,
            int(sample_rate),
            format=audio_format.container,
            subtype=audio_format.subtype,
            **bitrate_options(audio_format),
        )
    except (RuntimeError, ValueError, TypeError) as exc:
        raise EncodingError(f"{audio_format.mime_type} encode failed: {exc}") from exc
    return buffer.getvalue()


def decode(payload: bytes) -> tuple[np.ndarray, int]:
    try:
        data, sample_rate = sf.read(io.BytesIO(payload), dtype="float32", always_2d=False)
    except (RuntimeError, ValueError, TypeError) as exc:
        raise EncodingError(f"decode failed: {exc}") from exc
    if data.ndim > 1:
        data = data[:, 0]
    return data, int(sample_rate)


def assemble(chunks: Iterable[np.ndarray], sample_rate: int, audio_format: AudioFormat) -> tuple[bytes, np.ndarray]:
    """Concatenate collected chunks and encode them as one payload."""
    parts = [np.asarray(chunk, dtype=np.float32).reshape(-1) for chunk in chunks]
    parts = [part for part in parts if part.size]
    if not parts:
        raise EncodingError("no audio chunks collected")
    samples = np.concatenate(parts)
    return encode(samples, sample_rate, audio_format), samples


def clear_probe_cache() -> None:
    _probe_cache.clear()


__all__ = [
    "ENCODER_DEFAULT",
    "EncodingError",
    "FLAC_FORMAT",
    "OPUS_FORMAT",
    "PREFERRED_FORMATS",
    "VORBIS_FORMAT",
    "WAV_FORMAT",
    "assemble",
    "bitrate_options",
    "clear_probe_cache",
    "decode",
    "encode",
    "is_supported",
    "negotiate_format",
]
