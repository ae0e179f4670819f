"""Frequency-domain level analyser used by the real-time silence detector."""

from __future__ import annotations

import numpy as np

from ..config import CONFIG


class SpectrumAnalyser:
    """Keeps the latest ``fft_size`` samples and reports byte-scaled magnitudes.

    Magnitudes are windowed (Blackman), optionally smoothed over time, converted
    to decibels and mapped linearly from ``[min_db, max_db]`` onto ``0..255``.
    """

    def __init__(
        self,
        fft_size: int = CONFIG.fft_size,
        *,
        smoothing: float = CONFIG.smoothing,
        min_db: float = CONFIG.min_decibels,
        max_db: float = CONFIG.max_decibels,
    ) -> None:
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 32")
        if max_db <= min_db:
            raise ValueError("max_db must be greater than min_db")
        self.fft_size = fft_size
        self.smoothing = max(0.0, min(float(smoothing), 0.999))
        self.min_db = float(min_db)
        self.max_db = float(max_db)
        self._window = np.blackman(fft_size).astype(np.float32)
        self._buffer = np.zeros(fft_size, dtype=np.float32)
        self._previous = np.zeros(fft_size // 2, dtype=np.float64)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def write(self, samples: np.ndarray) -> None:
        data = np.asarray(samples, dtype=np.float32).reshape(-1)
        count = data.size
        if count == 0:
            return
        if count >= self.fft_size:
            self._buffer[:] = data[-self.fft_size :]
            return
        self._buffer[:-count] = self._buffer[count:]
        self._buffer[-count:] = data

    def byte_frequency_data(self) -> np.ndarray:
        spectrum = np.abs(np.fft.rfft(self._buffer * self._window))[: self.bin_count] / self.fft_size
        if self.smoothing:
            spectrum = self.smoothing * self._previous + (1.0 - self.smoothing) * spectrum
        self._previous = spectrum
        decibels = 20.0 * np.log10(np.maximum(spectrum, 1e-12))
        scaled = 255.0 * (decibels - self.min_db) / (self.max_db - self.min_db)
        return np.clip(np.floor(scaled), 0, 255).astype(np.uint8)

    def level(self) -> float:
        """RMS of the byte magnitudes normalised to ``[0, 1]``."""
        data = self.byte_frequency_data().astype(np.float64)
        rms = float(np.sqrt(np.mean(data**2)))
        return max(0.0, min(1.0, rms / 255.0))

    def reset(self) -> None:
        self._buffer.fill(0.0)
        self._previous.fill(0.0)


__all__ = ["SpectrumAnalyser"]
