"""Fakes shared by the recorder tests: stream, capture, clock and scripted input."""

from __future__ import annotations

import asyncio

import numpy as np


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStream:
    """Stands in for MicrophoneStream: synchronous fan-out of pushed blocks."""

    def __init__(self, sample_rate: int = 16_000) -> None:
        self.sample_rate = sample_rate
        self.active = True
        self._subscribers = []
        self._end_listeners = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback):
        self._subscribers.append(callback)
        return lambda: callback in self._subscribers and self._subscribers.remove(callback)

    def on_end(self, callback):
        self._end_listeners.append(callback)
        return lambda: callback in self._end_listeners and self._end_listeners.remove(callback)

    def push(self, block) -> None:
        data = np.asarray(block, dtype=np.float32)
        for callback in list(self._subscribers):
            callback(data)

    def end(self) -> None:
        self.active = False
        listeners, self._end_listeners = self._end_listeners, []
        for callback in listeners:
            callback()

    def close(self) -> None:
        self.end()


class FakeCapture:
    def __init__(self, stream: FakeStream | None = None, error: Exception | None = None) -> None:
        self.stream = stream or FakeStream()
        self.error = error
        self.calls = []

    def acquire(self, microphone_id="", sample_rate=44100):
        self.calls.append((microphone_id, sample_rate))
        if self.error is not None:
            raise self.error
        return self.stream

    def release(self) -> None:
        self.stream.close()


class ScriptedInput:
    """Feeds one block per analysis frame and advances the fake clock.

    Used as the detector's ``sleep`` so a whole capture runs deterministically.
    """

    def __init__(self, stream: FakeStream, clock: FakeClock, blocks, on_exhausted=None) -> None:
        self.stream = stream
        self.clock = clock
        self.blocks = list(blocks)
        self.on_exhausted = on_exhausted
        self.index = 0
        self.exhausted = False

    async def sleep(self, interval: float) -> None:
        self.clock.advance(interval)
        if self.index < len(self.blocks):
            self.stream.push(self.blocks[self.index])
            self.index += 1
        elif not self.exhausted:
            self.exhausted = True
            if self.on_exhausted is not None:
                asyncio.get_running_loop().call_soon(self.on_exhausted)
        await asyncio.sleep(0)


def noise_blocks(seconds: float, sample_rate: int, block: int, amplitude: float = 0.3, seed: int = 7):
    rng = np.random.default_rng(seed)
    count = int(round(seconds * sample_rate / block))
    return [np.clip(rng.normal(0.0, amplitude, block), -1.0, 1.0).astype(np.float32) for _ in range(count)]


def silent_blocks(seconds: float, sample_rate: int, block: int):
    count = int(round(seconds * sample_rate / block))
    return [np.zeros(block, dtype=np.float32) for _ in range(count)]
