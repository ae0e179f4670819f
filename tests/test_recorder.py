import asyncio

import numpy as np
import pytest

from helpers import FakeClock, FakeStream
from mobile.voicecoach.audio.encoding import WAV_FORMAT
from mobile.voicecoach.audio.recorder import RecorderError, SegmentRecorder


def make_recorder(stream, clock, stops, errors, **kwargs):
    return SegmentRecorder(
        stream,
        WAV_FORMAT,
        segment=3,
        on_stop=stops.append,
        on_error=errors.append,
        group_key="set_a_1",
        clock=clock,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_recorder_collects_chunks_and_reports_asynchronously():
    stream, clock = FakeStream(16000), FakeClock()
    stops, errors = [], []
    recorder = make_recorder(stream, clock, stops, errors, chunk_seconds=0.1)
    recorder.start()
    assert recorder.state == "recording"

    for _ in range(25):
        stream.push(np.full(160, 0.1, np.float32))
    clock.advance(0.25)
    recorder.stop()

    assert stops == []
    assert stream.subscriber_count == 0
    await asyncio.sleep(0)

    [result] = stops
    assert result.segment == 3
    assert result.group_key == "set_a_1"
    assert result.duration == pytest.approx(0.25)
    assert [chunk.size for chunk in result.chunks] == [1600, 1600, 800]
    assert result.samples().size == 4000
    assert recorder.state == "stopped"
    assert errors == []


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    stream, clock = FakeStream(), FakeClock()
    stops, errors = [], []
    recorder = make_recorder(stream, clock, stops, errors)
    recorder.start()
    recorder.stop()
    recorder.stop()
    await asyncio.sleep(0)

    assert len(stops) == 1


@pytest.mark.asyncio
async def test_double_start_is_rejected():
    stream = FakeStream()
    recorder = make_recorder(stream, FakeClock(), [], [])
    recorder.start()
    with pytest.raises(RecorderError):
        recorder.start()


@pytest.mark.asyncio
async def test_start_requires_active_stream():
    stream = FakeStream()
    stream.active = False
    recorder = make_recorder(stream, FakeClock(), [], [])
    with pytest.raises(RecorderError):
        recorder.start()
    assert recorder.state == "inactive"


@pytest.mark.asyncio
async def test_stream_end_reports_error_instead_of_stop():
    stream = FakeStream()
    stops, errors = [], []
    recorder = make_recorder(stream, FakeClock(), stops, errors)
    recorder.start()
    stream.push(np.ones(160, np.float32))

    stream.end()
    await asyncio.sleep(0)

    assert stops == []
    assert len(errors) == 1
    assert isinstance(errors[0], RecorderError)
    assert not recorder.active
    recorder.stop()
    await asyncio.sleep(0)
    assert stops == []
