import pytest

from helpers import FakeCapture, FakeClock, FakeStream, ScriptedInput, noise_blocks
from mobile.voicecoach.audio.capture import DeviceNotFoundError
from mobile.voicecoach.audio.encoding import WAV_FORMAT, decode
from mobile.voicecoach.audio.mic_check import MicrophoneCheck
from mobile.voicecoach.audio.recorder import RecorderError
from mobile.voicecoach.store.settings_store import AppSettings

RATE = 16_000


def make_check(blocks, capture=None):
    clock = FakeClock()
    capture = capture or FakeCapture(FakeStream(RATE))
    script = ScriptedInput(capture.stream, clock, blocks)
    check = MicrophoneCheck(
        capture,
        lambda: AppSettings(sample_rate=RATE, microphone_id="2"),
        formats=(WAV_FORMAT,),
        frame_rate=50,
        fft_size=256,
        clock=clock,
        sleep=script.sleep,
    )
    return check, capture


@pytest.mark.asyncio
async def test_mic_check_records_and_reports_peak():
    check, capture = make_check(noise_blocks(0.5, RATE, 320))
    levels = []

    result = await check.run(0.5, on_level=levels.append)

    assert capture.calls == [("2", RATE)]
    assert result.duration == pytest.approx(0.5, abs=0.03)
    assert result.peak_level > 0.5
    assert result.audio_format == WAV_FORMAT
    assert 24 <= len(levels) <= 26
    samples, rate = decode(result.payload)
    assert rate == RATE
    assert samples.size > 0
    assert capture.stream.subscriber_count == 0


@pytest.mark.asyncio
async def test_mic_check_without_audio_fails():
    check, _capture = make_check([])
    with pytest.raises(RecorderError, match="No audio data captured"):
        await check.run(0.2)


@pytest.mark.asyncio
async def test_mic_check_propagates_capture_errors():
    capture = FakeCapture(FakeStream(RATE), error=DeviceNotFoundError())
    check, _capture = make_check([], capture=capture)
    with pytest.raises(DeviceNotFoundError):
        await check.run(0.2)
