import json

import pytest
from pydantic import ValidationError

from helpers import FakeCapture, FakeStream
from mobile.voicecoach.app import VoiceCoachApp, build_parser
from mobile.voicecoach.audio.encoding import WAV_FORMAT
from mobile.voicecoach.audio.types import AudioPiece


def make_piece(piece_id: str, segment: int, key: str) -> AudioPiece:
    return AudioPiece(
        id=piece_id,
        payload=b"RIFF-test",
        audio_format=WAV_FORMAT,
        duration=1.0,
        timestamp="2024-01-01T00:00:00Z",
        group_key=key,
        segment=segment,
    )


def test_update_settings_persists_and_toggles_auto_split(tmp_path):
    app = VoiceCoachApp(tmp_path, set_id="set9", exercise_id="4")
    assert app.group == "set9_4"

    settings = app.update_settings(auto_split_enabled=False, auto_split_duration=2.5)

    assert settings.auto_split_enabled is False
    assert app.controller.session.auto_split_enabled is False
    saved = json.loads((tmp_path / "settings.json").read_text())
    assert saved["auto_split_duration"] == 2.5
    assert any(line.endswith("Settings saved") for line in app.logger.get())


def test_invalid_settings_are_not_saved(tmp_path):
    app = VoiceCoachApp(tmp_path)
    with pytest.raises(ValidationError):
        app.update_settings(sample_rate=1000)
    assert app.settings.sample_rate == 44100


def test_export_writes_every_piece(tmp_path):
    app = VoiceCoachApp(tmp_path / "data")
    app.store.add(app.group, make_piece("aaaaaaaaaaaa", 1, app.group))
    app.store.add(app.group, make_piece("bbbbbbbbbbbb", 2, app.group))

    written = app.export(tmp_path / "out")

    assert [path.name for path in written] == ["shared_freehand_001_aaaaaaaa.wav", "shared_freehand_002_bbbbbbbb.wav"]
    assert written[0].read_bytes() == b"RIFF-test"
    assert any("Segment 2 saved" in line for line in app.logger.get())


def test_parser_defaults():
    args = build_parser().parse_args(["--seconds", "5", "--set", "s1"])
    assert args.seconds == 5.0
    assert args.set_id == "s1"
    assert args.exercise == "freehand"
    assert args.check_mic is False


@pytest.mark.asyncio
async def test_detection_settings_reach_running_detector(tmp_path):
    app = VoiceCoachApp(tmp_path)
    app.controller.capture = FakeCapture(FakeStream(16_000))
    await app.controller.start()
    try:
        app.update_settings(auto_split_threshold=0.07, auto_split_duration=2.0, min_recording_length=1.0)

        config = app.controller.detector.config
        assert config.threshold == 0.07
        assert config.duration == 2.0
        assert config.min_recording_length == 1.0
    finally:
        app.controller.stop()
        await app.controller.drain()
