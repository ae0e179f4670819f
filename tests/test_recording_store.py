import pytest

from mobile.voicecoach.audio.encoding import WAV_FORMAT
from mobile.voicecoach.audio.types import AudioPiece
from mobile.voicecoach.store.recording_store import SessionRecordingStore, group_key


def piece(piece_id: str, segment: int = 1, duration: float = 1.0) -> AudioPiece:
    return AudioPiece(
        id=piece_id,
        payload=b"RIFF",
        audio_format=WAV_FORMAT,
        duration=duration,
        timestamp="2024-01-01T00:00:00Z",
        group_key="set1_2",
        segment=segment,
    )


def test_group_key_defaults_to_shared():
    assert group_key(None, "7") == "shared_7"
    assert group_key("set1", 2) == "set1_2"


def test_replace_keeps_position_and_emits_events():
    store = SessionRecordingStore()
    events = []
    store.subscribe(lambda event, key, item: events.append((event, key, item.id)))
    store.add("set1_2", piece("a", 1))
    store.add("set1_2", piece("b", 2))

    store.replace("set1_2", "a", piece("a", 1, duration=0.7))

    assert [item.id for item in store.pieces("set1_2")] == ["a", "b"]
    assert store.pieces("set1_2")[0].duration == 0.7
    assert events == [("add", "set1_2", "a"), ("add", "set1_2", "b"), ("replace", "set1_2", "a")]


def test_replace_missing_piece_raises():
    store = SessionRecordingStore()
    with pytest.raises(KeyError):
        store.replace("set1_2", "missing", piece("missing"))


def test_remove_and_rename():
    store = SessionRecordingStore()
    store.add("set1_2", piece("a"))
    store.add("other", piece("b"))

    renamed = store.rename("set1_2", "a", "  Take one  ")
    assert renamed.title == "Take one"
    assert store.rename("set1_2", "a", "   ").title is None

    store.remove("set1_2", "a")
    store.remove("set1_2", "a")
    assert store.groups() == ["other"]
    assert len(store) == 1

    store.clear_session()
    assert len(store) == 0


def test_unsubscribe_stops_notifications():
    store = SessionRecordingStore()
    events = []
    unsubscribe = store.subscribe(lambda *args: events.append(args))
    unsubscribe()
    store.add("shared_1", piece("a"))
    assert events == []


def test_piece_filename_uses_group_and_segment():
    item = piece("0123456789abcdef", segment=4)
    assert item.filename == "set1_2_004_01234567.wav"
