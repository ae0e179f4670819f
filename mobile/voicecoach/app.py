"""Console entrypoint for the VoiceCoach practice recorder."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import List, Optional

from .audio.capture import CaptureError, CaptureSession, list_input_devices
from .audio.mic_check import MicrophoneCheck
from .audio.segmentation import SegmentationController
from .audio.types import AudioPiece
from .config import CONFIG
from .services.logger import LogBuffer
from .store.recording_store import SessionRecordingStore, group_key
from .store.settings_store import AppSettings, SettingsStore

LOGGER = logging.getLogger("voicecoach.app")

DETECTION_KEYS = {"auto_split_threshold", "auto_split_duration", "min_recording_length", "recording_debug_mode"}


class VoiceCoachApp:
    def __init__(self, base_dir: Path, *, set_id: str | None = None, exercise_id: str = "freehand") -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.settings_store = SettingsStore(self.base_dir / CONFIG.settings_file)
        self.logger = LogBuffer(CONFIG.log_history)
        self.store = SessionRecordingStore()
        self.store.subscribe(self._on_store_event)
        self.capture = CaptureSession()
        self.group = group_key(set_id, exercise_id)
        self.controller = SegmentationController(
            self.capture,
            self.store,
            self.settings_store.get,
            key_provider=lambda: self.group,
            on_error=self._on_recording_error,
        )

    @property
    def settings(self) -> AppSettings:
        return self.settings_store.get()

    def update_settings(self, **kwargs) -> AppSettings:
        settings = self.settings_store.update(**kwargs)
        if "auto_split_enabled" in kwargs:
            self.controller.set_auto_split(settings.auto_split_enabled)
        if DETECTION_KEYS & set(kwargs):
            self.controller.update_detection(settings)
        if self.controller.session.is_recording and {"microphone_id", "sample_rate"} & set(kwargs):
            self.logger.add("Input device change applies to the next recording")
        self.logger.add("Settings saved")
        return settings

    async def record(self, seconds: Optional[float] = None) -> List[AudioPiece]:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, stop_event.set)
        except (NotImplementedError, RuntimeError):
            pass
        try:
            await self.controller.start()
        except CaptureError as exc:
            self.logger.add(str(exc), logging.ERROR)
            raise
        self.logger.add("Recording started - pause to split, Ctrl+C to finish")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass
            self.controller.stop()
            await self.controller.drain()
        self.logger.add("Recording stopped")
        return self.store.pieces(self.group)

    async def check_microphone(self, seconds: float = 3.0) -> float:
        result = await MicrophoneCheck(self.capture, self.settings_store.get).run(seconds)
        self.logger.add(f"Test recording completed! ({result.duration:.1f}s, peak {result.peak_level:.0%})")
        return result.peak_level

    def export(self, out_dir: Path) -> List[Path]:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        for key in self.store.groups():
            for piece in self.store.pieces(key):
                path = out_dir / piece.filename
                path.write_bytes(piece.payload)
                written.append(path)
        return written

    def close(self) -> None:
        self.controller.stop()
        self.capture.release()

    def _on_store_event(self, event: str, key: str, piece: AudioPiece) -> None:
        if event == "add":
            self.logger.add(f"Segment {piece.segment} saved ({piece.duration:.1f}s)")
        elif event == "replace":
            self.logger.add(f"Segment {piece.segment} trimmed to {piece.duration:.1f}s", logging.DEBUG)

    def _on_recording_error(self, exc: Exception) -> None:
        self.logger.add(f"Recording error: {exc}", logging.ERROR)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record voice practice split on silence.")
    parser.add_argument("--data-dir", type=Path, default=Path.home() / ".voicecoach")
    parser.add_argument("--out", type=Path, default=None, help="Directory for exported segments")
    parser.add_argument("--seconds", type=float, default=None, help="Stop automatically after N seconds")
    parser.add_argument("--set", dest="set_id", default=None)
    parser.add_argument("--exercise", default="freehand")
    parser.add_argument("--list-devices", action="store_true")
    parser.add_argument("--check-mic", action="store_true")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.list_devices:
        for device in list_input_devices():
            marker = "*" if device.is_default else " "
            print(f"{marker} {device.id:>3}  {device.name} ({device.default_sample_rate:.0f} Hz)")
        return 0

    app = VoiceCoachApp(args.data_dir, set_id=args.set_id, exercise_id=args.exercise)
    try:
        if args.check_mic:
            peak = asyncio.run(app.check_microphone())
            print(f"Peak level: {peak:.0%}")
            return 0
        pieces = asyncio.run(app.record(args.seconds))
    except CaptureError as exc:
        print(exc)
        return 1
    finally:
        app.close()
    print(f"Recorded {len(pieces)} audio piece{'s' if len(pieces) != 1 else ''}")
    if args.out is not None:
        for path in app.export(args.out):
            print(path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
