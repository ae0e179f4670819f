"""Pytest configuration helpers."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_on_path() -> None:
    """Allow tests to import from repo modules without setting PYTHONPATH."""
    repo_root = Path(__file__).resolve().parents[1]
    path_str = str(repo_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


_ensure_repo_on_path()
sys.path.insert(0, str(Path(__file__).resolve().parent))

from helpers import FakeCapture, FakeClock, FakeStream  # noqa: E402


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_stream() -> FakeStream:
    return FakeStream()


@pytest.fixture()
def fake_capture(fake_stream) -> FakeCapture:
    return FakeCapture(fake_stream)
