"""In-session store of committed audio pieces, keyed by exercise group."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Protocol

from ..audio.types import AudioPiece

LOGGER = logging.getLogger("voicecoach.store")

StoreListener = Callable[[str, str, AudioPiece], None]


class RecordingStore(Protocol):
    """Narrow contract the segmentation core depends on."""

    def add(self, group_key: str, piece: AudioPiece) -> None: ...

    def replace(self, group_key: str, piece_id: str, piece: AudioPiece) -> None: ...

    def remove(self, group_key: str, piece_id: str) -> None: ...


def group_key(set_id: Optional[str | int], exercise_id: str | int) -> str:
    return f"{set_id or 'shared'}_{exercise_id}"


class SessionRecordingStore:
    """Keeps pieces in commit order; replacements keep their position."""

    def __init__(self) -> None:
        self._groups: Dict[str, List[AudioPiece]] = {}
        self._listeners: List[StoreListener] = []

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def add(self, group_key: str, piece: AudioPiece) -> None:
        self._groups.setdefault(group_key, []).append(piece)
        self._emit("add", group_key, piece)

    def replace(self, group_key: str, piece_id: str, piece: AudioPiece) -> None:
        pieces = self._groups.get(group_key, [])
        index = self._index(pieces, piece_id)
        if index is None:
            raise KeyError(f"piece {piece_id} not found in {group_key}")
        pieces[index] = piece
        self._emit("replace", group_key, piece)

    def remove(self, group_key: str, piece_id: str) -> None:
        pieces = self._groups.get(group_key, [])
        index = self._index(pieces, piece_id)
        if index is None:
            return
        piece = pieces.pop(index)
        if not pieces:
            self._groups.pop(group_key, None)
        self._emit("remove", group_key, piece)

    def rename(self, group_key: str, piece_id: str, title: str) -> AudioPiece:
        pieces = self._groups.get(group_key, [])
        index = self._index(pieces, piece_id)
        if index is None:
            raise KeyError(f"piece {piece_id} not found in {group_key}")
        pieces[index].title = title.strip() or None
        self._emit("rename", group_key, pieces[index])
        return pieces[index]

    def pieces(self, group_key: str) -> List[AudioPiece]:
        return list(self._groups.get(group_key, []))

    def groups(self) -> List[str]:
        return list(self._groups)

    def clear_session(self) -> None:
        self._groups.clear()

    def __len__(self) -> int:
        return sum(len(pieces) for pieces in self._groups.values())

    @staticmethod
    def _index(pieces: List[AudioPiece], piece_id: str) -> Optional[int]:
        for index, piece in enumerate(pieces):
            if piece.id == piece_id:
                return index
        return None

    def _emit(self, event: str, group_key: str, piece: AudioPiece) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, group_key, piece)
            except Exception as exc:  # pragma: no cover
                LOGGER.error("Store listener failed on %s: %s", event, exc)


__all__ = ["RecordingStore", "SessionRecordingStore", "group_key"]
