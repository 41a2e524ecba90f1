"""Shared note store.

Notes are addressed by server-assigned ids only, never by list position.
Unknown ids are ignored by update and delete.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from .constants import N_COLOR, N_ID, N_POSITION
from .util import new_id


class InvalidNoteError(ValueError):
    """A note record could not be accepted into the store."""


@dataclass(frozen=True)
class Note:
    id: str
    color: int | float
    position: tuple[float, float, float]

    def to_wire(self) -> dict[int, object]:
        return {
            N_ID: self.id,
            N_COLOR: self.color,
            N_POSITION: list(self.position),
        }


class NoteStore:
    def __init__(self, notes: Iterable[Note] | None = None) -> None:
        self.log = logging.getLogger("copresd.notes")
        self._lock = threading.RLock()
        self._notes: list[Note] = []
        self._index: dict[str, int] = {}
        # Bumped on every change; checkpoints compare against it.
        self.generation = 0
        if notes is not None:
            self.replace_all(notes)
            self.generation = 0

    def _reindex(self) -> None:
        self._index = {n.id: i for i, n in enumerate(self._notes)}

    def list(self) -> list[Note]:
        with self._lock:
            return list(self._notes)

    def get(self, note_id: str) -> Note | None:
        with self._lock:
            i = self._index.get(note_id)
            return self._notes[i] if i is not None else None

    def add(self, color: int | float, position: tuple[float, float, float]) -> Note:
        with self._lock:
            note_id = new_id()
            while note_id in self._index:
                note_id = new_id()
            note = Note(id=note_id, color=color, position=tuple(position))
            self._index[note_id] = len(self._notes)
            self._notes.append(note)
            self.generation += 1
            return note

    def update(
        self, note_id: str, color: int | float, position: tuple[float, float, float]
    ) -> bool:
        with self._lock:
            i = self._index.get(note_id)
            if i is None:
                return False
            self._notes[i] = Note(id=note_id, color=color, position=tuple(position))
            self.generation += 1
            return True

    def remove_many(self, ids: Iterable[str]) -> list[Note]:
        wanted = set(ids)
        with self._lock:
            if not wanted.intersection(self._index):
                return []
            removed = [n for n in self._notes if n.id in wanted]
            self._notes = [n for n in self._notes if n.id not in wanted]
            self._reindex()
            self.generation += 1
            return removed

    def replace_all(self, notes: Iterable[Note]) -> None:
        items = list(notes)
        seen: set[str] = set()
        for n in items:
            if n.id in seen:
                raise InvalidNoteError(f"duplicate note id {n.id}")
            seen.add(n.id)
        with self._lock:
            self._notes = items
            self._reindex()
            self.generation += 1

    def to_wire(self) -> list[dict[int, object]]:
        return [n.to_wire() for n in self.list()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._notes)
