"""Note store checkpoints.

The notes file is a TOML document holding the whole store. It is read once
at startup and overwritten wholesale at each checkpoint; there is no
journal, so changes made after the last successful checkpoint are lost if
the process dies without reaching one.
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .notes import InvalidNoteError, Note, NoteStore
from .util import normalize_color, normalize_id, normalize_vec3

if TYPE_CHECKING:
    from .stats import StatsManager

CHECKPOINT_VERSION = 1

log = logging.getLogger("copresd.persistence")


def _note_from_table(raw: Any) -> Note:
    if not isinstance(raw, dict):
        raise InvalidNoteError("note entry must be a table")
    note_id = normalize_id(raw.get("id"))
    if note_id is None:
        raise InvalidNoteError(f"invalid note id {raw.get('id')!r}")
    color = normalize_color(raw.get("color"))
    if color is None:
        raise InvalidNoteError(f"invalid color for note {note_id}")
    position = normalize_vec3(raw.get("position"))
    if position is None:
        raise InvalidNoteError(f"invalid position for note {note_id}")
    return Note(id=note_id, color=color, position=position)


def load_notes(path: str) -> list[Note]:
    """Load a checkpoint. Anything unusable yields an empty store."""
    if not path or not os.path.exists(path):
        log.info("No notes checkpoint at %s; starting empty", path or "(unset)")
        return []

    from tomlkit import parse

    try:
        with open(path, encoding="utf-8") as f:
            data = parse(f.read()).unwrap()
    except Exception as e:
        log.warning("Failed to parse notes checkpoint %s: %s; starting empty", path, e)
        return []

    version = data.get("version", CHECKPOINT_VERSION)
    if version != CHECKPOINT_VERSION:
        log.warning(
            "Unsupported notes checkpoint version %r in %s; starting empty", version, path
        )
        return []

    raw_notes = data.get("notes")
    if raw_notes is None:
        return []
    if not isinstance(raw_notes, list):
        log.warning("notes checkpoint %s: notes must be an array of tables", path)
        return []

    notes: list[Note] = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_notes):
        try:
            note = _note_from_table(raw)
        except InvalidNoteError as e:
            log.warning("Skipping note #%s in %s: %s", i, path, e)
            continue
        if note.id in seen:
            log.warning("Skipping duplicate note id %s in %s", note.id, path)
            continue
        seen.add(note.id)
        notes.append(note)

    log.info("Loaded %d note(s) from %s", len(notes), path)
    return notes


def dump_notes(notes: list[Note]) -> str:
    from tomlkit import aot, comment, document, table

    doc = document()
    doc.add(comment("copresd note store checkpoint. Rewritten on every checkpoint."))
    doc["version"] = CHECKPOINT_VERSION

    entries = aot()
    for n in notes:
        t = table()
        t["id"] = n.id
        t["color"] = n.color
        t["position"] = list(n.position)
        entries.append(t)
    if notes:
        doc["notes"] = entries
    return doc.as_string()


def save_notes(path: str, notes: list[Note]) -> None:
    """Overwrite the checkpoint at path with notes."""
    p = Path(path)
    if p.parent:
        p.parent.mkdir(parents=True, exist_ok=True)

    text = dump_notes(notes)
    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=str(p.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, p)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise

    try:
        os.chmod(p, 0o600)
    except Exception:
        pass


class CheckpointTrigger:
    """Writes the note store to disk once on the way out of the process.

    fire() is safe to call from signal handlers, atexit and excepthook; only
    the first call writes. checkpoint_now() provides intermediate snapshots
    and leaves the exit checkpoint armed.
    """

    def __init__(
        self,
        store: NoteStore,
        path: str | None,
        *,
        stats: StatsManager | None = None,
    ) -> None:
        self.store = store
        self.path = path
        self.stats = stats
        self._lock = threading.Lock()
        self._fired = False
        self._saved_generation: int | None = None
        self._installed = False
        self._prev_excepthook = None

    @property
    def fired(self) -> bool:
        return self._fired

    def _inc(self, key: str) -> None:
        if self.stats is not None:
            self.stats.inc(key)

    def _write(self, reason: str) -> bool:
        if not self.path:
            log.warning("Checkpoint skipped (%s): notes path is not set", reason)
            return False

        generation = self.store.generation
        notes = self.store.list()
        try:
            save_notes(self.path, notes)
        except Exception:
            self._inc("checkpoint_failures")
            log.exception("Checkpoint failed (%s) path=%s", reason, self.path)
            return False

        self._saved_generation = generation
        self._inc("checkpoints")
        log.info("Checkpoint written (%s) notes=%d path=%s", reason, len(notes), self.path)
        return True

    def fire(self, reason: str) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            return self._write(reason)

    def checkpoint_now(self, reason: str = "periodic") -> bool:
        with self._lock:
            if self._fired:
                return False
            if self._saved_generation == self.store.generation:
                return False
            return self._write(reason)

    def mark_clean(self) -> None:
        """Record the current store contents as already on disk."""
        with self._lock:
            self._saved_generation = self.store.generation

    def _on_exit(self) -> None:
        self.fire("exit")

    def _excepthook(self, exc_type, exc, tb) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            log.critical("Unhandled error; writing checkpoint", exc_info=(exc_type, exc, tb))
        self.fire("fatal error")
        prev = self._prev_excepthook or sys.__excepthook__
        prev(exc_type, exc, tb)

    def install(self) -> None:
        if self._installed:
            return
        atexit.register(self._on_exit)
        self._prev_excepthook = sys.excepthook
        sys.excepthook = self._excepthook
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        atexit.unregister(self._on_exit)
        if sys.excepthook == self._excepthook:
            sys.excepthook = self._prev_excepthook or sys.__excepthook__
        self._prev_excepthook = None
        self._installed = False
