import pytest

from copresd.constants import N_COLOR, N_ID, N_POSITION
from copresd.notes import InvalidNoteError, Note, NoteStore


def test_add_assigns_unique_ids_in_order() -> None:
    store = NoteStore()
    a = store.add(0xFF0000, (0.0, 1.0, 0.0))
    b = store.add(0.5, (1.0, 1.0, 0.0))

    assert a.id != b.id
    assert len(a.id) == 32
    assert [n.id for n in store.list()] == [a.id, b.id]
    assert store.get(b.id) == b


def test_update_replaces_in_place() -> None:
    store = NoteStore()
    a = store.add(1, (0.0, 0.0, 0.0))
    b = store.add(2, (0.0, 0.0, 0.0))
    c = store.add(3, (0.0, 0.0, 0.0))

    assert store.update(b.id, 99, (5.0, 5.0, 5.0)) is True

    notes = store.list()
    assert [n.id for n in notes] == [a.id, b.id, c.id]
    assert notes[1] == Note(id=b.id, color=99, position=(5.0, 5.0, 5.0))


def test_update_unknown_id_changes_nothing() -> None:
    store = NoteStore()
    store.add(1, (0.0, 0.0, 0.0))
    gen = store.generation
    before = store.list()

    assert store.update("0" * 32, 2, (1.0, 1.0, 1.0)) is False
    assert store.list() == before
    assert store.generation == gen


def test_remove_many_ignores_unknown_and_repeated_ids() -> None:
    store = NoteStore()
    a = store.add(1, (0.0, 0.0, 0.0))
    b = store.add(2, (0.0, 0.0, 0.0))
    c = store.add(3, (0.0, 0.0, 0.0))

    removed = store.remove_many([a.id, "e" * 32, c.id, a.id])
    assert [n.id for n in removed] == [a.id, c.id]
    assert [n.id for n in store.list()] == [b.id]
    assert store.get(a.id) is None
    assert store.get(b.id) == b


def test_remove_many_twice_is_a_no_op() -> None:
    store = NoteStore()
    a = store.add(1, (0.0, 0.0, 0.0))
    store.remove_many([a.id])
    gen = store.generation

    assert store.remove_many([a.id]) == []
    assert store.generation == gen


def test_generation_tracks_changes() -> None:
    store = NoteStore([Note(id="a" * 32, color=1, position=(0.0, 0.0, 0.0))])
    assert store.generation == 0

    store.add(1, (0.0, 0.0, 0.0))
    assert store.generation == 1


def test_replace_all_rejects_duplicate_ids() -> None:
    store = NoteStore()
    dup = Note(id="a" * 32, color=1, position=(0.0, 0.0, 0.0))
    with pytest.raises(InvalidNoteError):
        store.replace_all([dup, dup])
    assert len(store) == 0


def test_to_wire() -> None:
    store = NoteStore()
    a = store.add(0x00FF00, (1.0, 2.0, 3.0))
    assert store.to_wire() == [{N_ID: a.id, N_COLOR: 0x00FF00, N_POSITION: [1.0, 2.0, 3.0]}]
