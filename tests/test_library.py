"""Tests for the in-memory library model and edit application."""

from __future__ import annotations

import random

import pytest

from reelshelf.errors import InvalidEdit, StoreUnavailable
from reelshelf.library import LibraryModel, apply_edits
from reelshelf.storage.models import Entry, EntryDraft, InsertEdit, MoveEdit, RemoveEdit, UpdateEdit


def _entries(*ids: int) -> list[Entry]:
    return [Entry(id=i, title=f"Entry {i}", locator=f"/media/{i}.mp4", position=pos) for pos, i in enumerate(ids)]


def _ids(entries) -> list[int]:
    return [e.id for e in entries]


def _insert(entry_id: int | None, position: int | None = None, title: str = "New") -> InsertEdit:
    return InsertEdit(entry=EntryDraft(id=entry_id, title=title, locator=f"/media/{title}.mp4"), position=position)


# ---------------------------------------------------------------------------
# apply_edits
# ---------------------------------------------------------------------------


def test_insert_in_the_middle_renumbers():
    result = apply_edits(_entries(1, 2), [_insert(3, position=1)])
    assert [(e.id, e.position) for e in result] == [(1, 0), (3, 1), (2, 2)]


def test_insert_without_position_appends():
    result = apply_edits(_entries(1, 2), [_insert(3)])
    assert _ids(result) == [1, 2, 3]


def test_insert_without_id_gets_next_free_id():
    result = apply_edits(_entries(4, 2), [_insert(None), _insert(None, title="Other")])
    assert _ids(result) == [4, 2, 5, 6]


def test_insert_duplicate_id_rejected():
    with pytest.raises(InvalidEdit, match="already exists"):
        apply_edits(_entries(1, 2), [_insert(2)])


def test_insert_position_out_of_range_rejected():
    with pytest.raises(InvalidEdit, match="out of range"):
        apply_edits(_entries(1, 2), [_insert(3, position=5)])


def test_insert_blank_title_rejected():
    with pytest.raises(InvalidEdit, match="title"):
        apply_edits([], [InsertEdit(entry=EntryDraft(title="  ", locator="/a.mp4"))])


def test_remove_then_contiguous():
    result = apply_edits(_entries(1, 2, 3), [RemoveEdit(entry_id=2)])
    assert [(e.id, e.position) for e in result] == [(1, 0), (3, 1)]


def test_remove_unknown_rejected():
    with pytest.raises(InvalidEdit, match="no entry with id 9"):
        apply_edits(_entries(1), [RemoveEdit(entry_id=9)])


def test_move_to_front_and_back():
    result = apply_edits(_entries(1, 2, 3), [MoveEdit(entry_id=3, position=0)])
    assert _ids(result) == [3, 1, 2]
    result = apply_edits(_entries(1, 2, 3), [MoveEdit(entry_id=1, position=2)])
    assert _ids(result) == [2, 3, 1]


def test_move_out_of_range_rejected():
    with pytest.raises(InvalidEdit):
        apply_edits(_entries(1, 2), [MoveEdit(entry_id=1, position=2)])


def test_update_changes_title_only():
    result = apply_edits(_entries(1, 2), [UpdateEdit(entry_id=2, title="Renamed")])
    assert result[1].title == "Renamed"
    assert result[1].locator == "/media/2.mp4"


def test_update_without_changes_rejected():
    with pytest.raises(InvalidEdit, match="changes nothing"):
        apply_edits(_entries(1), [UpdateEdit(entry_id=1)])


def test_apply_does_not_mutate_base():
    base = tuple(_entries(1, 2))
    apply_edits(base, [RemoveEdit(entry_id=1), _insert(7, position=0)])
    assert _ids(base) == [1, 2]
    assert [e.position for e in base] == [0, 1]


def test_random_edit_sequences_keep_positions_contiguous():
    rng = random.Random(1234)
    working = tuple(_entries(1, 2, 3))
    next_id = 10
    for _ in range(300):
        choice = rng.choice(["insert", "remove", "move", "update"])
        if choice == "insert" or not working:
            edit = _insert(next_id, position=rng.randint(0, len(working)))
            next_id += 1
        elif choice == "remove":
            edit = RemoveEdit(entry_id=rng.choice(working).id)
        elif choice == "move":
            edit = MoveEdit(entry_id=rng.choice(working).id, position=rng.randrange(len(working)))
        else:
            edit = UpdateEdit(entry_id=rng.choice(working).id, title=f"t{rng.random()}")
        working = apply_edits(working, [edit])
        assert [e.position for e in working] == list(range(len(working)))
        assert len({e.id for e in working}) == len(working)


# ---------------------------------------------------------------------------
# LibraryModel
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_load_repairs_positions(store):
    store.entries = [
        Entry(id=5, title="b", locator="/b", position=7),
        Entry(id=3, title="a", locator="/a", position=2),
        Entry(id=9, title="c", locator="/c", position=7),
    ]
    model = LibraryModel(store)
    loaded = await model.load()
    assert [(e.id, e.position) for e in loaded] == [(3, 0), (5, 1), (9, 2)]


@pytest.mark.asyncio
async def test_load_failure_keeps_previous_snapshot(store):
    model = LibraryModel(store)
    await model.load()
    store.fail_load = True
    with pytest.raises(StoreUnavailable):
        await model.load()
    assert _ids(model.entries) == [1, 2]


@pytest.mark.asyncio
async def test_reads_prefer_overlay(store):
    model = LibraryModel(store)
    await model.load()
    overlay = model.apply([_insert(3, position=0)])
    assert _ids(model.entries) == [1, 2]

    model.set_overlay(overlay)
    assert _ids(model.entries) == [3, 1, 2]
    assert model.get(3) is not None
    assert _ids(model.committed) == [1, 2]

    model.clear_overlay()
    assert _ids(model.entries) == [1, 2]
    assert model.get(3) is None


@pytest.mark.asyncio
async def test_replace_swaps_snapshot_and_drops_overlay(store):
    model = LibraryModel(store)
    await model.load()
    model.set_overlay(model.apply([RemoveEdit(entry_id=1)]))
    model.replace(model.apply([_insert(4)]))
    assert model.overlay is None
    assert _ids(model.entries) == [1, 2, 4]
