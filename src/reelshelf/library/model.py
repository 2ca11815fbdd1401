"""In-memory library model mirroring the store, plus the pending edit overlay."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

import structlog

from reelshelf.errors import InvalidEdit
from reelshelf.storage.models import Entry, InsertEdit, MoveEdit, RemoveEdit, UpdateEdit

if TYPE_CHECKING:
    from reelshelf.storage.database import LibraryStore
    from reelshelf.storage.models import Edit

log = structlog.get_logger(__name__)


def renumber(entries: Iterable[Entry]) -> tuple[Entry, ...]:
    """Return *entries* in their current order with positions ``0..n-1``."""
    return tuple(
        e if e.position == i else e.model_copy(update={"position": i})
        for i, e in enumerate(entries)
    )


def _index_of(working: list[Entry], entry_id: int) -> int:
    for i, e in enumerate(working):
        if e.id == entry_id:
            return i
    raise InvalidEdit(f"no entry with id {entry_id}")


def _require_text(value: str, name: str) -> str:
    if not value.strip():
        raise InvalidEdit(f"{name} must not be blank")
    return value


def apply_edits(base: Sequence[Entry], edits: Iterable[Edit]) -> tuple[Entry, ...]:
    """Apply *edits* in order to a copy of *base* and return the renumbered result.

    Ids assigned to inserts without one continue from the largest id seen in
    *base* or earlier inserts, so a removed id is never handed out again within
    the same batch.
    """
    working = list(base)
    next_id = max((e.id for e in working), default=0) + 1

    for edit in edits:
        if isinstance(edit, InsertEdit):
            draft = edit.entry
            entry_id = draft.id if draft.id is not None else next_id
            if any(e.id == entry_id for e in working):
                raise InvalidEdit(f"entry id {entry_id} already exists")
            position = len(working) if edit.position is None else edit.position
            if not 0 <= position <= len(working):
                raise InvalidEdit(f"insert position {position} out of range 0..{len(working)}")
            working.insert(
                position,
                Entry(
                    id=entry_id,
                    title=_require_text(draft.title, "title"),
                    locator=_require_text(draft.locator, "locator"),
                    position=position,
                ),
            )
            next_id = max(next_id, entry_id + 1)
        elif isinstance(edit, RemoveEdit):
            del working[_index_of(working, edit.entry_id)]
        elif isinstance(edit, MoveEdit):
            index = _index_of(working, edit.entry_id)
            if not 0 <= edit.position < len(working):
                raise InvalidEdit(f"move position {edit.position} out of range 0..{len(working) - 1}")
            working.insert(edit.position, working.pop(index))
        elif isinstance(edit, UpdateEdit):
            index = _index_of(working, edit.entry_id)
            changes: dict = {}
            if edit.title is not None:
                changes["title"] = _require_text(edit.title, "title")
            if edit.locator is not None:
                changes["locator"] = _require_text(edit.locator, "locator")
            if not changes:
                raise InvalidEdit(f"update of entry {edit.entry_id} changes nothing")
            working[index] = working[index].model_copy(update=changes)
        else:
            raise InvalidEdit(f"unsupported edit operation: {edit!r}")

    return renumber(working)


class LibraryModel:
    """Ordered library snapshot with an optional edit overlay on top.

    Snapshots are tuples of frozen entries, so anything handed out to
    presentation can't be mutated behind the model's back.
    """

    def __init__(self, store: LibraryStore) -> None:
        self._store = store
        self._committed: tuple[Entry, ...] = ()
        self._overlay: tuple[Entry, ...] | None = None

    @property
    def committed(self) -> tuple[Entry, ...]:
        return self._committed

    @property
    def overlay(self) -> tuple[Entry, ...] | None:
        return self._overlay

    @property
    def entries(self) -> tuple[Entry, ...]:
        """What presentation should show: the overlay while editing, else the snapshot."""
        return self._overlay if self._overlay is not None else self._committed

    def get(self, entry_id: int) -> Entry | None:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    async def load(self) -> tuple[Entry, ...]:
        """Reload the committed snapshot from the store.

        Positions coming from the store are repaired into a contiguous
        ordering. On ``StoreUnavailable`` the previous snapshot is kept.
        """
        entries = await self._store.load()
        ordered = sorted(entries, key=lambda e: (e.position, e.id))
        seen: set[int] = set()
        unique = []
        for entry in ordered:
            if entry.id in seen:
                log.warning("duplicate_entry_dropped", entry_id=entry.id)
                continue
            seen.add(entry.id)
            unique.append(entry)
        self._committed = renumber(unique)
        log.info("library_loaded", entries=len(self._committed))
        return self._committed

    def apply(self, edits: Iterable[Edit]) -> tuple[Entry, ...]:
        """Preview *edits* on top of the committed snapshot without changing it."""
        return apply_edits(self._committed, edits)

    def set_overlay(self, entries: Sequence[Entry]) -> None:
        self._overlay = tuple(entries)

    def clear_overlay(self) -> None:
        self._overlay = None

    def replace(self, entries: Sequence[Entry]) -> None:
        """Swap in a newly committed snapshot and drop the overlay."""
        self._committed = renumber(entries)
        self._overlay = None
