"""Reelshelf storage layer: async SQLite store for library entries and edit sessions."""

from reelshelf.storage.database import LibraryStore
from reelshelf.storage.models import (
    Edit,
    EditContext,
    EditStatus,
    Entry,
    EntryDraft,
    InsertEdit,
    MoveEdit,
    RemoveEdit,
    UpdateEdit,
)

__all__ = [
    "Edit",
    "EditContext",
    "EditStatus",
    "Entry",
    "EntryDraft",
    "InsertEdit",
    "LibraryStore",
    "MoveEdit",
    "RemoveEdit",
    "UpdateEdit",
]
