"""Pydantic models for the Reelshelf storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class Entry(BaseModel):
    """One playable library item."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    locator: str
    position: int = Field(default=0, ge=0)


class EntryDraft(BaseModel):
    """An entry that is about to be inserted; the id is assigned when omitted."""

    id: int | None = None
    title: str
    locator: str


# ---------------------------------------------------------------------------
# Edit operations
# ---------------------------------------------------------------------------


class InsertEdit(BaseModel):
    op: Literal["insert"] = "insert"
    entry: EntryDraft
    position: int | None = None


class RemoveEdit(BaseModel):
    op: Literal["remove"] = "remove"
    entry_id: int


class MoveEdit(BaseModel):
    op: Literal["move"] = "move"
    entry_id: int
    position: int


class UpdateEdit(BaseModel):
    op: Literal["update"] = "update"
    entry_id: int
    title: str | None = None
    locator: str | None = None


Edit = Annotated[
    InsertEdit | RemoveEdit | MoveEdit | UpdateEdit,
    Field(discriminator="op"),
]


# ---------------------------------------------------------------------------
# Edit sessions
# ---------------------------------------------------------------------------


class EditStatus(StrEnum):
    OPEN = "open"
    COMMITTED = "committed"
    DISCARDED = "discarded"


@dataclass(eq=False)
class EditContext:
    """Token for one open edit session, holding the edits staged so far.

    ``sealed`` is set once the store has written everything and only the final
    transaction commit is outstanding; past that point a commit can no longer
    be rolled back.
    """

    session_id: int
    opened_at: datetime
    status: EditStatus = EditStatus.OPEN
    edits: list[InsertEdit | RemoveEdit | MoveEdit | UpdateEdit] = field(default_factory=list)
    sealed: bool = False

    @property
    def is_open(self) -> bool:
        return self.status is EditStatus.OPEN
