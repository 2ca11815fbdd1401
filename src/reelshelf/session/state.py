"""The session state: exactly one of browsing, editing or playing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

from reelshelf.playback.base import PlaybackHandle
from reelshelf.storage.models import EditContext


class SessionMode(StrEnum):
    BROWSING = "browsing"
    EDITING = "editing"
    PLAYING = "playing"


@dataclass(frozen=True)
class Browsing:
    mode: ClassVar[SessionMode] = SessionMode.BROWSING

    def to_dict(self) -> dict:
        return {"mode": self.mode.value}


@dataclass(frozen=True)
class Editing:
    context: EditContext
    mode: ClassVar[SessionMode] = SessionMode.EDITING

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "session_id": self.context.session_id,
            "opened_at": self.context.opened_at.isoformat(),
            "pending_edits": len(self.context.edits),
        }


@dataclass(frozen=True)
class Playing:
    handle: PlaybackHandle
    mode: ClassVar[SessionMode] = SessionMode.PLAYING

    def to_dict(self) -> dict:
        return {"mode": self.mode.value, **self.handle.to_dict()}


SessionState = Browsing | Editing | Playing
