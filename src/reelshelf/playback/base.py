"""Playback surface protocol and the handle it hands out."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


def _new_handle_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class PlaybackHandle:
    """One live attachment of a content locator to a playback surface."""

    locator: str
    handle_id: str = field(default_factory=_new_handle_id)
    attached_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    entry_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "handle_id": self.handle_id,
            "entry_id": self.entry_id,
            "locator": self.locator,
            "attached_at": self.attached_at.isoformat(),
        }


class PlaybackSurface(Protocol):
    """Something that can play a content locator.

    ``attach`` raises ``AttachFailed`` when the content can't be played or the
    surface is busy. ``detach`` may raise; callers treat teardown as
    unconditional and only log its errors.
    """

    async def attach(self, locator: str) -> PlaybackHandle: ...

    async def detach(self, handle: PlaybackHandle) -> None: ...

    def is_alive(self, handle: PlaybackHandle) -> bool: ...
