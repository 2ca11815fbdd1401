"""Playback session controller: at most one live playback handle."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import TYPE_CHECKING

import structlog

from reelshelf.errors import AttachFailed, PlaybackStartFailed, SessionConflict

if TYPE_CHECKING:
    from reelshelf.playback.base import PlaybackHandle, PlaybackSurface
    from reelshelf.storage.models import Entry

log = structlog.get_logger(__name__)


class PlaybackController:
    """Starts and stops playback against a single playback surface."""

    def __init__(
        self,
        surface: PlaybackSurface,
        *,
        attach_timeout: float = 10.0,
        detach_timeout: float = 5.0,
    ) -> None:
        self._surface = surface
        self._attach_timeout = attach_timeout
        self._detach_timeout = detach_timeout
        self._handle: PlaybackHandle | None = None

    @property
    def handle(self) -> PlaybackHandle | None:
        return self._handle

    @property
    def is_active(self) -> bool:
        return self._handle is not None

    async def start(self, entry: Entry, *, editing: bool) -> PlaybackHandle:
        if editing:
            raise SessionConflict("cannot start playback while editing the library")
        if self._handle is not None:
            raise SessionConflict(
                f"entry {self._handle.entry_id} is already playing; stop it first"
            )

        locator = entry.locator.strip()
        if not locator:
            raise PlaybackStartFailed(f"entry {entry.id} has no content locator")

        try:
            handle = await asyncio.wait_for(
                self._surface.attach(locator), timeout=self._attach_timeout
            )
        except AttachFailed as exc:
            log.warning("playback_attach_failed", entry_id=entry.id, error=str(exc))
            raise PlaybackStartFailed(f"could not play entry {entry.id}: {exc}") from exc
        except TimeoutError as exc:
            log.warning("playback_attach_timeout", entry_id=entry.id, timeout=self._attach_timeout)
            raise PlaybackStartFailed(f"playback surface did not attach entry {entry.id} in time") from exc

        self._handle = dataclasses.replace(handle, entry_id=entry.id)
        log.info("playback_started", entry_id=entry.id, handle_id=handle.handle_id)
        return self._handle

    async def stop(self) -> PlaybackHandle | None:
        """Tear down the current handle. Surface errors are logged, never raised."""
        handle = self._handle
        if handle is None:
            return None
        self._handle = None
        try:
            await asyncio.wait_for(self._surface.detach(handle), timeout=self._detach_timeout)
        except Exception as exc:
            log.warning("playback_detach_failed", handle_id=handle.handle_id, error=str(exc))
        log.info("playback_stopped", entry_id=handle.entry_id, handle_id=handle.handle_id)
        return handle

    async def reap(self) -> PlaybackHandle | None:
        """Release the handle if the surface finished playing on its own."""
        handle = self._handle
        if handle is None or self._surface.is_alive(handle):
            return None
        log.info("playback_ended", entry_id=handle.entry_id, handle_id=handle.handle_id)
        return await self.stop()
