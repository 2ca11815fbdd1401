"""Edit-mode state machine: Browsing ⇄ Editing with save / cancel completion.

At most one ``EditContext`` is open at a time. Staged edits live on the
context and are mirrored into the library model as an overlay; nothing
reaches the committed snapshot until the store accepts the commit.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from reelshelf.errors import InvalidSessionState, SessionConflict

if TYPE_CHECKING:
    from reelshelf.library.model import LibraryModel
    from reelshelf.storage.database import LibraryStore
    from reelshelf.storage.models import Edit, EditContext, Entry

log = structlog.get_logger(__name__)


class EditSession:
    """Owns the open edit context, if any, and drives it to save or cancel."""

    def __init__(self, store: LibraryStore, model: LibraryModel) -> None:
        self._store = store
        self._model = model
        self._context: EditContext | None = None

    @property
    def context(self) -> EditContext | None:
        return self._context

    @property
    def is_editing(self) -> bool:
        return self._context is not None

    async def begin(self, *, playback_active: bool) -> EditContext:
        if playback_active:
            raise SessionConflict("cannot edit the library while playback is active")
        if self._context is not None:
            raise SessionConflict(f"edit session {self._context.session_id} is already open")

        context = await self._store.begin_edit_session()
        self._context = context
        self._model.set_overlay(self._model.committed)
        log.info("edit_begin", session_id=context.session_id)
        return context

    def stage(self, edits: Sequence[Edit]) -> tuple[Entry, ...]:
        """Validate *edits* on top of the pending ones and publish the new overlay.

        An invalid batch raises ``InvalidEdit`` and leaves the overlay as it was.
        """
        context = self._require_open("stage edits")
        overlay = self._model.apply([*context.edits, *edits])
        context.edits.extend(edits)
        self._model.set_overlay(overlay)
        log.info("edit_staged", session_id=context.session_id, added=len(edits), pending=len(context.edits))
        return overlay

    async def save(self) -> tuple[Entry, ...]:
        """Commit the overlay. On ``PersistenceFailed`` everything stays as it was."""
        context = self._require_open("save")
        overlay = self._model.apply(context.edits)
        try:
            await self._store.commit(context, overlay)
        except Exception as exc:
            log.warning("edit_save_failed", session_id=context.session_id, error=str(exc))
            raise
        self._model.replace(overlay)
        self._context = None
        log.info("edit_saved", session_id=context.session_id, entries=len(overlay))
        return overlay

    async def cancel(self) -> None:
        """Drop the context and overlay. Discarding in the store is best effort."""
        context = self._require_open("cancel")
        self._context = None
        self._model.clear_overlay()
        try:
            await self._store.discard(context)
        except Exception as exc:
            log.warning("edit_discard_failed", session_id=context.session_id, error=str(exc))
        log.info("edit_cancelled", session_id=context.session_id, dropped=len(context.edits))

    def _require_open(self, action: str) -> EditContext:
        context = self._context
        if context is None or not context.is_open:
            raise InvalidSessionState(f"cannot {action}: no open edit session")
        return context
