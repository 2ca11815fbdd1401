"""Session coordinator: the single authority for what is currently happening.

Requests are processed one at a time. While one is in flight, the next is
rejected with ``Busy`` or queued, depending on the configured policy. The one
deliberate exception is ``cancel_edit``, which may overtake an in-flight save
as long as the commit has not reached its point of no return.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Literal

import structlog

from reelshelf.errors import Busy, InvalidSessionState, PersistenceFailed, PlaybackStartFailed, SessionConflict
from reelshelf.library.model import LibraryModel
from reelshelf.session.editing import EditSession
from reelshelf.session.playback import PlaybackController
from reelshelf.session.state import Browsing, Editing, Playing, SessionState

if TYPE_CHECKING:
    from reelshelf.playback.base import PlaybackHandle, PlaybackSurface
    from reelshelf.storage.database import LibraryStore
    from reelshelf.storage.models import Edit, Entry

log = structlog.get_logger(__name__)

BusyPolicy = Literal["reject", "queue"]


class SessionCoordinator:
    """Routes library, edit and playback requests and owns the session state."""

    def __init__(
        self,
        store: LibraryStore,
        surface: PlaybackSurface,
        *,
        busy_policy: BusyPolicy = "reject",
        attach_timeout: float = 10.0,
        detach_timeout: float = 5.0,
    ) -> None:
        self._model = LibraryModel(store)
        self._editor = EditSession(store, self._model)
        self._playback = PlaybackController(
            surface, attach_timeout=attach_timeout, detach_timeout=detach_timeout
        )
        self._busy_policy = busy_policy
        self._state: SessionState = Browsing()
        self._lock = asyncio.Lock()
        self._current_request: str | None = None
        self._reaped: PlaybackHandle | None = None
        self._save_task: asyncio.Task | None = None

    # -- read-only views ------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def library(self) -> tuple[Entry, ...]:
        return self._model.entries

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def get_status(self) -> dict:
        return {
            "state": self._state.to_dict(),
            "entries": len(self._model.entries),
            "busy": self._current_request,
        }

    # -- requests -------------------------------------------------------------

    async def load_library(self) -> tuple[Entry, ...]:
        async with self._exclusive("load_library"):
            if isinstance(self._state, Editing):
                raise SessionConflict("cannot reload the library while editing")
            return await self._model.load()

    async def enter_edit(self) -> Editing:
        async with self._exclusive("enter_edit"):
            if isinstance(self._state, Playing):
                raise SessionConflict("cannot edit the library while playback is active")
            if isinstance(self._state, Editing):
                raise SessionConflict("an edit session is already open")
            context = await self._editor.begin(playback_active=self._playback.is_active)
            self._state = Editing(context)
            return self._state

    async def stage_edits(self, edits: Sequence[Edit]) -> tuple[Entry, ...]:
        async with self._exclusive("stage_edits"):
            if not isinstance(self._state, Editing):
                raise InvalidSessionState("cannot stage edits outside an edit session")
            return self._editor.stage(edits)

    async def save_edit(self) -> tuple[Entry, ...]:
        async with self._exclusive("save_edit"):
            if not isinstance(self._state, Editing):
                raise InvalidSessionState("no edit session to save")
            task = asyncio.create_task(self._editor.save())
            self._save_task = task
            try:
                entries = await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if task.cancelled() and not (current and current.cancelling()):
                    raise PersistenceFailed("save was cancelled before the commit resolved") from None
                raise
            finally:
                self._save_task = None
            self._state = Browsing()
            return entries

    async def cancel_edit(self) -> None:
        task = self._save_task
        if task is not None:
            # The save holds the lock until it has resumed past its commit,
            # even once the commit task itself is done.
            if not task.done():
                await self._preempt_save(task)
            async with self._lock:
                await self._cancel_locked()
            return

        async with self._exclusive("cancel_edit"):
            await self._cancel_locked()

    async def select_entry(self, entry_id: int) -> Playing:
        async with self._exclusive("select_entry"):
            if isinstance(self._state, Editing):
                raise SessionConflict("cannot start playback while editing the library")
            if isinstance(self._state, Playing):
                raise SessionConflict(
                    f"entry {self._state.handle.entry_id} is already playing; stop it first"
                )
            entry = self._model.get(entry_id)
            if entry is None:
                raise PlaybackStartFailed(f"no entry with id {entry_id}")
            handle = await self._playback.start(entry, editing=self._editor.is_editing)
            self._state = Playing(handle)
            return self._state

    async def stop_playback(self) -> None:
        async with self._exclusive("stop_playback"):
            if self._reaped is not None:
                # The player exited on its own just before this request.
                return
            if not isinstance(self._state, Playing):
                raise InvalidSessionState("nothing is playing")
            await self._playback.stop()
            self._state = Browsing()

    async def close(self) -> None:
        """Leave whatever session is active. Used on daemon shutdown."""
        if self._save_task is not None and not self._save_task.done():
            await self._preempt_save(self._save_task)
        async with self._lock:
            if isinstance(self._state, Playing):
                await self._playback.stop()
            elif isinstance(self._state, Editing):
                await self._editor.cancel()
            self._state = Browsing()
        log.info("session_closed")

    # -- internals ------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _exclusive(self, request: str) -> AsyncIterator[None]:
        if self._lock.locked() and self._busy_policy == "reject":
            log.info("request_rejected_busy", request=request, in_flight=self._current_request)
            raise Busy(f"cannot {request}: {self._current_request} is in progress")

        async with self._lock:
            self._current_request = request
            try:
                with structlog.contextvars.bound_contextvars(request=request, mode=self._state.mode.value):
                    self._reaped = await self._reap_finished_playback()
                    yield
            except Exception as exc:
                log.info("request_failed", request=request, error=type(exc).__name__, detail=str(exc))
                raise
            finally:
                self._current_request = None
                self._reaped = None

    async def _reap_finished_playback(self) -> PlaybackHandle | None:
        if not isinstance(self._state, Playing):
            return None
        handle = await self._playback.reap()
        if handle is not None:
            self._state = Browsing()
        return handle

    async def _preempt_save(self, task: asyncio.Task) -> None:
        context = self._editor.context
        if context is not None and context.sealed:
            # Past the point of no return: let the commit resolve.
            with contextlib.suppress(PersistenceFailed, asyncio.CancelledError):
                await asyncio.shield(task)
            return
        log.info("save_preempted", session_id=context.session_id if context else None)
        task.cancel()
        with contextlib.suppress(PersistenceFailed, asyncio.CancelledError):
            await task

    async def _cancel_locked(self) -> None:
        if not isinstance(self._state, Editing):
            raise InvalidSessionState("no edit session to cancel; edits may already be saved")
        await self._editor.cancel()
        self._state = Browsing()
