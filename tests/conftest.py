"""Shared fixtures and in-memory fakes for Reelshelf tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import pytest

from reelshelf.errors import AttachFailed, InvalidSessionState, PersistenceFailed, StoreUnavailable
from reelshelf.playback.base import PlaybackHandle
from reelshelf.storage.models import EditContext, EditStatus, Entry


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all Reelshelf runtime files to a temporary directory.

    Patches ``reelshelf.config.get_base_dir`` (and the re-imported reference in
    ``reelshelf.daemon``) so that nothing touches the real ``~/.reelshelf/``.
    """
    fake_base = tmp_path / ".reelshelf"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("reelshelf.config.get_base_dir", lambda: fake_base)
    monkeypatch.setattr("reelshelf.daemon.get_base_dir", lambda: fake_base)

    return fake_base


def make_entries(*ids: int) -> list[Entry]:
    return [Entry(id=i, title=f"Entry {i}", locator=f"/media/{i}.mp4", position=pos) for pos, i in enumerate(ids)]


class FakeStore:
    """In-memory implementation of the library store contract.

    ``commit_gate`` holds a commit in flight until the event is set;
    ``seal_in_flight`` marks the held commit as past its point of no return.
    """

    def __init__(self, entries: list[Entry] | None = None) -> None:
        self.entries: list[Entry] = list(entries or [])
        self.commits: list[list[Entry]] = []
        self.commit_calls = 0
        self.discarded: list[int] = []
        self.fail_load = False
        self.fail_begin = False
        self.fail_commit = False
        self.fail_discard = False
        self.commit_gate: asyncio.Event | None = None
        self.commit_started = asyncio.Event()
        self.seal_in_flight = False
        self._next_session = 1

    async def load(self) -> list[Entry]:
        if self.fail_load:
            raise StoreUnavailable("store offline")
        return list(self.entries)

    async def begin_edit_session(self) -> EditContext:
        if self.fail_begin:
            raise StoreUnavailable("store offline")
        context = EditContext(session_id=self._next_session, opened_at=datetime.now(UTC))
        self._next_session += 1
        return context

    async def commit(self, context: EditContext, overlay) -> None:
        if not context.is_open:
            raise InvalidSessionState("context already consumed")
        self.commit_calls += 1
        if self.commit_gate is not None:
            context.sealed = self.seal_in_flight
            self.commit_started.set()
            await self.commit_gate.wait()
        if self.fail_commit:
            context.sealed = False
            raise PersistenceFailed("disk full")
        self.entries = list(overlay)
        self.commits.append(list(overlay))
        context.status = EditStatus.COMMITTED

    async def discard(self, context: EditContext) -> None:
        if context.is_open:
            context.status = EditStatus.DISCARDED
        self.discarded.append(context.session_id)
        if self.fail_discard:
            raise RuntimeError("journal unavailable")


class FakeSurface:
    """In-memory playback surface recording attach / detach calls."""

    def __init__(self) -> None:
        self.attached: list[PlaybackHandle] = []
        self.detached: list[str] = []
        self.fail_attach = False
        self.fail_detach = False
        self.alive = True
        self.attach_gate: asyncio.Event | None = None
        self.attach_started = asyncio.Event()

    async def attach(self, locator: str) -> PlaybackHandle:
        if self.attach_gate is not None:
            self.attach_started.set()
            await self.attach_gate.wait()
        if self.fail_attach:
            raise AttachFailed("surface busy")
        handle = PlaybackHandle(locator=locator)
        self.attached.append(handle)
        return handle

    async def detach(self, handle: PlaybackHandle) -> None:
        self.detached.append(handle.handle_id)
        if self.fail_detach:
            raise RuntimeError("device lost")

    def is_alive(self, handle: PlaybackHandle) -> bool:
        return self.alive


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore(make_entries(1, 2))


@pytest.fixture()
def surface() -> FakeSurface:
    return FakeSurface()
