"""Tests for the external-player playback surface, using the Python interpreter as the player."""

from __future__ import annotations

import asyncio
import sys

import pytest

from reelshelf.errors import AttachFailed
from reelshelf.playback.base import PlaybackHandle
from reelshelf.playback.process import ProcessSurface, find_player

SLEEPER = ("-c", "import time; time.sleep(30)")


def _surface(*args: str, grace: float = 0.2) -> ProcessSurface:
    return ProcessSurface(sys.executable, args, startup_grace=grace, terminate_timeout=2.0)


async def _wait_until(predicate, timeout: float = 5.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.05)
    return predicate()


def test_find_player_resolves_executables():
    assert find_player(sys.executable) is not None
    assert find_player("reelshelf-no-such-player") is None


@pytest.mark.asyncio
async def test_attach_and_detach_player():
    surface = _surface(*SLEEPER)
    handle = await surface.attach("/media/movie.mp4")

    assert handle.locator == "/media/movie.mp4"
    assert surface.busy
    assert surface.is_alive(handle)

    await surface.detach(handle)

    assert not surface.busy
    assert not surface.is_alive(handle)


@pytest.mark.asyncio
async def test_second_attach_while_busy_fails():
    surface = _surface(*SLEEPER)
    handle = await surface.attach("/media/a.mp4")
    try:
        with pytest.raises(AttachFailed, match="busy"):
            await surface.attach("/media/b.mp4")
    finally:
        await surface.detach(handle)


@pytest.mark.asyncio
async def test_player_rejecting_content_fails_attach():
    surface = _surface("-c", "import sys; sys.exit(3)", grace=10.0)
    with pytest.raises(AttachFailed, match="status 3"):
        await surface.attach("/media/broken.mp4")
    assert not surface.busy


@pytest.mark.asyncio
async def test_missing_player_fails_attach():
    surface = ProcessSurface("reelshelf-no-such-player")
    with pytest.raises(AttachFailed, match="not found"):
        await surface.attach("/media/a.mp4")


@pytest.mark.asyncio
async def test_player_exiting_on_its_own_is_not_alive():
    surface = _surface("-c", "import time; time.sleep(0.5)", grace=0.05)
    handle = await surface.attach("/media/short.mp4")

    assert await _wait_until(lambda: not surface.is_alive(handle))

    # Detaching an exited player is harmless.
    await surface.detach(handle)


@pytest.mark.asyncio
async def test_detach_unknown_handle_is_ignored():
    surface = _surface(*SLEEPER)
    handle = await surface.attach("/media/a.mp4")
    await surface.detach(PlaybackHandle(locator="/media/a.mp4"))

    assert surface.is_alive(handle)
    await surface.detach(handle)
