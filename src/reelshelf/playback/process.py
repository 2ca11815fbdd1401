"""Playback surface that hands content to an external player process (mpv by default).

The player is launched with the content locator as its last argument and is
owned by the surface until ``detach`` terminates it. Only one player process
is attached at a time.
"""

from __future__ import annotations

import asyncio
import contextlib
import shutil
from collections.abc import Sequence

import structlog

from reelshelf.errors import AttachFailed
from reelshelf.playback.base import PlaybackHandle

log = structlog.get_logger(__name__)

_DEFAULT_ARGS = ("--no-terminal", "--force-window=yes")


def find_player(command: str) -> str | None:
    """Resolve *command* to an executable path, or *None* if it is not installed."""
    return shutil.which(command)


class ProcessSurface:
    """Plays content by spawning a player process per attachment."""

    def __init__(
        self,
        command: str = "mpv",
        args: Sequence[str] = _DEFAULT_ARGS,
        *,
        startup_grace: float = 0.3,
        terminate_timeout: float = 3.0,
    ) -> None:
        self._command = command
        self._args = tuple(args)
        self._startup_grace = startup_grace
        self._terminate_timeout = terminate_timeout
        self._handle: PlaybackHandle | None = None
        self._proc: asyncio.subprocess.Process | None = None

    @property
    def busy(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def attach(self, locator: str) -> PlaybackHandle:
        if self.busy:
            raise AttachFailed("player is busy with another attachment")

        executable = find_player(self._command)
        if executable is None:
            raise AttachFailed(f"player not found: {self._command}")

        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *self._args,
                locator,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise AttachFailed(f"could not launch {self._command}: {exc}") from exc

        try:
            # A player that rejects the content exits right away.
            await asyncio.wait_for(proc.wait(), timeout=self._startup_grace)
        except TimeoutError:
            pass
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        else:
            raise AttachFailed(f"{self._command} exited with status {proc.returncode} for {locator}")

        self._proc = proc
        self._handle = PlaybackHandle(locator=locator)
        log.info("player_attached", pid=proc.pid, locator=locator)
        return self._handle

    async def detach(self, handle: PlaybackHandle) -> None:
        if self._handle is None or handle.handle_id != self._handle.handle_id:
            log.debug("detach_unknown_handle", handle_id=handle.handle_id)
            return
        proc = self._proc
        self._proc = None
        self._handle = None
        if proc is not None:
            await self._terminate(proc)
            log.info("player_detached", pid=proc.pid, returncode=proc.returncode)

    def is_alive(self, handle: PlaybackHandle) -> bool:
        if self._handle is None or handle.handle_id != self._handle.handle_id:
            return False
        return self.busy

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._terminate_timeout)
        except TimeoutError:
            log.warning("player_kill", pid=proc.pid)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
