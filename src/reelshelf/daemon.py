"""Background process hosting the session coordinator.

The daemon double-forks, records its PID, and serves the RPC endpoint on a
Unix domain socket until SIGTERM / SIGINT or an RPC ``shutdown`` arrives. On
the way out it stops playback, discards any open edit session and closes the
library store.
"""

from __future__ import annotations

import asyncio
import atexit
import os
import signal
import socket
import sys
import time
from pathlib import Path

import structlog
import uvicorn

from reelshelf.config import get_base_dir
from reelshelf.logging import DAEMON_LOG

log = structlog.get_logger(__name__)

_PID_FILE = "daemon.pid"
_SOCKET_FILE = "daemon.sock"
_LOG_DIR = "logs"
_DB_FILE = "library.db"

_START_WAIT_STEPS = 50  # x 0.1s
_STOP_WAIT_STEPS = 100  # x 0.1s


def ensure_clean_socket(sock_path: Path) -> None:
    """Remove *sock_path* if no process is listening on it any more."""
    if not sock_path.exists():
        return

    probe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        probe.connect(str(sock_path))
    except OSError:
        log.debug("removing stale socket", path=str(sock_path))
        sock_path.unlink(missing_ok=True)
    finally:
        probe.close()


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class Daemon:
    """Manages the lifecycle of the Reelshelf background daemon."""

    def __init__(self) -> None:
        base = get_base_dir()
        self.base_dir: Path = base
        self.pid_path: Path = base / _PID_FILE
        self.socket_path: Path = base / _SOCKET_FILE
        self.log_dir: Path = base / _LOG_DIR
        self.log_file: Path = self.log_dir / DAEMON_LOG
        self.db_path: Path = base / _DB_FILE

    # -- PID helpers --------------------------------------------------------

    def get_pid(self) -> int | None:
        """Read the PID from the PID file, or *None* if it does not exist."""
        try:
            return int(self.pid_path.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None

    def is_running(self) -> bool:
        """Return *True* if the daemon process is alive, dropping a stale PID file."""
        pid = self.get_pid()
        if pid is None:
            return False
        if _process_alive(pid):
            return True
        log.debug("removing stale pid file", pid=pid)
        self.pid_path.unlink(missing_ok=True)
        return False

    def _write_pid(self) -> None:
        self.pid_path.write_text(str(os.getpid()))

    def _cleanup(self) -> None:
        self.pid_path.unlink(missing_ok=True)
        self.socket_path.unlink(missing_ok=True)

    # -- Start / Stop -------------------------------------------------------

    def start(self) -> None:
        """Daemonize with the classic double fork.

        The calling process returns once the daemon has written its PID file;
        the grandchild runs :meth:`_run_daemon` and never returns.
        """
        if self.is_running():
            log.warning("daemon already running", pid=self.get_pid())
            return

        self.base_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self.log_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

        if self._fork("first") > 0:
            for _ in range(_START_WAIT_STEPS):
                if self.pid_path.exists():
                    break
                time.sleep(0.1)
            return

        os.setsid()
        if self._fork("second") > 0:
            os._exit(0)

        self._redirect_std_streams()
        self._write_pid()
        atexit.register(self._cleanup)
        self._run_daemon()

    @staticmethod
    def _fork(which: str) -> int:
        try:
            return os.fork()
        except OSError as exc:
            log.error("fork failed", stage=which, error=str(exc))
            sys.exit(1)

    def _redirect_std_streams(self) -> None:
        sys.stdout.flush()
        sys.stderr.flush()

        devnull = open(os.devnull, "rb")  # noqa: SIM115
        log_fh = open(self.log_file, "ab")  # noqa: SIM115

        os.dup2(devnull.fileno(), sys.stdin.fileno())
        os.dup2(log_fh.fileno(), sys.stdout.fileno())
        os.dup2(log_fh.fileno(), sys.stderr.fileno())

    def stop(self) -> None:
        """Send SIGTERM to the running daemon, escalating to SIGKILL after 10 s."""
        pid = self.get_pid()
        if pid is None or not self.is_running():
            log.info("daemon is not running")
            return

        log.info("sending SIGTERM to daemon", pid=pid)
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self._cleanup()
            return

        for _ in range(_STOP_WAIT_STEPS):
            if not _process_alive(pid):
                log.info("daemon stopped", pid=pid)
                self._cleanup()
                return
            time.sleep(0.1)

        log.warning("daemon did not stop in time; sending SIGKILL", pid=pid)
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        self._cleanup()

    # -- Internal daemon loop -----------------------------------------------

    def _run_daemon(self) -> None:
        asyncio.run(self._async_main())

    async def _async_main(self) -> None:
        """Load the library, serve RPC, and wait for shutdown."""
        from reelshelf.config import load_config
        from reelshelf.errors import StoreUnavailable
        from reelshelf.logging import setup_logging
        from reelshelf.playback import ProcessSurface
        from reelshelf.server.rpc import DaemonState, create_rpc_app
        from reelshelf.session import SessionCoordinator
        from reelshelf.storage import LibraryStore

        app_config = load_config()
        setup_logging(app_config.daemon.log_level, self.log_dir)

        state = DaemonState()

        store = LibraryStore(self.db_path)
        await store.connect()
        state.store = store

        playback = app_config.playback
        surface = ProcessSurface(
            playback.player_command,
            playback.player_args,
            startup_grace=playback.startup_grace_seconds,
            terminate_timeout=playback.detach_timeout_seconds,
        )
        coordinator = SessionCoordinator(
            store,
            surface,
            busy_policy=app_config.session.busy_policy,
            attach_timeout=playback.attach_timeout_seconds,
            detach_timeout=playback.detach_timeout_seconds,
        )
        state.coordinator = coordinator

        try:
            await coordinator.load_library()
        except StoreUnavailable as exc:
            # The library stays empty until a `reload` succeeds.
            log.error("initial_load_failed", error=str(exc))

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, state.request_shutdown)

        ensure_clean_socket(self.socket_path)

        rpc_config = uvicorn.Config(
            create_rpc_app(state),
            uds=str(self.socket_path),
            log_level="info",
            loop="asyncio",
        )
        rpc_server = uvicorn.Server(rpc_config)
        rpc_task = asyncio.create_task(rpc_server.serve())

        await state.shutdown_event.wait()
        log.info("initiating graceful shutdown")

        rpc_server.should_exit = True
        await rpc_task

        await coordinator.close()
        await store.close()

        self._cleanup()
        log.info("daemon shut down cleanly")
