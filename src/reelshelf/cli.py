"""CLI interface for the Reelshelf daemon."""

from __future__ import annotations

from collections import deque
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.table import Table

from reelshelf.config import ensure_dirs, get_base_dir, load_config, save_config
from reelshelf.logging import DAEMON_LOG, SESSION_LOG

app = typer.Typer(
    name="reelshelf",
    help="Browse, edit and play a media library managed by a background daemon.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


# ---------------------------------------------------------------------------
# RPC helper
# ---------------------------------------------------------------------------


def _socket_path() -> Path:
    return get_base_dir() / "daemon.sock"


def send_command(cmd: str, params: dict | None = None) -> dict:
    """Send a JSON-RPC-style command to the running daemon over UDS.

    Raises a user-friendly error (via ``typer.Exit``) when the daemon
    socket does not exist or the connection is refused.
    """
    sock = _socket_path()
    if not sock.exists():
        console.print(
            f"[red]Daemon is not running.[/red]  (socket not found at [bold]{sock}[/bold])",
        )
        raise typer.Exit(1)

    payload: dict = {"cmd": cmd}
    if params is not None:
        payload["params"] = params

    transport = httpx.HTTPTransport(uds=str(sock))
    try:
        with httpx.Client(transport=transport, base_url="http://localhost") as client:
            response = client.post("/rpc", json=payload, timeout=30.0)
            response.raise_for_status()
            return response.json()
    except httpx.ConnectError:
        console.print(
            "[red]Could not connect to daemon.[/red]  Is it running?  Try [bold]reelshelf start[/bold].",
        )
        raise typer.Exit(1) from None
    except httpx.HTTPStatusError as exc:
        console.print(f"[red]Daemon returned an error:[/red] {exc.response.status_code}")
        raise typer.Exit(1) from exc


def _session_call(cmd: str, params: dict | None = None) -> dict:
    """Send a session command and exit non-zero when the daemon rejects it."""
    result = send_command(cmd, params)
    if not result.get("ok", False):
        code = result.get("code") or "error"
        console.print(f"[red]{code}:[/red] {result.get('error', 'unknown')}")
        raise typer.Exit(2 if code == "busy" else 1)
    return result.get("data", {})


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration string."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


_MODE_COLORS = {"browsing": "green", "editing": "yellow", "playing": "blue"}


def _print_state(state: dict) -> None:
    mode = state.get("mode", "unknown")
    color = _MODE_COLORS.get(mode, "white")
    line = f"  [bold]Mode:[/bold]    [{color}]{mode}[/{color}]"
    if mode == "editing":
        line += f"  (session {state.get('session_id')}, {state.get('pending_edits', 0)} pending edits)"
    elif mode == "playing":
        line += f"  (entry {state.get('entry_id')}: {state.get('locator')})"
    console.print(line)


def _print_library(data: dict) -> None:
    entries = data.get("entries", [])
    state = data.get("state", {})
    title = "Library (unsaved edits)" if state.get("mode") == "editing" else "Library"
    playing_id = state.get("entry_id") if state.get("mode") == "playing" else None

    if not entries:
        console.print(f"[dim]{title}: no entries.[/dim]")
        return

    table = Table(title=title, title_justify="left")
    table.add_column("#", justify="right", style="dim")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Locator", style="dim", overflow="fold")
    for entry in entries:
        marker = " ▶" if entry["id"] == playing_id else ""
        table.add_row(str(entry["position"]), str(entry["id"]), entry["title"] + marker, entry["locator"])
    console.print(table)


# ---------------------------------------------------------------------------
# Daemon commands
# ---------------------------------------------------------------------------


@app.command()
def start() -> None:
    """Start the Reelshelf background daemon."""
    from reelshelf.daemon import Daemon

    ensure_dirs()

    daemon = Daemon()
    if daemon.is_running():
        console.print(f"[yellow]Daemon is already running[/yellow] (PID {daemon.get_pid()}).")
        raise typer.Exit(0)

    daemon.start()
    console.print(f"[green]Daemon started[/green] (PID {daemon.get_pid()}).")


@app.command()
def stop() -> None:
    """Stop the running daemon gracefully (falls back to SIGTERM if RPC unavailable)."""
    from reelshelf.daemon import Daemon

    if _socket_path().exists():
        try:
            send_command("shutdown")
            console.print("[green]Daemon stopped.[/green]")
            return
        except typer.Exit:
            # send_command raises typer.Exit on connection errors; fall back to the PID file.
            pass

    daemon = Daemon()
    if not daemon.is_running():
        console.print("[yellow]Daemon is not running.[/yellow]")
        raise typer.Exit(0)

    daemon.stop()
    console.print("[green]Daemon stopped.[/green]")


@app.command()
def restart() -> None:
    """Restart the daemon: performs stop followed by start."""
    import contextlib

    from reelshelf.daemon import Daemon

    if _socket_path().exists():
        with contextlib.suppress(typer.Exit):
            send_command("shutdown")

    daemon = Daemon()
    if daemon.is_running():
        daemon.stop()

    ensure_dirs()
    daemon = Daemon()
    daemon.start()
    console.print(f"[green]Daemon restarted[/green] (PID {daemon.get_pid()}).")


@app.command()
def status() -> None:
    """Show daemon uptime, the current session mode and library size."""
    result = send_command("status")
    data = result.get("data", result) if isinstance(result, dict) else result

    console.print()
    session = data.get("session")
    if session:
        _print_state(session.get("state", {}))
        console.print(f"  [bold]Entries:[/bold] {session.get('entries', 0)}")
        if session.get("busy"):
            console.print(f"  [bold]Busy:[/bold]    {session['busy']}")
    else:
        console.print("  [yellow]Session not ready.[/yellow]")

    uptime_secs = data.get("uptime_seconds")
    if uptime_secs is not None:
        console.print(f"  [bold]Uptime:[/bold]  {_format_duration(uptime_secs)}")
    if "entries_stored" in data:
        console.print(f"  [bold]Stored:[/bold]  {data['entries_stored']}")
    console.print()


@app.command(name="library")
def library_list(
    reload: bool = typer.Option(False, "--reload", help="Re-read the library from the store first"),
) -> None:
    """List library entries in display order."""
    data = _session_call("reload" if reload else "library")
    _print_library(data)


# ---------------------------------------------------------------------------
# Edit session
# ---------------------------------------------------------------------------

edit_app = typer.Typer(name="edit", help="Edit the library: begin, stage changes, save or cancel.", add_completion=False)
app.add_typer(edit_app)


def _stage(edit: dict) -> None:
    data = _session_call("stage", {"edits": [edit]})
    _print_library(data)


@edit_app.command(name="begin")
def edit_begin() -> None:
    """Open an edit session."""
    data = _session_call("enter_edit")
    _print_state(data.get("state", {}))


@edit_app.command(name="insert")
def edit_insert(
    title: str = typer.Argument(help="Display title"),
    locator: str = typer.Argument(help="Content locator (path or URL)"),
    position: int | None = typer.Option(None, "--position", "-p", help="Insert position (default: end)"),
    entry_id: int | None = typer.Option(None, "--id", help="Explicit entry id (default: next free id)"),
) -> None:
    """Stage a new entry."""
    edit: dict = {"op": "insert", "entry": {"id": entry_id, "title": title, "locator": locator}}
    if position is not None:
        edit["position"] = position
    _stage(edit)


@edit_app.command(name="remove")
def edit_remove(entry_id: int = typer.Argument(help="Entry id")) -> None:
    """Stage removal of an entry."""
    _stage({"op": "remove", "entry_id": entry_id})


@edit_app.command(name="move")
def edit_move(
    entry_id: int = typer.Argument(help="Entry id"),
    position: int = typer.Argument(help="New position"),
) -> None:
    """Stage moving an entry to a new position."""
    _stage({"op": "move", "entry_id": entry_id, "position": position})


@edit_app.command(name="update")
def edit_update(
    entry_id: int = typer.Argument(help="Entry id"),
    title: str | None = typer.Option(None, "--title", "-t", help="New title"),
    locator: str | None = typer.Option(None, "--locator", "-l", help="New content locator"),
) -> None:
    """Stage a title and/or locator change for an entry."""
    _stage({"op": "update", "entry_id": entry_id, "title": title, "locator": locator})


@edit_app.command(name="save")
def edit_save() -> None:
    """Commit the staged edits."""
    data = _session_call("save_edit")
    console.print("[green]Library saved.[/green]")
    _print_library(data)


@edit_app.command(name="cancel")
def edit_cancel() -> None:
    """Discard the staged edits."""
    _session_call("cancel_edit")
    console.print("[yellow]Edits discarded.[/yellow]")


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------

playback_app = typer.Typer(name="playback", help="Start and stop playback of library entries.", add_completion=False)
app.add_typer(playback_app)


@playback_app.command(name="start")
def playback_start(entry_id: int = typer.Argument(help="Entry id to play")) -> None:
    """Play an entry."""
    data = _session_call("select", {"entry_id": entry_id})
    _print_state(data.get("state", {}))


@playback_app.command(name="stop")
def playback_stop() -> None:
    """Stop the current playback."""
    _session_call("stop_playback")
    console.print("[green]Playback stopped.[/green]")


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    session: bool = typer.Option(False, "--session", help="Show session.log (JSON) instead of daemon.log"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output (like tail -f)"),
) -> None:
    """Show recent daemon log output (--session for the JSON session log, --follow for live tail)."""
    filename = SESSION_LOG if session else DAEMON_LOG
    log_file = get_base_dir() / "logs" / filename
    if not log_file.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {log_file}")
        raise typer.Exit(1)

    if follow:
        _follow_log(log_file, tail_lines)
        return

    with open(log_file, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        _print_log_line(line)


def _log_line_style(line: str) -> str | None:
    """Return a Rich style for *line* based on its structlog level marker."""
    lower = line.lower()
    if "[error" in lower or "[critical" in lower or '"level": "error"' in lower or '"level": "critical"' in lower:
        return "red"
    if "[warning" in lower or '"level": "warning"' in lower:
        return "yellow"
    if "[debug" in lower or '"level": "debug"' in lower:
        return "dim"
    return None


def _print_log_line(line: str) -> None:
    line = line.rstrip("\n")
    if not line:
        return
    console.print(line, style=_log_line_style(line), highlight=False, markup=False)


def _follow_log(log_file: Path, initial_lines: int = 10) -> None:
    """Print the last lines of *log_file*, then new lines as they appear."""
    import time

    with open(log_file, encoding="utf-8") as fh:
        last = deque(fh, maxlen=initial_lines)
    for line in last:
        _print_log_line(line)

    with open(log_file, encoding="utf-8") as fh:
        fh.seek(0, 2)
        try:
            while True:
                line = fh.readline()
                if line:
                    _print_log_line(line)
                else:
                    time.sleep(0.5)
        except KeyboardInterrupt:
            pass


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")
    for section_name in ("daemon", "session", "playback"):
        section = getattr(cfg, section_name)
        console.print(f"[bold cyan]\\[{section_name}][/bold cyan]")
        for key, value in section.model_dump(mode="python").items():
            console.print(f"  {key} = {value}", highlight=False)
        console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. session.busy_policy"),
    value: str = typer.Argument(help="New value (comma-separated for lists)"),
) -> None:
    """Set a configuration value (e.g. reelshelf config set playback.player_command vlc)."""
    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. session.busy_policy).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = {
        "daemon": cfg.daemon,
        "session": cfg.session,
        "playback": cfg.playback,
    }

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    try:
        coerced = _coerce_value(value, fields[field_name].annotation)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model)(**section_data)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)
    console.print(f"[green]Set[/green] {key} = {coerced}")


def _coerce_value(raw: str, field_type: type) -> object:
    """Coerce a string value to the expected field type."""
    import typing

    origin = typing.get_origin(field_type)
    args = typing.get_args(field_type)

    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    if field_type is float:
        return float(raw)

    if field_type is str:
        return raw

    if origin is list:
        return [part.strip() for part in raw.split(",") if part.strip()]

    if origin is typing.Literal:
        if raw not in args:
            msg = f"'{raw}' is not a valid option (choose from: {', '.join(str(a) for a in args)})"
            raise ValueError(msg)
        return raw

    return raw


# ---------------------------------------------------------------------------
# Database inspection
# ---------------------------------------------------------------------------


db_app = typer.Typer(name="db", help="Database inspection commands.", add_completion=False)
app.add_typer(db_app)


@db_app.command(name="status")
def db_status() -> None:
    """Show library database size, entry count and recent edit sessions."""
    import sqlite3

    db_path = load_config().db_path
    if not db_path.exists():
        console.print("[yellow]Database not found.[/yellow] Start the daemon first to initialise it.")
        raise typer.Exit(1)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        console.print(f"\n[bold]Database[/bold]  {db_path}")
        size_kb = db_path.stat().st_size / 1024
        console.print(f"[dim]Size: {size_kb:.1f} KB[/dim]\n")

        entries = conn.execute("SELECT COUNT(*) AS cnt FROM entry").fetchone()["cnt"]
        console.print(f"  entries        {entries:>6}")

        rows = conn.execute(
            "SELECT status, COUNT(*) AS cnt FROM edit_session GROUP BY status ORDER BY status"
        ).fetchall()
        for row in rows:
            console.print(f"  {row['status'] + ' sessions':14s} {row['cnt']:>6}")

        last = conn.execute("SELECT * FROM edit_session ORDER BY id DESC LIMIT 1").fetchone()
        if last:
            console.print("\n[bold]Last edit session[/bold]")
            console.print(f"  Id:      {last['id']}")
            console.print(f"  Status:  {last['status']}")
            console.print(f"  Opened:  {last['opened_at']}")
            if last["closed_at"]:
                console.print(f"  Closed:  {last['closed_at']}")
            console.print(f"  Edits:   {last['edit_count']}")
    finally:
        conn.close()

    console.print()
