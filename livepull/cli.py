"""
CLI interface for livepull.

Usage:
    livepull sync
    livepull watch --interval 60000
    livepull search "query text"
    livepull get <note-id>
"""

import json
import os
import time
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import AppConfig, load_or_default_config, save_config
from .logging_config import (
    configure_ops_log,
    configure_quiet_mode,
    enable_console_log,
    enable_debug_mode,
)
from .types import AssembledNote

# Configure quiet mode by default (suppress verbose library output)
# Set LIVEPULL_VERBOSE=1 to enable debug mode via environment
if os.environ.get("LIVEPULL_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"livepull {version('livepull')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_home_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _home_callback(value: Optional[Path]):
    global _home_override
    if value is not None:
        _home_override = value


app = typer.Typer(
    name="livepull",
    help="Pull Obsidian LiveSync notes into plaintext.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    home: Annotated[Optional[Path], typer.Option(
        "--home",
        envvar="LIVEPULL_HOME",
        help="Directory for config, sync state and logs",
        callback=_home_callback,
        is_eager=True,
    )] = None,
):
    """Pull Obsidian LiveSync notes into plaintext."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _load_config() -> AppConfig:
    try:
        return load_or_default_config(_home_override)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _make_client(config: AppConfig):
    from .couchdb import CouchDBClient
    couch = config.couchdb
    return CouchDBClient(
        couch.url,
        couch.database,
        username=couch.username,
        password=couch.password,
    )


def _make_repository(config: AppConfig):
    from .backend import create_note_repository
    try:
        return create_note_repository(config)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _get_coordinator(config: AppConfig):
    """Build the sync coordinator from config, initialized and ready."""
    import atexit
    from .state_store import JsonStateStore
    from .sync import SyncCoordinator

    configure_ops_log(config.home)
    client = _make_client(config)
    atexit.register(client.close)
    notes = _make_repository(config)
    atexit.register(notes.close)
    coordinator = SyncCoordinator(
        client,
        JsonStateStore(config.state_path),
        notes,
        passphrase=config.couchdb.passphrase,
    )
    coordinator.initialize()
    return coordinator


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _format_note_line(note: AssembledNote) -> str:
    modified = note.modified_at.astimezone().strftime("%Y-%m-%d %H:%M")
    return f"{modified}  {note.path}"


def _echo_notes(notes: list[AssembledNote]) -> None:
    if _get_json_output():
        _echo_json([{k: v for k, v in n.to_dict().items() if k != "content"} for n in notes])
        return
    for note in sorted(notes, key=lambda n: n.path):
        typer.echo(_format_note_line(note))


def _watch(coordinator, interval_ms: int) -> None:
    """Run auto-sync in the foreground until Ctrl+C."""
    coordinator.start_auto_sync(interval_ms)
    typer.echo(f"Syncing every {interval_ms / 1000:g}s. Press Ctrl+C to stop.", err=True)
    try:
        while coordinator.auto_sync_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        typer.echo("Stopping after the current pass...", err=True)
    finally:
        coordinator.stop_auto_sync(wait=True)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def sync(
    full: Annotated[bool, typer.Option(
        "--full",
        help="Discard the cursor and re-read every document",
    )] = False,
    once: Annotated[bool, typer.Option(
        "--once",
        help="Run a single pass even when auto_sync is enabled",
    )] = False,
):
    """Run one synchronization pass, or keep syncing if auto_sync is on."""
    config = _load_config()
    keep_syncing = config.sync.auto_sync and not once
    if keep_syncing:
        enable_console_log()
    coordinator = _get_coordinator(config)
    if full:
        coordinator.reset()
    if keep_syncing:
        _watch(coordinator, config.sync.interval_ms)
        return

    report = coordinator.sync()
    if report is None:
        typer.echo("Sync already in progress", err=True)
        raise typer.Exit(1)

    if _get_json_output():
        _echo_json(report.to_dict())
        return
    typer.echo(
        f"{report.mode.capitalize()} sync: {report.processed} written, "
        f"{report.deleted} deleted, {report.failed} failed "
        f"(seq {report.end_sequence})"
    )
    if report.failed:
        typer.echo(f"See {config.home / 'livepull-ops.log'} for failures", err=True)


@app.command()
def watch(
    interval: Annotated[Optional[int], typer.Option(
        "--interval", "-i",
        help="Milliseconds between passes (default from config)",
    )] = None,
):
    """Sync now and then periodically until interrupted."""
    config = _load_config()
    enable_console_log()
    coordinator = _get_coordinator(config)
    _watch(coordinator, interval or config.sync.interval_ms)


@app.command()
def status():
    """Show the sync cursor and local note count."""
    from .state_store import JsonStateStore

    config = _load_config()
    cursor = JsonStateStore(config.state_path).load()
    notes = _make_repository(config)
    try:
        count = notes.count()
    finally:
        notes.close()

    data = {
        "last_sequence": cursor.last_sequence if cursor else None,
        "last_sync_timestamp": (
            cursor.last_sync_timestamp.isoformat()
            if cursor and cursor.last_sync_timestamp else None
        ),
        "notes": count,
        "backend": config.storage.backend,
    }
    if _get_json_output():
        _echo_json(data)
        return
    if cursor is None:
        typer.echo("Never synced (next sync is a full sync)")
    else:
        typer.echo(f"Last sequence: {cursor.last_sequence}")
        if cursor.last_sync_timestamp:
            typer.echo(f"Last sync:     {cursor.last_sync_timestamp.astimezone():%Y-%m-%d %H:%M:%S}")
    typer.echo(f"Notes:         {count} ({config.storage.backend})")


@app.command()
def check():
    """Test the CouchDB connection and show database info."""
    from .errors import TransportError

    config = _load_config()
    with _make_client(config) as client:
        try:
            info = client.info()
        except TransportError as e:
            typer.echo(f"Connection failed: {e}", err=True)
            raise typer.Exit(1)

    data = {
        "db_name": info.get("db_name"),
        "doc_count": info.get("doc_count"),
        "update_seq": info.get("update_seq"),
        "encrypted": bool(config.couchdb.passphrase),
    }
    if _get_json_output():
        _echo_json(data)
        return
    typer.echo(f"Connected to {config.couchdb.url}")
    typer.echo(f"Database:   {data['db_name']}")
    typer.echo(f"Documents:  {data['doc_count']}")
    typer.echo(f"Update seq: {data['update_seq']}")


@app.command("list")
def list_notes():
    """List synchronized notes."""
    config = _load_config()
    notes = _make_repository(config)
    try:
        _echo_notes(notes.list())
    finally:
        notes.close()


@app.command()
def get(
    id: Annotated[str, typer.Argument(help="Note id (LiveSync document id)")],
):
    """Print a note's content."""
    config = _load_config()
    notes = _make_repository(config)
    try:
        note = notes.get(id)
    finally:
        notes.close()
    if note is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    if _get_json_output():
        _echo_json(note.to_dict())
    else:
        typer.echo(note.content)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Text to find in note paths and content")],
):
    """Case-insensitive search over note paths and content."""
    config = _load_config()
    notes = _make_repository(config)
    try:
        _echo_notes(notes.search(query))
    finally:
        notes.close()


@app.command()
def reset():
    """Forget the sync cursor; the next sync re-reads everything."""
    from .state_store import JsonStateStore

    config = _load_config()
    JsonStateStore(config.state_path).clear()
    typer.echo("Sync state reset")


@app.command()
def config(
    init: Annotated[bool, typer.Option(
        "--init",
        help="Write the effective configuration to livepull.toml",
    )] = False,
):
    """Show the effective configuration (secrets masked)."""
    cfg = _load_config()
    if init:
        save_config(cfg)
        typer.echo(f"Wrote {cfg.config_path}", err=True)
    if _get_json_output():
        _echo_json(cfg.to_display_dict())
        return
    for section, values in cfg.to_display_dict().items():
        if isinstance(values, dict):
            typer.echo(f"[{section}]")
            for key, value in values.items():
                typer.echo(f"  {key} = {value}")
        else:
            typer.echo(f"{section} = {values}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="livepull CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
