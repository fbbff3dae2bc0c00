"""Operator command line for the memory worker."""
from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from ai_mem_agent.core.utils.config import Settings, load_settings
from ai_mem_agent.core.utils.constants import DEFAULT_PURGE_AFTER_SECONDS
from ai_mem_agent.core.utils.logger import configure_logging, get_logger, mask_url
from ai_mem_agent.providers.llm.base import ConfigurationError
from ai_mem_agent.session import RunnerState, SessionManager
from ai_mem_agent.storage import Database, PendingMessageStore, SessionStore
from ai_mem_agent.storage.sessions import SESSION_ACTIVE, SessionRecord

LOGGER = get_logger(__name__)

_SECRET_FIELDS = ("api_key", "fallback_api_key")
_URL_FIELDS = ("api_url", "fallback_api_url")


def _open_queue(settings: Settings) -> Tuple[Database, PendingMessageStore]:
    settings.ensure_database_dir()
    db = Database(settings.database_path)
    return db, PendingMessageStore(db, lease_seconds=settings.lease_seconds)


def _require_active_session(sessions: SessionStore, content_session_id: str) -> SessionRecord:
    record = sessions.get_by_content_id(content_session_id)
    if record is None or record.status != SESSION_ACTIVE:
        raise click.ClickException(f"No active session '{content_session_id}'")
    return record


def _redacted_settings(settings: Settings) -> Dict[str, Any]:
    data = asdict(settings)
    for key in _SECRET_FIELDS:
        if data.get(key):
            data[key] = "***"
    for key in _URL_FIELDS:
        if data.get(key):
            data[key] = mask_url(data[key])
    data["database_path"] = str(data["database_path"])
    return data


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config file.")
@click.option("--verbose", is_flag=True, help="Enable verbose logging output.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """Memory worker: drains queued session events through an LLM provider."""
    settings = load_settings(config_path)
    if verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings.log_level, structured=settings.structured_logging)
    ctx.obj = {"settings": settings}


@cli.command()
@click.argument("content_session_ids", nargs=-1)
@click.pass_context
def run(ctx: click.Context, content_session_ids: Tuple[str, ...]) -> None:
    """Drain the queue of the given sessions (default: every active session)."""
    settings: Settings = ctx.obj["settings"]
    try:
        manager = SessionManager.from_settings(settings)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    failed = False
    try:
        if not content_session_ids:
            content_session_ids = tuple(record.content_session_id for record in manager.sessions.list_active())
        if not content_session_ids:
            click.echo("No active sessions.")
            return

        for content_session_id in content_session_ids:
            _require_active_session(manager.sessions, content_session_id)

        futures = {}
        for content_session_id in content_session_ids:
            session = manager.initialize_session(content_session_id)
            futures[content_session_id] = manager.start_runner(session.session_db_id)

        for content_session_id, future in futures.items():
            try:
                outcome = future.result()
            except Exception as exc:
                failed = True
                click.echo(f"{content_session_id}: failed ({exc})", err=True)
                continue
            line = (
                f"{content_session_id}: {outcome.state.value} "
                f"turns={outcome.turns} events={outcome.events_processed} "
                f"duration={outcome.duration_seconds:.1f}s"
            )
            if outcome.error is not None:
                line += f" error={outcome.error}"
            if outcome.state is RunnerState.FAILED:
                failed = True
            click.echo(line)
    finally:
        manager.shutdown()

    if failed:
        ctx.exit(1)


@cli.command("release-stale")
@click.option("--lease-seconds", type=int, default=None, help="Override the configured lease duration.")
@click.pass_context
def release_stale(ctx: click.Context, lease_seconds: Optional[int]) -> None:
    """Return events whose lease expired to the pending state."""
    settings: Settings = ctx.obj["settings"]
    db, queue = _open_queue(settings)
    try:
        released = queue.release_stale(lease_seconds)
    finally:
        db.close()
    click.echo(f"Released {released} stale event(s).")


@cli.command("queue-stats")
@click.option("--session", "content_session_id", help="Limit to one content session id.")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON.")
@click.pass_context
def queue_stats(ctx: click.Context, content_session_id: Optional[str], as_json: bool) -> None:
    """Show queued event counts per status."""
    settings: Settings = ctx.obj["settings"]
    db, queue = _open_queue(settings)
    try:
        session_db_id = None
        if content_session_id:
            session_db_id = _require_active_session(SessionStore(db), content_session_id).id
        counts = queue.stats(session_db_id)
    finally:
        db.close()

    if as_json:
        click.echo(json.dumps(counts, sort_keys=True))
        return
    for status, count in counts.items():
        click.echo(f"{status:<12}{count}")


@cli.command()
@click.option(
    "--older-than",
    "older_than_seconds",
    type=int,
    default=DEFAULT_PURGE_AFTER_SECONDS,
    show_default=True,
    help="Delete processed events completed more than this many seconds ago.",
)
@click.pass_context
def purge(ctx: click.Context, older_than_seconds: int) -> None:
    """Delete old processed events."""
    settings: Settings = ctx.obj["settings"]
    db, queue = _open_queue(settings)
    try:
        removed = queue.purge_processed(older_than_seconds)
    finally:
        db.close()
    click.echo(f"Purged {removed} processed event(s).")


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective settings with credentials redacted."""
    settings: Settings = ctx.obj["settings"]
    click.echo(json.dumps(_redacted_settings(settings), indent=2, sort_keys=True))


def main() -> None:
    cli(prog_name="ai-mem")


__all__ = ["cli", "main"]
