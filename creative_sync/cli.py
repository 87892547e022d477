"""
creative_sync — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, authorization, job runs, stats).
  5. Report result to stdout.

Install and run::

    pip install -e .
    creative-sync --help
    creative-sync init-db
    creative-sync validate-config
    creative-sync auth-exchange <authorization-code>
    creative-sync auth-status
    creative-sync seed --artifact 1234-5678-9012 --author <account-id>
    creative-sync run
    creative-sync run-once discovery_tracker
    creative-sync stats ccu_samples --field value
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="creative-sync",
    help="Rate-limited mirror of creative artifacts, their authors and discovery surfaces.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from creative_sync.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from creative_sync.utils.logging import configure_logging
    configure_logging(config.logging)


def _build_context_or_exit(config):
    from creative_sync.runner import build_context

    try:
        return build_context(config)
    except RuntimeError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)


_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Initialize the SQLite document store.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    """
    from creative_sync.db.connection import get_connection
    from creative_sync.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        existing = get_existing_tables(conn)

    missing = [name for name in ALL_TABLE_NAMES if name not in existing]
    if missing:
        typer.echo(f"[ERROR] Tables missing after init: {missing}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = _CONFIG_OPTION,
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  Token file:       {config.auth.token_file}")
    typer.echo(f"  Enabled jobs:     {', '.join(config.runner.jobs)}")
    for name, policy in sorted(config.rate_limits.items()):
        typer.echo(
            f"  Rate [{name}]:".ljust(20)
            + f"{policy.policy} interval={policy.interval_seconds}s "
            f"in_flight={policy.max_in_flight} stagger={policy.stagger_seconds}s"
        )
    typer.echo(f"  Surfaces:         {', '.join(config.discovery.surfaces)}")
    typer.echo(f"  Sampler interval: {config.sampler.interval_minutes} min")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("auth-exchange")
def auth_exchange(
    code: str = typer.Argument(..., help="One-time authorization code."),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Exchange an authorization code for a credential and save it to the token file."""
    from creative_sync.auth.oauth_client import OAuthClient
    from creative_sync.auth.token_store import TokenStore
    from creative_sync.exceptions import CreativeSyncError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        client = OAuthClient.from_env(config.auth)
    except RuntimeError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    try:
        credential = client.exchange_code(code)
    except CreativeSyncError as exc:
        typer.echo(f"[ERROR] Exchange failed: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        client.close()

    TokenStore(config.auth.token_file).save(credential)
    typer.echo(f"[OK] Credential saved to {config.auth.token_file}")
    typer.echo(f"  Account:          {credential.account_id or '(unknown)'}")
    typer.echo(f"  Expires at:       {credential.expires_at.isoformat()}")
    typer.echo(f"  Refresh until:    {credential.refresh_expires_at.isoformat()}")


@app.command("auth-status")
def auth_status(config_path: Optional[str] = _CONFIG_OPTION) -> None:
    """Show the stored credential's expiry times. Exits 1 if it can no longer be refreshed."""
    from creative_sync.auth.token_store import TokenStore
    from creative_sync.utils.time_utils import utcnow

    config = _load_config_or_exit(config_path)
    credential = TokenStore(config.auth.token_file).load()
    if credential is None:
        typer.echo(f"[ERROR] No credential at {config.auth.token_file}.", err=True)
        typer.echo("Run: creative-sync auth-exchange <authorization-code>", err=True)
        raise typer.Exit(code=1)

    now = utcnow()
    typer.echo(f"  Account:          {credential.account_id or '(unknown)'}")
    typer.echo(
        f"  Access token:     {'EXPIRED' if credential.is_expired(now) else 'valid'} "
        f"(expires {credential.expires_at.isoformat()})"
    )
    typer.echo(
        f"  Refresh token:    {'EXPIRED' if credential.refresh_expired(now) else 'valid'} "
        f"(expires {credential.refresh_expires_at.isoformat()})"
    )
    if credential.refresh_expired(now):
        typer.echo("Run: creative-sync auth-exchange <authorization-code>", err=True)
        raise typer.Exit(code=1)


@app.command("seed")
def seed(
    artifacts: list[str] = typer.Option([], "--artifact", help="Artifact id to track (repeatable)."),
    authors: list[str] = typer.Option([], "--author", help="Author id to track (repeatable)."),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Add artifact or author ids to the mirror; the sync jobs fill them in."""
    from creative_sync.store.sqlite_store import SqliteDocumentStore
    from creative_sync.sync.change_detector import ChangeDetector
    from creative_sync.sync.profiles import ARTIFACT_PROFILE, AUTHOR_PROFILE

    if not artifacts and not authors:
        typer.echo("[ERROR] Pass at least one --artifact or --author.", err=True)
        raise typer.Exit(code=1)

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    store = SqliteDocumentStore.from_config(config.database)
    try:
        created_artifacts = ChangeDetector(store, ARTIFACT_PROFILE, "manual_seed").ensure_exists(artifacts)
        created_authors = ChangeDetector(store, AUTHOR_PROFILE, "manual_seed").ensure_exists(authors)
    finally:
        store.close()
    typer.echo(f"[OK] New artifacts: {len(created_artifacts)}  New authors: {len(created_authors)}")


@app.command("run")
def run(
    jobs: list[str] = typer.Option(
        [],
        "--job",
        help="Job to start (repeatable). Default: runner.jobs from config.",
    ),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Start the runner. Blocks until Ctrl-C / SIGTERM."""
    from creative_sync.runner import JOB_CLASSES, JobRunner

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    unknown = [name for name in jobs if name not in JOB_CLASSES]
    if unknown:
        typer.echo(f"[ERROR] Unknown job(s): {unknown}. Choose from {sorted(JOB_CLASSES)}.", err=True)
        raise typer.Exit(code=1)

    runner = JobRunner(_build_context_or_exit(config), job_names=jobs or None)
    runner.start()


@app.command("run-once")
def run_once(
    job: str = typer.Argument(..., help="Job name, e.g. artifact_sync."),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Run a single cycle of one job and print its run record."""
    from creative_sync.exceptions import CreativeSyncError
    from creative_sync.runner import JOB_CLASSES, build_job

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    if job not in JOB_CLASSES:
        typer.echo(f"[ERROR] Unknown job '{job}'. Choose from {sorted(JOB_CLASSES)}.", err=True)
        raise typer.Exit(code=1)

    context = _build_context_or_exit(config)
    try:
        record = build_job(job, context).run()
    except CreativeSyncError as exc:
        typer.echo(f"[ERROR] {job} failed: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        context.client.close()
        context.store.close()

    typer.echo(json.dumps(record.to_document(), indent=2))


@app.command("stats")
def stats(
    collection: str = typer.Argument(..., help="Collection name, e.g. artifacts or ccu_samples."),
    field: Optional[str] = typer.Option(
        None, "--field", help="Dotted numeric field to aggregate, e.g. computed.follower_count."
    ),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Print the document count of a collection, and min/max/mean of a field."""
    from creative_sync.store.base import APPEND_ONLY_COLLECTIONS, KEYED_COLLECTIONS
    from creative_sync.store.sqlite_store import SqliteDocumentStore

    known = KEYED_COLLECTIONS | APPEND_ONLY_COLLECTIONS
    if collection not in known:
        typer.echo(f"[ERROR] Unknown collection '{collection}'. Choose from {sorted(known)}.", err=True)
        raise typer.Exit(code=1)

    config = _load_config_or_exit(config_path)
    store = SqliteDocumentStore.from_config(config.database)
    try:
        typer.echo(f"  {collection}: {store.count(collection)} documents")
        if field:
            try:
                result = store.aggregate(collection, field)
            except ValueError as exc:
                typer.echo(f"[ERROR] {exc}", err=True)
                raise typer.Exit(code=1)
            typer.echo(
                f"  {field}: n={result.count} min={result.min} max={result.max} mean={result.mean}"
            )
    finally:
        store.close()
