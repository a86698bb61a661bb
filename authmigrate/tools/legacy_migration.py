"""Command line entry point for migrating legacy users into the auth schema.

Why:
    The CLI moves verified legacy accounts (and their salted MD5 credentials)
    from the legacy MongoDB collection into the relational `user`/`account`
    tables. Migrated passwords stay in the legacy-tagged format so users can
    keep logging in until they change their password.

Usage:
    python -m authmigrate.tools.legacy_migration            # live run
    python -m authmigrate.tools.legacy_migration --dry-run  # preview only
    python -m authmigrate.tools.legacy_migration --skip=300 # resume

Environment variables (or a `.env` file): MONGODB_URI, DATABASE_URL.

Preconditions:
    At most one run against a given target database at a time. The
    existence check and the insert are not locked against a second,
    concurrent run.
"""
from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from itertools import islice
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Protocol, TypeVar

import click

from authmigrate.config import MigrationSettings, load_env_file
from authmigrate.errors import ConfigurationError, StoreConnectionError
from authmigrate.identity_access.domain import DEFAULT_LOCALE
from authmigrate.identity_access.identity_map import map_identifier
from authmigrate.identity_access.stores_db import TargetStore

from .legacy_source import LegacyAccountRecord, LegacySource
from .migration_writer import MigrationWriter, TargetWriteStore
from .reporting import MigrationStats, format_summary, write_report

logger = logging.getLogger("authmigrate.tools.legacy_migration")

DEFAULT_BATCH_SIZE = 100

T = TypeVar("T")


class RunState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    COUNTING = "counting"
    STREAMING = "streaming"
    SUMMARIZING = "summarizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationOptions:
    dry_run: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    skip: int = 0
    ensure_schema: bool = False
    default_locale: str = DEFAULT_LOCALE

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.skip < 0:
            raise ValueError("skip must be >= 0")


class SourceStore(Protocol):
    def count_eligible(self) -> int:
        ...

    def stream_records(self, skip: int = 0) -> Iterator[LegacyAccountRecord]:
        ...

    def close(self) -> None:
        ...


class TargetSink(TargetWriteStore, Protocol):
    def ensure_schema(self) -> None:
        ...

    def close(self) -> None:
        ...


def batched(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield lists of at most `size` items, pulling lazily from `items`."""
    if size < 1:
        raise ValueError("size must be >= 1")
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def progress_line(processed: int, expected: int) -> str:
    percent = 100.0 if expected <= 0 else min(processed / expected * 100, 100.0)
    return f"  Progress: {percent:.1f}% ({processed}/{max(expected, processed)})"


class MigrationRun:
    """One reader → mapper → writer pass over the legacy collection.

    Records are processed strictly one after another. Per-record failures end
    up in `stats`; only connection problems and exceptions escaping the
    record stream move the run to FAILED and propagate. Both stores are
    closed on every exit path.
    """

    def __init__(
        self,
        open_source: Callable[[], SourceStore],
        open_target: Callable[[], TargetSink],
        options: MigrationOptions | None = None,
        *,
        echo: Callable[[str], None] = click.echo,
        mapper: Callable[[str], str] = map_identifier,
    ) -> None:
        self._open_source = open_source
        self._open_target = open_target
        self.options = options or MigrationOptions()
        self.echo = echo
        self.mapper = mapper
        self.state = RunState.IDLE
        self.stats = MigrationStats()

    def _enter(self, state: RunState) -> None:
        logger.debug("Run state %s -> %s", self.state.value, state.value)
        self.state = state

    def execute(self) -> MigrationStats:
        if self.state is not RunState.IDLE:
            raise RuntimeError("a MigrationRun can only be executed once")
        opts = self.options
        source: Optional[SourceStore] = None
        target: Optional[TargetSink] = None
        try:
            self._enter(RunState.CONNECTING)
            self.echo("Connecting to legacy store...")
            source = self._open_source()
            self.echo("Connecting to target store...")
            target = self._open_target()
            if opts.ensure_schema:
                if opts.dry_run:
                    self.echo("Skipping schema creation (dry-run)")
                else:
                    target.ensure_schema()

            self._enter(RunState.COUNTING)
            self.stats.total = self._count(source)
            self.echo(f"Total verified users to migrate: {self.stats.total}")
            expected = max(self.stats.total - opts.skip, 0)

            self._enter(RunState.STREAMING)
            writer = MigrationWriter(target, default_locale=opts.default_locale)
            with closing(source.stream_records(skip=opts.skip)) as records:
                for batch_no, batch in enumerate(batched(records, opts.batch_size), start=1):
                    first = opts.skip + self.stats.processed + 1
                    self.echo(f"Processing batch {batch_no} ({first} - {first + len(batch) - 1})...")
                    for record in batch:
                        result = writer.apply(record, self.mapper(record.native_id), opts.dry_run)
                        self.stats.record(result)
                    self.echo(progress_line(self.stats.processed, expected))

            self._enter(RunState.SUMMARIZING)
            for line in format_summary(self.stats, opts.dry_run):
                self.echo(line)
            self._enter(RunState.DONE)
            return self.stats
        except BaseException:
            self._enter(RunState.FAILED)
            raise
        finally:
            self._release(target, "target")
            self._release(source, "legacy")

    def _count(self, source: SourceStore) -> int:
        try:
            return source.count_eligible()
        except Exception as exc:
            # Only the displayed percentage depends on the count.
            logger.warning("Could not count eligible legacy users: %s", exc)
            return 0

    @staticmethod
    def _release(store: SourceStore | TargetSink | None, label: str) -> None:
        if store is None:
            return
        try:
            store.close()
        except Exception as exc:
            logger.warning("Closing %s store failed: %s", label, exc)


def _open_legacy_source(settings: MigrationSettings) -> LegacySource:
    return LegacySource.connect(settings.legacy_uri, database=settings.legacy_db, collection=settings.collection)


def _open_target_store(settings: MigrationSettings) -> TargetStore:
    return TargetStore.connect(settings.database_url)


def build_run(
    settings: MigrationSettings,
    options: MigrationOptions,
    *,
    echo: Callable[[str], None] = click.echo,
) -> MigrationRun:
    return MigrationRun(
        lambda: _open_legacy_source(settings),
        lambda: _open_target_store(settings),
        options,
        echo=echo,
    )


def _write_report_if_requested(
    report: Path | None,
    run: MigrationRun,
    started_at: datetime,
) -> None:
    if report is None:
        return
    path = write_report(
        report,
        run.stats,
        status="completed" if run.state is RunState.DONE else "failed",
        dry_run=run.options.dry_run,
        batch_size=run.options.batch_size,
        skip=run.options.skip,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
    )
    click.echo(f"Report written to {path}")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--dry-run", is_flag=True, default=False, help="Preview changes without writing to the target database.")
@click.option(
    "--batch",
    "batch_size",
    type=click.IntRange(min=1),
    default=DEFAULT_BATCH_SIZE,
    show_default=True,
    help="Process N users per batch (progress is printed after each batch).",
)
@click.option(
    "--skip",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Skip the first N eligible users (resume position).",
)
@click.option("--legacy-uri", default=None, help="Legacy MongoDB URI (default: MONGODB_URI).")
@click.option("--database-url", default=None, help="Target Postgres DSN (default: DATABASE_URL).")
@click.option("--legacy-db", default=None, help="Legacy database name (default: LEGACY_DB_NAME or the URI's database).")
@click.option("--collection", default=None, help="Legacy user collection (default: LEGACY_USERS_COLLECTION or 'users').")
@click.option("--locale", "default_locale", default=None, help="Locale for migrated users (default: MIGRATION_DEFAULT_LOCALE or 'zh').")
@click.option("--ensure-schema", is_flag=True, default=False, help="Create the user/account tables when missing.")
@click.option(
    "--report",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write a JSON report (stats and failed records) to this path.",
)
@click.option(
    "--env-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Load variables from this file instead of the nearest .env.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def cli(
    dry_run: bool,
    batch_size: int,
    skip: int,
    legacy_uri: str | None,
    database_url: str | None,
    legacy_db: str | None,
    collection: str | None,
    default_locale: str | None,
    ensure_schema: bool,
    report: Path | None,
    env_file: str | None,
    verbose: bool,
) -> None:
    """Migrate verified legacy users and their credentials.

    Behaviour:
        - Existing users (matched by lower-cased email) are skipped, so the
          command can be re-run safely.
        - `--dry-run` performs no writes but reports what would be migrated.
        - Exits 0 once the run completes, even when individual records failed;
          exits 1 on missing configuration or unreachable stores.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    load_env_file(env_file)
    try:
        settings = MigrationSettings.from_env(
            legacy_uri=legacy_uri,
            database_url=database_url,
            legacy_db=legacy_db,
            collection=collection,
            default_locale=default_locale,
        )
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    options = MigrationOptions(
        dry_run=dry_run,
        batch_size=batch_size,
        skip=skip,
        ensure_schema=ensure_schema,
        default_locale=settings.default_locale,
    )
    click.echo("=" * 60)
    click.echo("User Migration")
    click.echo("=" * 60)
    click.echo(f"Mode: {'DRY RUN (no changes will be made)' if dry_run else 'LIVE'}")
    click.echo(f"Batch size: {batch_size}")
    click.echo(f"Skip: {skip}")

    started_at = datetime.now(timezone.utc)
    run = build_run(settings, options)
    try:
        run.execute()
    except StoreConnectionError as exc:
        _write_report_if_requested(report, run, started_at)
        raise click.ClickException(f"Connection failed: {exc}") from exc
    except Exception as exc:
        _write_report_if_requested(report, run, started_at)
        click.echo(f"Migration failed: {exc}", err=True)
        raise click.Abort() from exc
    _write_report_if_requested(report, run, started_at)


if __name__ == "__main__":  # pragma: no cover
    cli()
