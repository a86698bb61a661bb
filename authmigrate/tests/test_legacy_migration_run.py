"""
Batch orchestration: batching, progress output, state and resource release.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from authmigrate.errors import StoreConnectionError
from authmigrate.tests.utils.fake_stores import FakeCollection, InMemoryTargetStore, TrackingSource
from authmigrate.tools.legacy_migration import MigrationOptions, MigrationRun, RunState, batched, progress_line

BASE = datetime(2023, 1, 1, tzinfo=timezone.utc)


def _docs(count: int, *, start: int = 0) -> list[dict]:
    return [
        {
            "_id": f"id{i:03d}",
            "email": f"user{i}@x.com",
            "verified": True,
            "createdAt": BASE + timedelta(minutes=i),
        }
        for i in range(start, start + count)
    ]


def _run(source, target, **opts) -> tuple[MigrationRun, list[str]]:
    lines: list[str] = []
    run = MigrationRun(lambda: source, lambda: target, MigrationOptions(**opts), echo=lines.append)
    return run, lines


def test_batched_splits_lazily() -> None:
    assert list(batched(range(5), 2)) == [[0, 1], [2, 3], [4]]
    assert list(batched([], 3)) == []
    with pytest.raises(ValueError):
        list(batched([1], 0))


def test_progress_line_formats_percentage() -> None:
    assert progress_line(2, 4) == "  Progress: 50.0% (2/4)"
    assert progress_line(0, 0) == "  Progress: 100.0% (0/0)"


def test_options_validate_bounds() -> None:
    with pytest.raises(ValueError):
        MigrationOptions(batch_size=0)
    with pytest.raises(ValueError):
        MigrationOptions(skip=-1)


def test_run_processes_all_records_in_batches() -> None:
    source = TrackingSource(FakeCollection(_docs(5)))
    target = InMemoryTargetStore()
    run, lines = _run(source, target, batch_size=2)

    stats = run.execute()

    assert run.state is RunState.DONE
    assert stats.total == 5
    assert stats.processed == 5
    assert stats.migrated == 5
    assert target.count_users() == 5
    assert [l for l in lines if l.startswith("Processing batch")] == [
        "Processing batch 1 (1 - 2)...",
        "Processing batch 2 (3 - 4)...",
        "Processing batch 3 (5 - 5)...",
    ]
    assert "  Progress: 40.0% (2/5)" in lines
    assert "  Progress: 100.0% (5/5)" in lines
    assert source.closed and target.closed


def test_run_records_are_mapped_deterministically() -> None:
    target = InMemoryTargetStore()
    run, _ = _run(TrackingSource(FakeCollection(_docs(2))), target)
    run.execute()
    assert set(target.users) == {"migrated_id000", "migrated_id001"}


def test_errors_do_not_stop_the_run() -> None:
    docs = _docs(3)
    docs[1]["email"] = None
    target = InMemoryTargetStore()
    target.fail_user_insert_for.add("user2@x.com")
    run, lines = _run(TrackingSource(FakeCollection(docs)), target, batch_size=10)

    stats = run.execute()

    assert run.state is RunState.DONE
    assert (stats.migrated, stats.errors) == (1, 2)
    assert [f.reason for f in stats.failures][0] == "missing_email"
    assert "Errors:          2" in lines


def test_skip_resumes_after_offset() -> None:
    source = TrackingSource(FakeCollection(_docs(5)))
    target = InMemoryTargetStore()
    run, lines = _run(source, target, skip=3, batch_size=10)

    stats = run.execute()

    assert source.streamed == ["id003", "id004"]
    assert stats.processed == 2
    assert "Processing batch 1 (4 - 5)..." in lines
    assert "  Progress: 100.0% (2/2)" in lines


def test_dry_run_never_touches_target_schema_or_rows() -> None:
    target = InMemoryTargetStore()
    run, lines = _run(TrackingSource(FakeCollection(_docs(3))), target, dry_run=True, ensure_schema=True)

    stats = run.execute()

    assert stats.migrated == 3
    assert target.count_users() == 0
    assert target.schema_ensured is False
    assert "This was a DRY RUN. No changes were made to the database." in lines


def test_ensure_schema_runs_in_live_mode() -> None:
    target = InMemoryTargetStore()
    run, _ = _run(TrackingSource(FakeCollection([])), target, ensure_schema=True)
    run.execute()
    assert target.schema_ensured is True


def test_target_connection_failure_releases_source() -> None:
    source = TrackingSource(FakeCollection(_docs(1)))

    def failing_target():
        raise StoreConnectionError("target", "connection refused")

    run = MigrationRun(lambda: source, failing_target, echo=lambda _line: None)

    with pytest.raises(StoreConnectionError):
        run.execute()
    assert run.state is RunState.FAILED
    assert source.closed is True
    assert source.streamed == []


class ExplodingSource(TrackingSource):
    def stream_records(self, skip: int = 0, **kwargs):
        yield from super().stream_records(skip, **kwargs)
        raise RuntimeError("cursor lost")


def test_stream_failure_fails_run_and_closes_stores() -> None:
    source = ExplodingSource(FakeCollection(_docs(2)))
    target = InMemoryTargetStore()
    run, _ = _run(source, target, batch_size=2)

    with pytest.raises(RuntimeError, match="cursor lost"):
        run.execute()

    assert run.state is RunState.FAILED
    assert run.stats.processed == 2
    assert source.closed and target.closed


class UncountableSource(TrackingSource):
    def count_eligible(self, query=None) -> int:
        raise RuntimeError("count timed out")


def test_count_failure_is_not_fatal() -> None:
    target = InMemoryTargetStore()
    run, _ = _run(UncountableSource(FakeCollection(_docs(2))), target)
    stats = run.execute()
    assert stats.total == 0
    assert stats.migrated == 2


def test_run_cannot_be_reused() -> None:
    run, _ = _run(TrackingSource(FakeCollection([])), InMemoryTargetStore())
    run.execute()
    with pytest.raises(RuntimeError):
        run.execute()
