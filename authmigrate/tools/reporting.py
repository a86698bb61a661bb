"""Outcome tally and summary output for a migration run."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from .migration_writer import Outcome, RecordResult

RULE = "=" * 60


@dataclass
class MigrationStats:
    total: int = 0
    processed: int = 0
    migrated: int = 0
    skipped: int = 0
    updated: int = 0
    errors: int = 0
    failures: list[RecordResult] = field(default_factory=list)

    def record(self, result: RecordResult) -> None:
        self.processed += 1
        if result.outcome is Outcome.MIGRATED:
            self.migrated += 1
        elif result.outcome is Outcome.SKIPPED:
            self.skipped += 1
        elif result.outcome is Outcome.UPDATED:
            self.updated += 1
        else:
            self.errors += 1
            self.failures.append(result)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "updated": self.updated,
            "errors": self.errors,
        }


def format_summary(stats: MigrationStats, dry_run: bool) -> list[str]:
    lines = [
        RULE,
        "Migration Summary",
        RULE,
        f"Total users:     {stats.total}",
        f"Migrated:        {stats.migrated}",
        f"Skipped:         {stats.skipped}",
        f"Updated:         {stats.updated}",
        f"Errors:          {stats.errors}",
        RULE,
    ]
    if dry_run:
        lines.append("This was a DRY RUN. No changes were made to the database.")
        lines.append("Run without --dry-run to perform the actual migration.")
    return lines


def failure_to_dict(result: RecordResult) -> Dict[str, Any]:
    data = asdict(result)
    data["outcome"] = result.outcome.value
    return data


def write_report(
    path: Path,
    stats: MigrationStats,
    *,
    status: str,
    dry_run: bool,
    batch_size: int,
    skip: int,
    started_at: datetime,
    finished_at: datetime,
) -> Path:
    """Write a JSON report for manual reconciliation of failed records.

    Connection strings are deliberately not part of the report.
    """
    report = {
        "started_at": started_at.isoformat(),
        "finished_at": finished_at.isoformat(),
        "status": status,
        "mode": "dry-run" if dry_run else "live",
        "batch_size": batch_size,
        "skip": skip,
        "stats": stats.as_dict(),
        "failures": [failure_to_dict(r) for r in stats.failures],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(report, fh, indent=2)
    return path


__all__ = ["MigrationStats", "format_summary", "write_report", "failure_to_dict"]
