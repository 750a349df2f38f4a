"""Run reporting.

This module tracks per-stage outcome counters, appends item failures to the
run error log and renders the end-of-run summary.
"""

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from cms_migration.migration.models import UpsertAction
from cms_migration.reporting.error_log import ErrorLog
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StageStats:
    """Outcome counters for one stage."""

    name: str
    created: int = 0
    skipped: int = 0
    failed: int = 0
    secondary: Counter = field(default_factory=Counter)
    systemic_error: str | None = None

    @property
    def processed(self) -> int:
        return self.created + self.skipped + self.failed

    @property
    def secondary_total(self) -> int:
        return sum(self.secondary.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "secondary": dict(self.secondary),
            "systemic_error": self.systemic_error,
        }


class RunReporter:
    """Collects outcome counters for a migration run.

    Item failures are appended to ``migration_errors.log`` as they happen
    and never stop the run. A systemic failure (auth exhaustion, failed
    initial fetch) is recorded per stage and kept as
    :attr:`systemic_exception` so the CLI can exit non-zero.
    """

    def __init__(self, error_log_path: str | Path, console: Console | None = None):
        self.error_log = ErrorLog(error_log_path)
        self.console = console or Console()
        self.stages: dict[str, StageStats] = {}
        self.started_at = datetime.now(UTC)
        self.finished_at: datetime | None = None
        self.systemic_exception: BaseException | None = None

    def stage(self, name: str) -> StageStats:
        """Counters for stage ``name``, created on first use."""
        if name not in self.stages:
            self.stages[name] = StageStats(name=name)
        return self.stages[name]

    def record(self, stage: str, action: UpsertAction) -> None:
        """Count one upsert outcome for ``stage``."""
        stats = self.stage(stage)
        if action is UpsertAction.CREATED:
            stats.created += 1
        elif action is UpsertAction.SKIPPED:
            stats.skipped += 1
        else:
            stats.failed += 1

    def record_secondary(self, stage: str, kind: str, count: int = 1) -> None:
        """Count secondary records (contacts, gallery items, junction rows...)."""
        if count:
            self.stage(stage).secondary[kind] += count

    def record_failure(self, entity: str, message: str, exc: BaseException | None = None) -> None:
        """Append an item failure to the error log."""
        logger.error("item_failed", entity=entity, message=message, error=str(exc) if exc else None)
        self.error_log.append(entity, message, exc)

    def record_systemic_failure(self, stage: str, exc: BaseException) -> None:
        """Record a failure that aborted ``stage``."""
        self.stage(stage).systemic_error = str(exc)
        self.systemic_exception = exc
        logger.error("stage_failed", stage=stage, error=str(exc))
        self.error_log.append_block(f"{stage.upper()} MIGRATION FAILED", exc)

    @property
    def has_systemic_failure(self) -> bool:
        return any(stats.systemic_error for stats in self.stages.values())

    def summary(self) -> dict[str, Any]:
        """Run totals and per-stage stats as plain data for the JSON report.

        Returns:
            Dictionary with timestamps, duration, totals and ``stages``
        """
        finished = self.finished_at or datetime.now(UTC)
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": finished.isoformat(),
            "duration_seconds": (finished - self.started_at).total_seconds(),
            "stages": {name: stats.to_dict() for name, stats in self.stages.items()},
            "totals": {
                "created": sum(s.created for s in self.stages.values()),
                "skipped": sum(s.skipped for s in self.stages.values()),
                "failed": sum(s.failed for s in self.stages.values()),
                "secondary": sum(s.secondary_total for s in self.stages.values()),
            },
            "systemic_failure": self.has_systemic_failure,
        }

    def write_json(self, output_path: str | Path) -> None:
        """Save the run summary as JSON."""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.summary(), indent=2, default=str))
        logger.info("json_report_saved", path=str(path))

    def print_summary(self) -> None:
        """Render the run summary table."""
        self.finished_at = self.finished_at or datetime.now(UTC)

        table = Table(title="Migration Summary", show_lines=False)
        table.add_column("Stage", style="cyan")
        table.add_column("Created", justify="right", style="green")
        table.add_column("Skipped", justify="right", style="yellow")
        table.add_column("Failed", justify="right", style="red")
        table.add_column("Secondary", justify="left")
        table.add_column("Status")

        for stats in self.stages.values():
            secondary = ", ".join(f"{kind}: {n}" for kind, n in sorted(stats.secondary.items()))
            status = (
                f"[red]FAILED[/red] {stats.systemic_error}" if stats.systemic_error else "[green]OK"
            )
            table.add_row(
                stats.name,
                str(stats.created),
                str(stats.skipped),
                str(stats.failed),
                secondary or "-",
                status,
            )

        self.console.print(table)

        if any(stats.failed for stats in self.stages.values()) or self.has_systemic_failure:
            self.console.print(f"[yellow]See {self.error_log.path} for failure details[/yellow]")
