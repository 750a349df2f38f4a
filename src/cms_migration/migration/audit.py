"""CSV audit ledger written alongside each stage.

One row per processed primary record with selected payload fields plus
``migration_status`` and ``migration_action``.
"""

import csv
from pathlib import Path
from typing import Any

from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)

STATUS_COLUMNS = ["migration_status", "migration_action"]


class AuditLedger:
    """Buffered rows for ``<entity>_migration_backup.csv``.

    Args:
        path: Output CSV path
        fields: Payload fields recorded before the status columns
    """

    def __init__(self, path: str | Path, fields: list[str]):
        self.path = Path(path)
        self.fields = list(fields)
        self.rows: list[dict[str, Any]] = []

    @property
    def columns(self) -> list[str]:
        return self.fields + STATUS_COLUMNS

    def add(self, payload: dict[str, Any], status: str, action: str) -> None:
        """Append one row.

        Args:
            payload: Target payload; only the ledger's fields are kept
            status: ``success`` or ``failed``
            action: Upsert action or failure kind
        """
        row = {name: _cell(payload.get(name)) for name in self.fields}
        row["migration_status"] = status
        row["migration_action"] = action
        self.rows.append(row)

    def add_failure(self, identity: dict[str, Any], action: str = "exception") -> None:
        """Row for an item whose payload could not be built; derived fields stay blank."""
        self.add(identity, "failed", action)

    def write(self) -> Path:
        """Write all rows to the stage CSV, replacing any earlier file.

        Returns:
            Path of the written CSV
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=self.columns)
            writer.writeheader()
            writer.writerows(self.rows)
        logger.info("audit_ledger_written", path=str(self.path), rows=len(self.rows))
        return self.path


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return str(value)
    return value
