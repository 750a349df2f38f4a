"""Append-only plain-text error logs (``migration_errors.log``, ``image_errors.log``)."""

import traceback
from datetime import UTC, datetime
from pathlib import Path


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class ErrorLog:
    """Append-only log file; the parent directory is created on first write."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _append(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(text)

    def append(self, entity: str, message: str, exc: BaseException | None = None) -> None:
        """Write ``timestamp - entity - message`` followed by the traceback, if any."""
        line = f"{_timestamp()} - {entity} - {message}"
        if exc is not None:
            line += f": {exc}"
        line += "\n"
        if exc is not None and exc.__traceback__ is not None:
            line += "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._append(line)

    def append_fields(self, **fields: object) -> None:
        """Write one ``timestamp key=value ...`` line."""
        parts = " ".join(f"{key}={value!r}" for key, value in fields.items())
        self._append(f"{_timestamp()} {parts}\n")

    def append_block(self, title: str, exc: BaseException) -> None:
        """Write a ``=== title ===`` block with timestamp, message and traceback."""
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._append(f"\n\n=== {title} ===\n{_timestamp()}\n{exc}\n{trace}\n")

    def read_lines(self) -> list[str]:
        """Lines written so far; empty when the log does not exist yet."""
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()
