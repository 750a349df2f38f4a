"""
Terminal output helpers for the cms-bridge commands.

Status lines go through click so they honour ``NO_COLOR`` and test runners;
tables are rendered with rich.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import click
from rich.console import Console
from rich.table import Table

console = Console()

# kind -> (marker, colour)
_STATUS_STYLES: dict[str, tuple[str, str]] = {
    "success": ("✓", "green"),
    "error": ("✗", "red"),
    "warning": ("⚠", "yellow"),
    "info": ("ℹ", "blue"),
}


def _echo(kind: str, message: str, err: bool = False) -> None:
    marker, colour = _STATUS_STYLES[kind]
    click.secho(f"{marker} {message}", fg=colour, err=err)


def echo_success(message: str) -> None:
    _echo("success", message)


def echo_error(message: str) -> None:
    """Errors go to stderr."""
    _echo("error", message, err=True)


def echo_warning(message: str) -> None:
    _echo("warning", message)


def echo_info(message: str) -> None:
    _echo("info", message)


def format_count(count: int) -> str:
    """``1234567`` -> ``1,234,567``."""
    return f"{count:,}"


def print_table(title: str, columns: list[str], rows: Iterable[Iterable[Any]]) -> None:
    """Render ``rows`` under ``columns``; the first column holds the row key."""
    table = Table(title=title)
    for position, column in enumerate(columns):
        table.add_column(column, style="cyan" if position == 0 else None, overflow="fold")
    for row in rows:
        table.add_row(*("-" if cell is None else str(cell) for cell in row))
    console.print(table)


def print_stats(stats: Mapping[str, Any], title: str) -> None:
    """Render ``snake_case_name -> value`` pairs as a Metric/Value table."""
    print_table(
        title,
        ["Metric", "Value"],
        ((name.replace("_", " ").title(), value) for name, value in stats.items()),
    )
