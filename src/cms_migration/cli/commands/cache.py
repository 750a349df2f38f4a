"""
Media cache commands.
"""

import click

from cms_migration.cli.context import MigrationContext
from cms_migration.cli.decorators import handle_errors, pass_context, requires_config
from cms_migration.cli.utils import format_count, print_stats
from cms_migration.reporting.error_log import ErrorLog


@click.group(name="cache")
def cache() -> None:
    """Inspect the transferred-media cache."""
    pass


@cache.command(name="stats")
@pass_context
@requires_config
@handle_errors
def stats(ctx: MigrationContext) -> None:
    """Show how many files the media cache holds and where it lives.

    Examples:

        cms-bridge cache stats --config config.yaml
    """
    image_cache = ctx.image_cache()
    error_log = ErrorLog(ctx.config.paths.image_error_log_path)
    print_stats(
        {
            "cache_file": image_cache.path,
            "cache_exists": image_cache.path.exists(),
            "transferred_files": format_count(len(image_cache)),
            "distinct_target_files": format_count(len(set(image_cache.values()))),
            "image_failures": format_count(len(error_log.read_lines())),
            "image_error_log": error_log.path if error_log.path.exists() else "-",
        },
        "Media Cache",
    )
