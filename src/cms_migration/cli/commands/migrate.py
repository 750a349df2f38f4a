"""
Migration command.

Runs one stage, several stages, or every enabled stage in dependency order
and always prints the run summary, even when a stage aborts.
"""

import asyncio
from pathlib import Path

import click

from cms_migration.cli.context import MigrationContext
from cms_migration.cli.decorators import handle_errors, pass_context, requires_config
from cms_migration.cli.utils import echo_info, echo_success, echo_warning
from cms_migration.config import MigrationConfig
from cms_migration.migration.coordinator import MigrationCoordinator, resolve_stage_names
from cms_migration.migration.stage import StageContext
from cms_migration.migration.stages import STAGE_ORDER
from cms_migration.reporting.report import RunReporter
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)


async def run_stages(
    config: MigrationConfig, reporter: RunReporter, stage_names: list[str]
) -> RunReporter:
    """Open a StageContext, run ``stage_names`` and close it again."""
    stage_ctx = StageContext.from_config(config, reporter=reporter)
    try:
        await stage_ctx.open()
        await MigrationCoordinator(stage_ctx).run(stage_names)
    finally:
        await stage_ctx.close()
    return reporter


@click.command(name="migrate")
@click.argument(
    "stages",
    nargs=-1,
    required=True,
    type=click.Choice([*STAGE_ORDER, "all"], case_sensitive=False),
)
@click.option(
    "--report",
    "report_path",
    type=click.Path(path_type=Path),
    help="Also write the run summary as JSON to this path",
)
@pass_context
@requires_config
@handle_errors
def migrate(ctx: MigrationContext, stages: tuple[str, ...], report_path: Path | None) -> None:
    """Migrate content from the source site to the target platform.

    Pass one or more stage names, or ``all`` for every stage enabled in the
    configuration. Stages always run in dependency order: taxonomies,
    roles, users, companies, projects.

    Examples:

        \b
        # Everything enabled in config.yaml
        cms-bridge migrate all --config config.yaml

        \b
        # Companies only (taxonomy and user maps must already exist)
        cms-bridge migrate companies --config config.yaml
    """
    config = ctx.config
    requested = [name.lower() for name in stages]
    stage_names = resolve_stage_names(
        None if "all" in requested else requested, config.stages.model_dump()
    )
    if not stage_names:
        echo_warning("No stages enabled; nothing to do")
        return

    echo_info(f"Running stages: {', '.join(stage_names)}")
    reporter = RunReporter(config.paths.error_log_path)

    try:
        asyncio.run(run_stages(config, reporter, stage_names))
    finally:
        reporter.print_summary()
        if report_path:
            reporter.write_json(report_path)

    if reporter.systemic_exception is not None:
        raise reporter.systemic_exception

    echo_success("Migration finished")
