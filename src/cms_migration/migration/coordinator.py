"""Migration coordinator.

Runs the requested stages in dependency order against one StageContext.
Item failures never stop a run; a systemic failure (auth exhaustion, a
failed collection fetch) aborts the remaining stages.
"""

from cms_migration.client.exceptions import CMSMigrationError
from cms_migration.migration.stage import StageContext
from cms_migration.migration.stages import STAGE_ORDER, STAGES
from cms_migration.reporting.report import RunReporter
from cms_migration.utils.logging import get_logger, log_error

logger = get_logger(__name__)


def resolve_stage_names(requested: list[str] | None, enabled: dict[str, bool]) -> list[str]:
    """Order ``requested`` stages (or every enabled one) by dependency.

    Raises:
        ValueError: For an unknown stage name
    """
    unknown = [name for name in requested or [] if name not in STAGES]
    if unknown:
        raise ValueError(f"Unknown stage(s): {', '.join(unknown)}")

    if requested:
        return [name for name in STAGE_ORDER if name in requested]
    return [name for name in STAGE_ORDER if enabled.get(name, True)]


class MigrationCoordinator:
    """Coordinates the stages of one migration run."""

    def __init__(self, ctx: StageContext):
        self.ctx = ctx

    @property
    def reporter(self) -> RunReporter:
        return self.ctx.reporter

    async def run(self, stage_names: list[str]) -> RunReporter:
        """Run ``stage_names`` in order and return the reporter.

        Systemic failures are recorded on the reporter, not raised.
        """
        logger.info("migration_started", stages=stage_names)

        for stage_name in stage_names:
            for stage in STAGES[stage_name](self.ctx):
                try:
                    await stage.run()
                except CMSMigrationError as e:
                    self.reporter.record_systemic_failure(stage.label, e)
                    log_error(logger, e, "migration_aborted", stage=stage.label)
                    self.ctx.flush()
                    return self.reporter

            self.ctx.flush()

        logger.info("migration_completed", stages=stage_names)
        return self.reporter
