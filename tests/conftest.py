"""Shared fixtures: configuration, fake source and target platforms."""

from pathlib import Path

import pytest
from fakes import FakeSource, FakeTarget, make_config, no_sleep

from cms_migration.config import MigrationConfig
from cms_migration.migration.stage import StageContext
from cms_migration.reporting.report import RunReporter


@pytest.fixture
def config(tmp_path: Path) -> MigrationConfig:
    return make_config(tmp_path)


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def reporter(config: MigrationConfig) -> RunReporter:
    return RunReporter(config.paths.error_log_path)


@pytest.fixture
def stage_context_factory(config: MigrationConfig, source: FakeSource, target: FakeTarget):
    """Build StageContexts wired to the fake platforms (one per simulated run)."""

    def factory(reporter: RunReporter | None = None) -> StageContext:
        return StageContext.from_config(
            config,
            reporter=reporter or RunReporter(config.paths.error_log_path),
            source_transport=source.transport(),
            target_transport=target.transport(),
            sleep=no_sleep,
        )

    return factory
