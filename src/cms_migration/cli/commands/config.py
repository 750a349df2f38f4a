"""
Configuration management commands.

This module provides commands for validating the migration configuration.
"""

import asyncio

import click

from cms_migration.cli.context import MigrationContext
from cms_migration.cli.decorators import handle_errors, pass_context, requires_config
from cms_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from cms_migration.client.credentials import CredentialBroker
from cms_migration.client.exceptions import ConfigurationError
from cms_migration.client.target_client import TargetClient
from cms_migration.config import MigrationConfig
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Authenticate against the source and target platforms",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext, check_connectivity: bool) -> None:
    """Validate migration configuration.

    Checks that credentials are present for at least one source strategy
    and for the target, and that the state directories can be created.
    With --check-connectivity it also authenticates against both sides.

    Examples:

        cms-bridge config validate --config config.yaml

        cms-bridge config validate --config config.yaml --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path}")
    config = ctx.config

    click.echo()
    _display_config_summary(config)

    click.echo()
    echo_info("Validating paths...")
    _validate_paths(config)

    echo_info("Validating credentials...")
    _validate_credentials(config)

    if check_connectivity:
        click.echo()
        echo_info("Testing connectivity...")
        asyncio.run(_test_connectivity(config))

    click.echo()
    echo_success("Configuration is valid!")


def _display_config_summary(config: MigrationConfig) -> None:
    enabled = [name for name, on in config.stages.model_dump().items() if on]
    rows = [
        ["Source URL", config.source.url + config.source.api_path],
        ["Target URL", config.target.url],
        ["CSV / mapping directory", config.paths.csv_dir],
        ["Logs directory", config.paths.logs_dir],
        ["Page limit", config.performance.page_limit],
        ["Page delay (s)", config.performance.page_delay],
        ["Rate limit (req/s)", config.performance.rate_limit],
        ["Enabled stages", ", ".join(enabled) or "-"],
    ]
    print_table("Configuration Summary", ["Setting", "Value"], rows)


def _validate_paths(config: MigrationConfig) -> None:
    for directory in (config.paths.csv_path, config.paths.logs_path):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            echo_error(f"Cannot create directory: {directory}")
            raise ConfigurationError(f"Failed to create directory {directory}: {e}") from e
        echo_success(f"Directory ready: {directory}")


def _validate_credentials(config: MigrationConfig) -> None:
    broker = CredentialBroker(config.source)
    strategies = [s.name for s in broker.strategies if s.is_configured()]
    if not strategies:
        raise ConfigurationError(
            "No usable source credentials: set username/password or session_cookie"
        )
    echo_success(f"Source auth strategies: {', '.join(strategies)}")

    target = config.target
    if target.static_token:
        echo_success("Target auth: static token")
    else:
        echo_success("Target auth: email/password login")

    if not config.default_uploader:
        echo_warning("default_uploader not set; unmapped file owners stay empty")


async def _test_connectivity(config: MigrationConfig) -> None:
    broker = CredentialBroker(config.source, rate_limit=config.performance.rate_limit)
    target = TargetClient(config.target, rate_limit=config.performance.rate_limit)
    try:
        client = await broker.get_authenticated_client()
        echo_success(f"Source authenticated with {client.strategy}")
        await target.ensure_authenticated()
        echo_success("Target authenticated")
    finally:
        await broker.close()
        await target.close()
