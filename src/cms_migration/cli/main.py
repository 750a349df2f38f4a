"""
cms-bridge command line.

Entry point for migrating JSON:API content into a collection API and for
inspecting the state a run leaves behind.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from cms_migration import __version__
from cms_migration.cli.commands import cache as cache_commands
from cms_migration.cli.commands import config as config_commands
from cms_migration.cli.commands import mapping as mapping_commands
from cms_migration.cli.commands import migrate as migrate_commands
from cms_migration.cli.context import MigrationContext
from cms_migration.utils.logging import configure_logging, get_logger

# ${VAR} references in the YAML resolve against .env as well as the shell
load_dotenv()

logger = get_logger(__name__)

DEFAULT_LOG_FILE = Path("logs/migration.log")


@click.group()
@click.version_option(version=__version__, prog_name="cms-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="CMS_BRIDGE_CONFIG",
    help="YAML configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    envvar="CMS_BRIDGE_LOG_LEVEL",
    help="Console log level; the log file always records DEBUG",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_LOG_FILE,
    show_default=True,
    envvar="CMS_BRIDGE_LOG_FILE",
    help="JSON-lines log file",
)
@click.pass_context
def cli(ctx: click.Context, config: Path | None, log_level: str, log_file: Path) -> None:
    """cms-bridge - migrate JSON:API content into a collection API.

    Stages run in dependency order: taxonomies, roles, users, companies, projects.
    Re-running is safe; records already present on the target are skipped.

    Examples:

        \b
        cms-bridge config validate --config config.yaml
        cms-bridge migrate all --config config.yaml
        cms-bridge migrate companies --config config.yaml
        cms-bridge mapping show company --config config.yaml
    """
    configure_logging(level=log_level, log_file=log_file)
    ctx.obj = MigrationContext(config_path=config, log_level=log_level, log_file=log_file)
    logger.debug("cli_started", config=str(config) if config else None, log_level=log_level)


cli.add_command(config_commands.config)
cli.add_command(migrate_commands.migrate)
cli.add_command(mapping_commands.mapping)
cli.add_command(cache_commands.cache)


def main() -> int:
    """Run the CLI and return its exit code."""
    try:
        # outside standalone mode click hands back the code of an Exit raised by a command
        result = cli(standalone_mode=False)
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:
        logger.error("cli_crashed", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1
    return result if isinstance(result, int) else 0


if __name__ == "__main__":
    sys.exit(main())
