"""
Command decorators: MigrationContext injection, configuration loading and
exception-to-exit-code translation.
"""

import functools
from collections.abc import Callable
from typing import NamedTuple

import click
import httpx

from cms_migration.cli.context import MigrationContext
from cms_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthExhaustedError,
    ConfigurationError,
    NetworkError,
)
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)


class ExitRule(NamedTuple):
    errors: tuple[type[BaseException], ...]
    code: int
    label: str
    hint: str | None


# First match wins; anything else exits 1.
EXIT_RULES: tuple[ExitRule, ...] = (
    ExitRule(
        (ConfigurationError,),
        2,
        "Configuration Error",
        "Check the configuration file and the environment variables it references.",
    ),
    ExitRule(
        (AuthenticationError, AuthExhaustedError),
        3,
        "Authentication Error",
        "Verify the source and target credentials in your configuration.",
    ),
    ExitRule((APIError, NetworkError, httpx.HTTPError), 4, "API Error", None),
)


def pass_context(f: Callable) -> Callable:
    """Call ``f`` with the MigrationContext stored on the click context.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: MigrationContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        return f(click_ctx.obj, *args, **kwargs)

    return wrapper


def exit_code_for(error: BaseException) -> tuple[int, str, str | None]:
    for rule in EXIT_RULES:
        if isinstance(error, rule.errors):
            return rule.code, rule.label, rule.hint
    return 1, "Unexpected Error", "Check logs/migration.log for the traceback."


def handle_errors(f: Callable) -> Callable:
    """
    Turn migration errors into a message on stderr and an exit code.

    Exit codes:
        0: Success
        1: Unexpected error
        2: Configuration error
        3: Source or target authentication failed
        4: API or network error (including a failed collection fetch)
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (click.exceptions.Exit, click.ClickException):
            raise
        except Exception as e:
            code, label, hint = exit_code_for(e)
            logger.error(
                "command_failed",
                command=f.__name__,
                exit_code=code,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=code == 1,
            )
            click.echo(f"{label}: {e}", err=True)
            status_code = getattr(e, "status_code", None)
            if status_code:
                click.echo(f"\nResponse status: {status_code}", err=True)
            if hint:
                click.echo(f"\n{hint}", err=True)
            raise click.exceptions.Exit(code) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """Exit 2 unless a configuration file was given and loads cleanly."""

    @functools.wraps(f)
    def wrapper(ctx: MigrationContext, *args, **kwargs):
        if ctx.config_path is None:
            click.echo(
                "Error: Configuration file required. Use --config option or set CMS_BRIDGE_CONFIG.",
                err=True,
            )
            raise click.exceptions.Exit(2)

        try:
            ctx.config
        except ConfigurationError as e:
            click.echo(f"Error loading configuration: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        return f(ctx, *args, **kwargs)

    return wrapper
