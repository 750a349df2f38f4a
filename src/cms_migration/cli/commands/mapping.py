"""
Identity map inspection commands.
"""

import json

import click

from cms_migration.cli.context import MigrationContext
from cms_migration.cli.decorators import handle_errors, pass_context, requires_config
from cms_migration.cli.utils import echo_info, echo_warning, format_count, print_table


@click.group(name="mapping")
def mapping() -> None:
    """Inspect ``<entity>_mapping.json`` identity maps."""
    pass


@mapping.command(name="show")
@click.argument("entity")
@click.option("--limit", type=int, default=50, show_default=True, help="Rows to display")
@click.option("--json", "as_json", is_flag=True, help="Print the whole map as JSON")
@pass_context
@requires_config
@handle_errors
def show(ctx: MigrationContext, entity: str, limit: int, as_json: bool) -> None:
    """Show the source -> target id map for ENTITY (e.g. company, users, countries).

    Examples:

        cms-bridge mapping show company --config config.yaml

        cms-bridge mapping show regions --json --config config.yaml
    """
    store = ctx.identity_store()
    entries = store.entries(entity)
    if not entries:
        echo_warning(f"No mappings for '{entity}' in {store.path_for(entity)}")
        return

    if as_json:
        click.echo(json.dumps(entries, indent=2))
        return

    echo_info(f"{format_count(len(entries))} mappings in {store.path_for(entity)}")
    rows = [[source, target] for source, target in list(entries.items())[:limit]]
    print_table(f"{entity} mappings", ["Source id", "Target id"], rows)
    if len(entries) > limit:
        click.echo(f"... {format_count(len(entries) - limit)} more")
