"""CLI commands for the local process's work items: add, list."""

from __future__ import annotations

import json as json_mod
from dataclasses import asdict

import click

from adoflow.cli_common import fail, get_local_provider, parse_field_options


@click.group()
def items() -> None:
    """Work items of the local process (set "process" in .adoflow/config.json)."""


@items.command("add")
@click.argument("work_item_type")
@click.option("--state", default=None, help="Initial state (default: the type's initial state)")
@click.option("--id", "work_item_id", default=None, type=int, help="Explicit work item id")
@click.option("--field", "-f", multiple=True, help="Field value as ref=value (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def items_add(
    work_item_type: str,
    state: str | None,
    work_item_id: int | None,
    field: tuple[str, ...],
    as_json: bool,
) -> None:
    """Create a work item."""
    values = parse_field_options(field, as_json=as_json)
    provider = get_local_provider(as_json=as_json)
    try:
        item = provider.add_work_item(work_item_type, state=state, fields=values, work_item_id=work_item_id)
    except ValueError as e:
        fail(str(e), as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(asdict(item), indent=2, default=str))
    else:
        click.echo(f"Created {item.work_item_type} {item.id} in state '{item.state}'")


@items.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def items_list(as_json: bool) -> None:
    """List work items with their state and revision."""
    provider = get_local_provider(as_json=as_json)
    listed = provider.list_items()
    if as_json:
        click.echo(json_mod.dumps([asdict(i) for i in listed], indent=2, default=str))
        return
    if not listed:
        click.echo("No work items")
        return
    for item in listed:
        click.echo(f"  {item.id:>5}  {item.work_item_type:<12} {item.state:<10} rev {item.rev}")


def register(cli: click.Group) -> None:
    """Register work item commands with the CLI group."""
    cli.add_command(items)
