"""CLI commands for process definitions: show, validate."""

from __future__ import annotations

import json as json_mod
import sys
from pathlib import Path
from typing import Any

import click

from adoflow.cli_common import fail
from adoflow.workflows import (
    ProcessDefinition,
    WorkItemTypeDefinition,
    load_process,
    parse_work_item_type,
    validate_work_item_type,
)


def _type_to_dict(wit: WorkItemTypeDefinition) -> dict[str, Any]:
    return {
        "name": wit.name,
        "description": wit.description,
        "states": list(wit.states),
        "initial_state": wit.initial_state,
        "transitions": [
            {"from": t.from_state, "to": t.to_state, "requires_fields": list(t.requires_fields)} for t in wit.transitions
        ],
        "fields": [
            {
                "ref_name": f.ref_name,
                "name": f.name,
                "type": f.type,
                "allowed_values": list(f.allowed_values),
                "default": f.default,
                "required_at": list(f.required_at),
            }
            for f in wit.fields
        ],
    }


def _process_to_dict(process: ProcessDefinition) -> dict[str, Any]:
    return {
        "process": process.name,
        "version": process.version,
        "display_name": process.display_name,
        "description": process.description,
        "types": {name: _type_to_dict(wit) for name, wit in process.types.items()},
    }


@click.group()
def process() -> None:
    """Inspect and check process definitions for the local provider."""


@process.command("show")
@click.argument("name_or_path", default="agile")
@click.option("--type", "type_name", default=None, help="Show one work item type only")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def process_show(name_or_path: str, type_name: str | None, as_json: bool) -> None:
    """Show a built-in process (by name) or a process .json file."""
    try:
        definition = load_process(name_or_path)
    except ValueError as e:
        fail(str(e), as_json=as_json)

    types = definition.types
    if type_name is not None:
        wit = definition.get_type(type_name)
        if wit is None:
            fail(f"Unknown work item type: {type_name}", as_json=as_json)
        types = {type_name: wit}

    if as_json:
        data = _process_to_dict(definition)
        data["types"] = {name: _type_to_dict(wit) for name, wit in types.items()}
        click.echo(json_mod.dumps(data, indent=2, default=str))
        return

    click.echo(f"{definition.display_name} ({definition.name} v{definition.version})")
    for wit in types.values():
        click.echo(f"\n  {wit.name}: {' -> '.join(wit.states)}")
        click.echo("    Transitions:")
        for t in wit.transitions:
            req = f"  requires: {', '.join(t.requires_fields)}" if t.requires_fields else ""
            click.echo(f"      {t.from_state} -> {t.to_state}{req}")
        if wit.fields:
            click.echo("    Fields:")
            for f in wit.fields:
                at = f"  required at: {', '.join(f.required_at)}" if f.required_at else ""
                click.echo(f"      {f.ref_name} ({f.type}){at}")


@process.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def process_validate(path: Path, as_json: bool) -> None:
    """Check a process .json file; every type is reported, not just the first bad one."""
    try:
        raw = json_mod.loads(path.read_text())
    except (OSError, json_mod.JSONDecodeError) as e:
        fail(f"Could not read {path}: {e}", as_json=as_json)
    types_raw = raw.get("types") if isinstance(raw, dict) else None
    if not isinstance(types_raw, dict):
        fail(f"{path}: 'types' must be an object", as_json=as_json)

    report: dict[str, list[str]] = {}
    for type_name, type_raw in types_raw.items():
        try:
            report[type_name] = validate_work_item_type(parse_work_item_type(type_raw))
        except (ValueError, KeyError, TypeError) as e:
            report[type_name] = [f"unparseable: {e}"]

    ok = all(not errors for errors in report.values())
    if as_json:
        click.echo(json_mod.dumps({"valid": ok, "types": report}, indent=2))
    else:
        for type_name, errors in report.items():
            if errors:
                click.echo(f"  {type_name}: INVALID")
                for err in errors:
                    click.echo(f"    - {err}")
            else:
                click.echo(f"  {type_name}: ok")
        click.echo("Process is valid" if ok else "Process has errors")
    if not ok:
        sys.exit(1)


def register(cli: click.Group) -> None:
    """Register process commands with the CLI group."""
    cli.add_command(process)
