"""CLI for adoflow.

Convention-based: discovers .adoflow/ by walking up from cwd; connection
settings can also come entirely from the environment.

Usage:
    adoflow init --organization acme --project Web   # Create .adoflow/config.json
    adoflow check-config                             # Show what is missing
    adoflow preview 42                               # Predict the next state
    adoflow move 42                                  # Move forward, prompting for fields
    adoflow move 42 -f Microsoft.VSTS.Common.ResolvedReason=Fixed --no-input
    adoflow process show agile                       # Show a process definition
    adoflow process validate my-process.json         # Check a process file
    adoflow items add Task --state Active            # Work item for a local process
    adoflow serve --port 8390                        # HTTP API
"""

from __future__ import annotations

import json as json_mod
import sys
from pathlib import Path
from typing import Any

import click

from adoflow import __version__
from adoflow.cli_commands import items as items_commands
from adoflow.cli_commands import process as process_commands
from adoflow.cli_common import fail, get_executor, parse_field_options
from adoflow.config import (
    ADOFLOW_DIR_NAME,
    DEFAULT_CONFIG,
    ProjectConfig,
    check_config,
    load_config,
    read_config,
    write_config,
)
from adoflow.errors import TransitionError, ValidationFailedError
from adoflow.executor import TransitionExecutor
from adoflow.models import Completed, FieldPrompt, NoTransition, Pending


def _prompt_for(prompt: FieldPrompt, *, err: bool) -> Any:
    """Ask for one field value on the terminal."""
    label = prompt.label if prompt.required else f"{prompt.label} (optional)"
    if prompt.kind == "picklist":
        return click.prompt(
            label,
            type=click.Choice(list(prompt.allowed_values)),
            default=prompt.default_value,
            err=err,
        )
    if prompt.kind == "identity":
        label = f"{label} (blank for you)"
    if prompt.default_value in (None, ""):
        return click.prompt(label, default="", show_default=False, err=err)
    return click.prompt(label, default=str(prompt.default_value), err=err)


def _finish_interactively(
    executor: TransitionExecutor,
    pending: Pending,
    values: dict[str, Any],
    *,
    no_input: bool,
    err: bool,
) -> dict[str, Any]:
    """Collect missing values and call finish, re-asking for a value it rejects."""
    collected = dict(values)
    while True:
        if not no_input:
            for prompt in pending.prompts:
                if prompt.ref_name not in collected:
                    collected[prompt.ref_name] = _prompt_for(prompt, err=err)
        try:
            outcome = executor.finish(pending.correlation_id, collected)
        except ValidationFailedError as e:
            if no_input:
                raise
            click.echo(f"Error: {e}", err=True)
            collected.pop(e.ref_name, None)
            continue
        return outcome.to_dict()  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="adoflow")
def cli() -> None:
    """adoflow -- move Azure DevOps work items through their workflow."""


@cli.command()
@click.option("--organization", default="", help="ADO organization name")
@click.option("--project", default="", help="ADO project name")
@click.option("--acting-user", default=None, help="Identity used when an Assigned To value is left blank")
@click.option("--process", "process_name", default=None, help="Local process (built-in name or .json file) instead of ADO")
def init(organization: str, project: str, acting_user: str | None, process_name: str | None) -> None:
    """Initialize .adoflow/ in the current directory."""
    cwd = Path.cwd()
    adoflow_dir = cwd / ADOFLOW_DIR_NAME

    if adoflow_dir.exists():
        click.echo(f"{ADOFLOW_DIR_NAME}/ already exists in {cwd}")
        config = read_config(adoflow_dir)
        click.echo(f"  Organization: {config.get('organization') or '(unset)'}")
        click.echo(f"  Project: {config.get('project') or '(unset)'}")
        return

    adoflow_dir.mkdir()
    config = ProjectConfig(**DEFAULT_CONFIG)
    config["organization"] = organization
    config["project"] = project
    config["acting_user"] = acting_user
    config["process"] = process_name
    write_config(adoflow_dir, config)

    click.echo(f"Initialized {ADOFLOW_DIR_NAME}/ in {cwd}")
    click.echo(f"  Organization: {organization or '(unset)'}")
    click.echo(f"  Project: {project or '(unset)'}")
    if process_name:
        click.echo(f"  Process: {process_name} (local provider)")
        click.echo("\nNext: adoflow items add Task")
        return
    click.echo("\nNext: export ADO_PAT=<token> && adoflow check-config")


@cli.command("check-config")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def check_config_cmd(as_json: bool) -> None:
    """Report missing connection settings (the PAT is masked)."""
    report = check_config(load_config())
    if as_json:
        click.echo(json_mod.dumps(report, indent=2))
    else:
        click.echo(f"Organization: {report['organization'] or '(missing)'}")
        click.echo(f"Project: {report['project'] or '(missing)'}")
        click.echo(f"Base URL: {report['base_url']}")
        click.echo(f"PAT: {report['pat'] or '(missing)'}")
        if report["process"]:
            click.echo(f"Process: {report['process']} (local provider)")
        if report["ok"]:
            click.echo("Configuration OK")
        else:
            click.echo(f"Missing: {', '.join(report['missing'])}", err=True)
    if not report["ok"]:
        sys.exit(1)


@cli.command()
@click.argument("work_item_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def preview(work_item_id: int, as_json: bool) -> None:
    """Show the state a work item would move to, without moving it."""
    executor = get_executor()
    try:
        entry = executor.preview(work_item_id)
    except TransitionError as e:
        fail(str(e), as_json=as_json, code=e.code)
    if as_json:
        click.echo(json_mod.dumps(entry.to_dict(), indent=2))
    elif entry.available:
        click.echo(f"Work item {work_item_id}: '{entry.current_state}' -> '{entry.target_state}'")
    else:
        click.echo(f"Work item {work_item_id}: no transition available from '{entry.current_state}'")


@cli.command()
@click.argument("work_item_id", type=int)
@click.option("--field", "-f", multiple=True, help="Field value as ref=value (repeatable)")
@click.option("--no-input", is_flag=True, help="Never prompt; fail if a required value is missing")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def move(work_item_id: int, field: tuple[str, ...], no_input: bool, as_json: bool) -> None:
    """Move a work item to its next state, prompting for required fields."""
    values = parse_field_options(field, as_json=as_json)
    executor = get_executor()
    try:
        result = executor.begin(work_item_id)
    except TransitionError as e:
        fail(str(e), as_json=as_json, code=e.code)

    if isinstance(result, NoTransition):
        if as_json:
            click.echo(json_mod.dumps(result.to_dict(), indent=2))
        else:
            click.echo(f"Work item {work_item_id}: no transition available from '{result.current_state}'")
        return
    if isinstance(result, Completed):
        if as_json:
            click.echo(json_mod.dumps(result.to_dict(), indent=2))
        else:
            click.echo(f"Moved work item {work_item_id} to '{result.target_state}'")
        return

    if not as_json:
        click.echo(
            f"Moving work item {work_item_id} '{result.current_state}' -> '{result.target_state}' "
            f"needs {len(result.prompts)} field(s)"
        )
    try:
        outcome = _finish_interactively(executor, result, values, no_input=no_input, err=as_json)
    except click.Abort:
        executor.cancel(result.correlation_id)
        click.echo("\nCancelled; work item unchanged", err=True)
        sys.exit(1)
    except TransitionError as e:
        executor.cancel(result.correlation_id)
        fail(str(e), as_json=as_json, code=e.code)

    if as_json:
        click.echo(json_mod.dumps(outcome, indent=2, default=str))
    else:
        click.echo(f"Moved work item {work_item_id} to '{outcome['target_state']}'")
        for ref, value in outcome["fields"].items():
            click.echo(f"  {ref} = {value}")


@cli.command()
@click.option("--port", default=None, type=int, help="Port (default: 8390)")
def serve(port: int | None) -> None:
    """Serve the transition API over HTTP on localhost."""
    from adoflow.server import DEFAULT_PORT
    from adoflow.server import main as server_main

    server_main(port=port or DEFAULT_PORT, executor=get_executor())


process_commands.register(cli)
items_commands.register(cli)


if __name__ == "__main__":
    cli()
