"""Shared CLI helpers.

Provides ``get_executor()``, ``get_local_provider()`` and
``parse_field_options()`` so that both the main ``cli.py`` and
``cli_commands/*.py`` modules can use them without circular imports.
"""

from __future__ import annotations

import json as json_mod
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from adoflow.config import ADOFLOW_DIR_NAME, find_adoflow_root, load_config
from adoflow.executor import TransitionExecutor
from adoflow.logging import setup_logging
from adoflow.session import ConfigurationError, build_executor
from adoflow.workflows import LocalWorkflowProvider


def get_executor() -> TransitionExecutor:
    """Load config from the nearest .adoflow/ (plus environment) and build an executor."""
    adoflow_dir: Path | None
    try:
        adoflow_dir = find_adoflow_root()
    except FileNotFoundError:
        adoflow_dir = None  # No .adoflow/ dir -- environment-only configuration, no log file
    else:
        setup_logging(adoflow_dir)
    try:
        return build_executor(load_config(), adoflow_dir=adoflow_dir)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo(f"Set the missing environment variables or run 'adoflow init' to create {ADOFLOW_DIR_NAME}/.", err=True)
        sys.exit(1)
    except ValueError as e:
        fail(str(e))


def get_local_provider(*, as_json: bool = False) -> LocalWorkflowProvider:
    """The configured local provider, exiting when the project talks to ADO instead."""
    provider = get_executor().provider
    if not isinstance(provider, LocalWorkflowProvider):
        fail(f"No local process configured; set \"process\" in {ADOFLOW_DIR_NAME}/config.json", as_json=as_json)
    return provider


def parse_field_options(fields: tuple[str, ...], *, as_json: bool = False) -> dict[str, str]:
    """Turn repeated ``--field ref=value`` options into a dict, exiting on bad input."""
    values: dict[str, str] = {}
    for f in fields:
        if "=" not in f:
            fail(f"Invalid field format: {f} (expected ref=value)", as_json=as_json)
        k, v = f.split("=", 1)
        values[k.strip()] = v
    return values


def fail(message: str, *, as_json: bool = False, code: str | None = None) -> NoReturn:
    """Report an error the way the CLI does everywhere, then exit 1."""
    if as_json:
        payload: dict[str, Any] = {"error": message}
        if code:
            payload["code"] = code
        click.echo(json_mod.dumps(payload))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)
