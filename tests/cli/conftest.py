"""Fixtures for CLI interface tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

import adoflow.cli as cli_module
from adoflow.config import ADOFLOW_DIR_NAME, write_config
from adoflow.executor import TransitionExecutor


@pytest.fixture
def cli_in_project(
    adoflow_project: Path,
    cli_runner: CliRunner,
    executor: TransitionExecutor,
    monkeypatch: pytest.MonkeyPatch,
) -> tuple[CliRunner, TransitionExecutor]:
    """Run commands from an adoflow project, with the executor backed by the local agile provider."""
    monkeypatch.chdir(adoflow_project)
    monkeypatch.setattr(cli_module, "get_executor", lambda: executor)
    return cli_runner, executor


@pytest.fixture
def local_project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """A project configured for the built-in agile process, with cwd set to it.

    Commands here build the real executor, which attaches a file handler to
    the ``adoflow`` logger; it is removed afterwards.
    """
    adoflow_dir = tmp_path / ADOFLOW_DIR_NAME
    adoflow_dir.mkdir()
    write_config(adoflow_dir, {"process": "agile", "acting_user": "dev@example.com"})
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    logger = logging.getLogger("adoflow")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
