"""Shared pytest fixtures for adoflow tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from adoflow.config import (
    ADOFLOW_DIR_NAME,
    ENV_ACTING_USER,
    ENV_BASE_URL,
    ENV_ORGANIZATION,
    ENV_PAT,
    ENV_PROCESS,
    ENV_PROJECT,
    write_config,
)
from adoflow.executor import TransitionExecutor
from adoflow.models import NextState
from adoflow.registry import CorrelationRegistry
from adoflow.workflows import LocalWorkflowProvider, ProcessDefinition, load_process
from tests._fakes import FakeClock, ScriptedProvider, resolved_reason_spec


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real ADO settings out of every test."""
    for var in (ENV_ORGANIZATION, ENV_PAT, ENV_PROJECT, ENV_BASE_URL, ENV_ACTING_USER, ENV_PROCESS):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def agile() -> ProcessDefinition:
    return load_process("agile")


@pytest.fixture
def local_provider(agile: ProcessDefinition) -> LocalWorkflowProvider:
    """Agile process with a representative set of work items.

    - 42: Task, Active (next: Resolved, needs ResolvedReason)
    - 7: Task, Resolved (next: Closed, no fields)
    - 9: Task, Closed (no next state)
    - 12: User Story, New (next: Active, needs StoryPoints)
    """
    provider = LocalWorkflowProvider(agile)
    provider.add_work_item("Task", state="Active", work_item_id=42)
    provider.add_work_item("Task", state="Resolved", work_item_id=7)
    provider.add_work_item("Task", state="Closed", work_item_id=9)
    provider.add_work_item("User Story", state="New", work_item_id=12)
    return provider


@pytest.fixture
def executor(local_provider: LocalWorkflowProvider, clock: FakeClock) -> TransitionExecutor:
    return TransitionExecutor(local_provider, acting_user="dev@example.com", clock=clock)


@pytest.fixture
def scripted() -> ScriptedProvider:
    """Provider with item 42 (Active -> Resolved, picklist) and item 7 (Resolved -> Closed, no fields)."""
    provider = ScriptedProvider()
    provider.add(42, "Active", NextState(target_state="Resolved", required_fields=(resolved_reason_spec(),)))
    provider.add(7, "Resolved", NextState(target_state="Closed"))
    provider.add(9, "Closed", None)
    return provider


@pytest.fixture
def scripted_executor(scripted: ScriptedProvider, clock: FakeClock) -> TransitionExecutor:
    return TransitionExecutor(
        scripted,
        registry=CorrelationRegistry(clock=clock),
        acting_user="dev@example.com",
        clock=clock,
    )


@pytest.fixture
def adoflow_project(tmp_path: Path) -> Path:
    """A tmp directory set up as an adoflow project (.adoflow/ with config).

    Returns the project root (parent of .adoflow/).
    """
    adoflow_dir = tmp_path / ADOFLOW_DIR_NAME
    adoflow_dir.mkdir()
    write_config(adoflow_dir, {"organization": "acme", "project": "Web", "acting_user": "dev@example.com"})
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def chdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    monkeypatch.chdir(tmp_path)
    yield tmp_path
