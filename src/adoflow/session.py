"""Composition root: build a ready-to-use executor from configuration."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from adoflow.ado import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS, AdoWorkflowProvider
from adoflow.config import ITEMS_FILENAME, ProjectConfig, check_config, get_pat
from adoflow.executor import TransitionExecutor
from adoflow.preview import DEFAULT_TTL_SECONDS
from adoflow.provider import WorkflowRulesProvider
from adoflow.registry import CorrelationRegistry
from adoflow.workflows import LocalWorkflowProvider, load_process

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Connection settings are incomplete."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing configuration: {', '.join(missing)}")


def build_local_provider(process: str, adoflow_dir: Path | None = None) -> LocalWorkflowProvider:
    """Local provider for a built-in process name or a process ``.json`` file.

    A relative file path is taken from the project root (the parent of
    ``.adoflow/``). Work items are kept in ``.adoflow/items.json``; without
    an ``.adoflow/`` directory they live in memory for this process only.

    Raises:
        ValueError: Unknown process, unreadable process file, or corrupt store.
    """
    source: str | Path = process
    if process.endswith(".json") and adoflow_dir is not None and not Path(process).is_absolute():
        source = adoflow_dir.parent / process
    store_path = adoflow_dir / ITEMS_FILENAME if adoflow_dir is not None else None
    if store_path is None:
        logger.warning("No .adoflow/ directory; local work items will not be saved")
    return LocalWorkflowProvider(load_process(source), store_path=store_path)


def build_provider(
    config: ProjectConfig,
    environ: dict[str, str] | None = None,
    *,
    adoflow_dir: Path | None = None,
) -> WorkflowRulesProvider:
    """Provider selected by config: the local process when ``process`` is set, else ADO.

    Raises:
        ConfigurationError: ADO organization, project, or PAT is missing.
        ValueError: The configured local process cannot be loaded.
    """
    process = config.get("process")
    if process:
        return build_local_provider(process, adoflow_dir)
    report = check_config(config, environ)
    if not report["ok"]:
        raise ConfigurationError(report["missing"])
    return AdoWorkflowProvider(
        config["organization"],
        config["project"],
        get_pat(environ),
        base_url=config.get("base_url") or DEFAULT_BASE_URL,
        timeout=config.get("timeout_seconds") or DEFAULT_TIMEOUT_SECONDS,
    )


def build_executor(
    config: ProjectConfig,
    *,
    provider: WorkflowRulesProvider | None = None,
    environ: dict[str, str] | None = None,
    adoflow_dir: Path | None = None,
    clock: Callable[[], float] = time.time,
) -> TransitionExecutor:
    """Wire registry, cache, and provider into a ``TransitionExecutor``.

    ``provider`` defaults to the one ``build_provider`` selects from ``config``.
    """
    if provider is None:
        provider = build_provider(config, environ, adoflow_dir=adoflow_dir)
    ttl = config.get("preview_ttl_seconds")
    executor = TransitionExecutor(
        provider,
        registry=CorrelationRegistry(max_age=config.get("pending_ttl_seconds"), clock=clock),
        acting_user=config.get("acting_user"),
        preview_ttl=DEFAULT_TTL_SECONDS if ttl is None else ttl,
        clock=clock,
    )
    logger.debug(
        "Built executor (org=%s, project=%s, provider=%s)",
        config.get("organization") or "-",
        config.get("project") or "-",
        type(provider).__name__,
    )
    return executor
