"""Project configuration and discovery.

Convention-based: each project has an ``.adoflow/`` directory holding
``config.json`` (organization, project, cache TTLs), ``adoflow.log``, and,
when ``process`` names a local process instead of ADO, ``items.json``.
The personal access token is never written to disk; it comes from
``ADO_PAT`` only.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any, TypedDict

logger = logging.getLogger(__name__)

ADOFLOW_DIR_NAME = ".adoflow"
CONFIG_FILENAME = "config.json"
ITEMS_FILENAME = "items.json"

ENV_ORGANIZATION = "ADO_ORGANIZATION"
ENV_PAT = "ADO_PAT"
ENV_PROJECT = "ADO_PROJECT"
ENV_BASE_URL = "ADO_BASE_URL"
ENV_ACTING_USER = "ADOFLOW_ACTING_USER"
ENV_PROCESS = "ADOFLOW_PROCESS"


class ProjectConfig(TypedDict, total=False):
    """Shape of .adoflow/config.json."""

    organization: str
    project: str
    base_url: str
    acting_user: str | None
    preview_ttl_seconds: float
    pending_ttl_seconds: float | None
    timeout_seconds: float
    process: str | None


DEFAULT_CONFIG = ProjectConfig(
    organization="",
    project="",
    base_url="https://dev.azure.com",
    acting_user=None,
    preview_ttl_seconds=30.0,
    pending_ttl_seconds=None,
    timeout_seconds=30.0,
    process=None,
)

_NUMERIC_KEYS = ("preview_ttl_seconds", "pending_ttl_seconds", "timeout_seconds")


# ---------------------------------------------------------------------------
# Discovery and file I/O
# ---------------------------------------------------------------------------


def find_adoflow_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .adoflow/ directory.

    Returns the .adoflow/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / ADOFLOW_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {ADOFLOW_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def _sanitize(raw: dict[str, Any], config_path: Path) -> ProjectConfig:
    result = ProjectConfig(**DEFAULT_CONFIG)
    for key, value in raw.items():
        if key not in DEFAULT_CONFIG:
            logger.warning("Ignoring unknown key '%s' in %s", key, config_path)
            continue
        if key in _NUMERIC_KEYS and value is not None:
            if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
                logger.warning("Invalid %s=%r in %s, using default", key, value, config_path)
                continue
            value = float(value)
        result[key] = value  # type: ignore[literal-required]
    return result


def read_config(adoflow_dir: Path) -> ProjectConfig:
    """Read .adoflow/config.json. Returns defaults if missing or corrupt."""
    config_path = adoflow_dir / CONFIG_FILENAME
    if not config_path.exists():
        return ProjectConfig(**DEFAULT_CONFIG)
    try:
        raw = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return ProjectConfig(**DEFAULT_CONFIG)
    if not isinstance(raw, dict):
        logger.warning("%s is not a JSON object, using defaults", config_path)
        return ProjectConfig(**DEFAULT_CONFIG)
    return _sanitize(raw, config_path)


def write_atomic(path: Path, content: str) -> None:
    """Write content to path atomically via temp file + os.replace()."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


def write_config(adoflow_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .adoflow/config.json."""
    write_atomic(adoflow_dir / CONFIG_FILENAME, json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def apply_env_overrides(config: ProjectConfig, environ: dict[str, str] | None = None) -> ProjectConfig:
    """Return a copy of config with non-empty environment variables applied."""
    env = os.environ if environ is None else environ
    result = ProjectConfig(**config)
    for var, key in (
        (ENV_ORGANIZATION, "organization"),
        (ENV_PROJECT, "project"),
        (ENV_BASE_URL, "base_url"),
        (ENV_ACTING_USER, "acting_user"),
        (ENV_PROCESS, "process"),
    ):
        value = env.get(var, "").strip()
        if value:
            result[key] = value  # type: ignore[literal-required]
    return result


def get_pat(environ: dict[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    return env.get(ENV_PAT, "").strip()


def mask_token(token: str) -> str:
    """Show first4...last4 of a token, or asterisks when it is too short to reveal."""
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"


def load_config(start: Path | None = None, environ: dict[str, str] | None = None) -> ProjectConfig:
    """Config from the nearest .adoflow/ (or defaults) with env overrides applied."""
    try:
        config = read_config(find_adoflow_root(start))
    except FileNotFoundError:
        config = ProjectConfig(**DEFAULT_CONFIG)
    return apply_env_overrides(config, environ)


def check_config(config: ProjectConfig, environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Report whether the provider settings are complete.

    Returns ``{"ok", "missing", "organization", "project", "base_url", "pat",
    "process"}`` where ``pat`` is masked and ``missing`` lists the environment
    variables to set. With ``process`` set the local provider is used and no
    ADO setting is required.
    """
    pat = get_pat(environ)
    process = config.get("process")
    missing: list[str] = []
    if not process:
        if not config.get("organization"):
            missing.append(ENV_ORGANIZATION)
        if not config.get("project"):
            missing.append(ENV_PROJECT)
        if not pat:
            missing.append(ENV_PAT)
    return {
        "ok": not missing,
        "missing": missing,
        "organization": config.get("organization", ""),
        "project": config.get("project", ""),
        "base_url": config.get("base_url", DEFAULT_CONFIG["base_url"]),
        "pat": mask_token(pat) if pat else None,
        "process": process,
    }
