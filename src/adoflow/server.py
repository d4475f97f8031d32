"""HTTP adapter for the transition executor.

A thin FastAPI layer over ``TransitionExecutor``: begin, finish, cancel,
and preview as JSON endpoints under ``/api``. A module-level ``_executor``
is set at startup (or by test fixtures) and injected via
``Depends(_get_executor)``.

Executor calls can block on the system of record, so every handler hands
them to the thread pool; one slow work item never stalls another request.

Usage:
    adoflow serve                  # http://127.0.0.1:8390
    adoflow serve --port 9000
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi.responses import JSONResponse
    from starlette.requests import Request

from adoflow.errors import (
    CorrelationNotFoundError,
    TransitionAbandonedError,
    TransitionError,
    TransitionRejectedError,
    ValidationFailedError,
)
from adoflow.executor import TransitionExecutor
from adoflow.provider import ProviderRejection
from adoflow.types.api import ErrorBody, ErrorEnvelope, TransitionResponse

DEFAULT_PORT = 8390

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level state -- set by main() or test fixtures
# ---------------------------------------------------------------------------

_executor: TransitionExecutor | None = None

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_response(
    message: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Return a structured error response and log the error."""
    from fastapi.responses import JSONResponse

    logger.warning("API error [%s] %s: %s", status_code, code, message)
    body = ErrorEnvelope(error=ErrorBody(message=message, code=code, details=details or {}))
    return JSONResponse(body, status_code=status_code)


_STATUS_BY_CODE: dict[str, int] = {
    CorrelationNotFoundError.code: 404,
    ValidationFailedError.code: 422,
    TransitionRejectedError.code: 409,
    TransitionAbandonedError.code: 409,
}


def _transition_error_response(exc: TransitionError) -> JSONResponse:
    """Map an executor exception onto the error envelope."""
    details: dict[str, Any] = {}
    if isinstance(exc, CorrelationNotFoundError):
        details["correlation_id"] = exc.correlation_id
    elif isinstance(exc, ValidationFailedError):
        details.update(ref_name=exc.ref_name, reason=exc.reason)
    elif isinstance(exc, TransitionRejectedError | TransitionAbandonedError):
        details["work_item_id"] = exc.work_item_id
        cause = getattr(exc, "cause", None)
        if isinstance(cause, ProviderRejection) and cause.status_code is not None:
            details["provider_status"] = cause.status_code
    return _error_response(str(exc), exc.code, _STATUS_BY_CODE.get(exc.code, 500), details)


async def _parse_json_body(request: Request, *, allow_empty: bool = False) -> dict[str, Any] | JSONResponse:
    """Parse and validate a JSON object body, returning 400 on failure."""
    import json

    if allow_empty and not await request.body():
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response("Invalid JSON body", "VALIDATION_ERROR", 400)
    if not isinstance(body, dict):
        return _error_response("Request body must be a JSON object", "VALIDATION_ERROR", 400)
    return body


def _safe_work_item_id(value: Any, name: str = "work_item_id") -> int | JSONResponse:
    """Parse a positive work item id, returning 400 on failure."""
    if isinstance(value, bool):
        return _error_response(f"Invalid {name}: {value!r}", "VALIDATION_ERROR", 400, {"param": name})
    try:
        result = int(value)
    except (ValueError, TypeError):
        return _error_response(f"Invalid {name}: {value!r}", "VALIDATION_ERROR", 400, {"param": name})
    if result < 1 or (isinstance(value, float) and not value.is_integer()):
        return _error_response(f"Invalid {name}: {value!r}", "VALIDATION_ERROR", 400, {"param": name})
    return result


def _get_executor() -> TransitionExecutor:
    """Return the active executor."""
    from fastapi import HTTPException

    if _executor is None:
        raise HTTPException(status_code=500, detail="Executor not initialized")
    return _executor


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


def create_router() -> Any:
    """Build the APIRouter containing the transition endpoints."""
    from fastapi import APIRouter, Depends, Request
    from fastapi.responses import JSONResponse
    from starlette.concurrency import run_in_threadpool

    # Expose Request in module globals so PEP 563 deferred annotations resolve
    globals()["Request"] = Request

    router = APIRouter()

    @router.get("/health")
    async def api_health(executor: TransitionExecutor = Depends(_get_executor)) -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "provider": type(executor.provider).__name__,
                "pending_transitions": len(executor.registry),
                "cached_previews": len(executor.cache),
            }
        )

    @router.post("/work-items/{work_item_id}/transition")
    async def api_begin(work_item_id: str, executor: TransitionExecutor = Depends(_get_executor)) -> JSONResponse:
        item_id = _safe_work_item_id(work_item_id)
        if not isinstance(item_id, int):
            return item_id
        try:
            result = await run_in_threadpool(executor.begin, item_id)
        except TransitionError as exc:
            return _transition_error_response(exc)
        payload: TransitionResponse = result.to_dict()
        return JSONResponse(payload)

    @router.get("/work-items/{work_item_id}/transition-preview")
    async def api_preview(work_item_id: str, executor: TransitionExecutor = Depends(_get_executor)) -> JSONResponse:
        item_id = _safe_work_item_id(work_item_id)
        if not isinstance(item_id, int):
            return item_id
        try:
            entry = await run_in_threadpool(executor.preview, item_id)
        except TransitionError as exc:
            return _transition_error_response(exc)
        return JSONResponse(entry.to_dict())

    @router.get("/work-items/{work_item_id}/pending")
    async def api_pending(work_item_id: str, executor: TransitionExecutor = Depends(_get_executor)) -> JSONResponse:
        item_id = _safe_work_item_id(work_item_id)
        if not isinstance(item_id, int):
            return item_id
        entry = executor.pending(item_id)
        if entry is None:
            return JSONResponse({"pending": None})
        return JSONResponse(
            {
                "pending": {
                    "correlation_id": entry.correlation_id,
                    "work_item_id": entry.work_item_id,
                    "current_state": entry.current_state,
                    "target_state": entry.target_state,
                    "prompts": [p.to_dict() for p in entry.prompts],
                }
            }
        )

    @router.post("/transitions/{correlation_id}/finish")
    async def api_finish(
        correlation_id: str,
        request: Request,
        executor: TransitionExecutor = Depends(_get_executor),
    ) -> JSONResponse:
        body = await _parse_json_body(request, allow_empty=True)
        if isinstance(body, JSONResponse):
            return body
        values = body.get("values", {})
        if values is None:
            values = {}
        if not isinstance(values, dict):
            return _error_response("'values' must be a JSON object", "VALIDATION_ERROR", 400, {"param": "values"})
        try:
            outcome = await run_in_threadpool(executor.finish, correlation_id, values)
        except TransitionError as exc:
            return _transition_error_response(exc)
        return JSONResponse(outcome.to_dict())

    @router.delete("/transitions/{correlation_id}")
    async def api_cancel(correlation_id: str, executor: TransitionExecutor = Depends(_get_executor)) -> JSONResponse:
        cancelled = executor.cancel(correlation_id)
        return JSONResponse({"correlation_id": correlation_id, "cancelled": cancelled})

    @router.post("/previews/invalidate")
    async def api_invalidate(request: Request, executor: TransitionExecutor = Depends(_get_executor)) -> JSONResponse:
        body = await _parse_json_body(request, allow_empty=True)
        if isinstance(body, JSONResponse):
            return body
        raw_id = body.get("work_item_id")
        if raw_id is None:
            executor.refresh()
            return JSONResponse({"invalidated": "all"})
        item_id = _safe_work_item_id(raw_id)
        if not isinstance(item_id, int):
            return item_id
        executor.cache.invalidate(item_id)
        return JSONResponse({"invalidated": item_id})

    return router


def create_app() -> Any:
    """Create the FastAPI application serving the transition endpoints."""
    from fastapi import FastAPI

    app = FastAPI(title="adoflow", docs_url=None, redoc_url=None)
    app.include_router(create_router(), prefix="/api")
    return app


def main(port: int = DEFAULT_PORT, *, executor: TransitionExecutor | None = None) -> None:
    """Start the HTTP server on localhost.

    Builds the executor from the nearest .adoflow/ config (plus environment)
    unless one is passed in.
    """
    import uvicorn

    from adoflow.config import find_adoflow_root, load_config
    from adoflow.logging import setup_logging
    from adoflow.session import build_executor

    global _executor

    adoflow_dir: Path | None
    try:
        adoflow_dir = find_adoflow_root()
    except FileNotFoundError:
        adoflow_dir = None
        logger.debug("No .adoflow/ directory; file logging disabled")
    else:
        setup_logging(adoflow_dir)

    _executor = executor if executor is not None else build_executor(load_config(), adoflow_dir=adoflow_dir)
    app = create_app()
    print(f"adoflow: http://localhost:{port}")
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="warning")
