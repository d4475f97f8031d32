# src/adoflow/ado.py
"""Workflow rules provider backed by the Azure DevOps REST API.

ADO does not publish "which fields does this transition need" directly. The
provider asks ``_apis/wit/workitemtransitions`` for the next state, then
sends a validate-only JSON-Patch that changes ``System.State`` and reads the
missing field reference names out of the rule error ADO returns. Field
metadata (type, allowed values, default) is looked up per reference name so
the prompt builder can pick the right kind.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import httpx

from adoflow.models import NextState, RequiredFieldSpec, WorkItemRef
from adoflow.provider import ProviderError, ProviderRejection, ProviderUnavailable

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
DEFAULT_BASE_URL = "https://dev.azure.com"
DEFAULT_TIMEOUT_SECONDS = 30.0

_JSON_PATCH = "application/json-patch+json"
REASON_FIELD = "System.Reason"
# Work item updates made on the user's behalf do not email subscribers.
_QUIET = {"suppressNotifications": "true"}

# "... (Microsoft.VSTS.Common.ResolvedReason)" -- only dotted names count.
_PARENTHESISED_REF = re.compile(r"\(([A-Za-z0-9_.]+)\)")
_FIELD_IS_REQUIRED = re.compile(r"[Ff]ield\s+'([^']+)'\s+is\s+required")


def parse_required_fields(message: str) -> list[str]:
    """Extract field reference names from an ADO validation error, in order."""
    found: list[str] = []
    for match in _PARENTHESISED_REF.finditer(message):
        ref = match.group(1)
        if "." in ref and ref not in found:
            found.append(ref)
    for match in _FIELD_IS_REQUIRED.finditer(message):
        ref = match.group(1)
        if ref not in found:
            found.append(ref)
    return found


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return response.text[:500] or response.reason_phrase


def _field_ref_from_body(response: httpx.Response) -> str | None:
    """Rule errors carry ``customProperties.FieldReferenceName`` on newer API versions."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    props = body.get("customProperties")
    if isinstance(props, dict) and isinstance(props.get("FieldReferenceName"), str):
        return props["FieldReferenceName"]
    return None


class AdoWorkflowProvider:
    """Implements ``WorkflowRulesProvider`` over ADO REST with PAT auth.

    Transport failures raise ``ProviderUnavailable``; any non-2xx answer
    raises ``ProviderRejection`` carrying the HTTP status. Nothing is retried.
    """

    def __init__(
        self,
        organization: str,
        project: str,
        pat: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.organization = organization
        self.project = project
        self._project_path = quote(project, safe="")
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/{quote(organization, safe='')}",
            auth=httpx.BasicAuth("", pat),
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._metadata_lock = threading.Lock()
        self._metadata: dict[tuple[str, str], RequiredFieldSpec] = {}

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AdoWorkflowProvider:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- HTTP ---------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        patch: list[dict[str, Any]] | None = None,
    ) -> httpx.Response:
        query = {"api-version": API_VERSION, **(params or {})}
        headers = {"Content-Type": _JSON_PATCH} if patch is not None else None
        try:
            return self._client.request(method, path, params=query, json=patch, headers=headers)
        except httpx.TransportError as exc:
            logger.warning("ADO request %s %s failed: %s", method, path, exc, extra={"error": str(exc)})
            msg = f"Could not reach Azure DevOps: {exc}"
            raise ProviderUnavailable(msg) from exc

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        patch: list[dict[str, Any]] | None = None,
    ) -> Any:
        response = self._send(method, path, params=params, patch=patch)
        if response.is_error:
            raise ProviderRejection(_error_message(response), status_code=response.status_code)
        return response.json() if response.content else None

    def _work_item_path(self, work_item_id: int) -> str:
        return f"/{self._project_path}/_apis/wit/workitems/{work_item_id}"

    # -- WorkflowRulesProvider ---------------------------------------------

    def get_work_item(self, work_item_id: int) -> WorkItemRef:
        body = self._request("GET", self._work_item_path(work_item_id))
        fields = body.get("fields", {})
        state = fields.get("System.State")
        wit = fields.get("System.WorkItemType")
        if not state or not wit:
            logger.warning(
                "Work item %d is missing System.State or System.WorkItemType; assuming New/Task",
                work_item_id,
                extra={"work_item_id": work_item_id},
            )
        return WorkItemRef(
            id=body.get("id", work_item_id),
            current_state=state or "New",
            work_item_type=wit or "Task",
            rev=body.get("rev"),
        )

    def query_next_state(self, item: WorkItemRef, *, with_fields: bool = True) -> NextState | None:
        body = self._request("GET", "/_apis/wit/workitemtransitions", params={"ids": str(item.id)})
        target = next(
            (
                entry.get("stateOnTransition")
                for entry in body.get("value", [])
                if entry.get("id") == item.id and entry.get("stateOnTransition")
            ),
            None,
        )
        if target is None:
            logger.debug("ADO reports no next state for work item %d", item.id, extra={"work_item_id": item.id})
            return None
        if not with_fields:
            return NextState(target_state=target)
        refs = self._discover_required_fields(item, target)
        specs = tuple(self._field_spec(item.work_item_type, ref) for ref in refs)
        return NextState(target_state=target, required_fields=specs)

    def apply_transition(
        self,
        work_item_id: int,
        target_state: str,
        fields: Mapping[str, Any],
        *,
        expected_rev: int | None = None,
        reason: str | None = None,
    ) -> None:
        patch: list[dict[str, Any]] = []
        if expected_rev is not None:
            patch.append({"op": "test", "path": "/rev", "value": expected_rev})
        patch.append({"op": "add", "path": "/fields/System.State", "value": target_state})
        if reason is not None and REASON_FIELD not in fields:
            patch.append({"op": "add", "path": f"/fields/{REASON_FIELD}", "value": reason})
        patch.extend({"op": "add", "path": f"/fields/{ref}", "value": value} for ref, value in fields.items())
        self._request("PATCH", self._work_item_path(work_item_id), params=_QUIET, patch=patch)
        logger.debug(
            "Patched work item %d with %d operation(s)",
            work_item_id,
            len(patch),
            extra={"work_item_id": work_item_id, "target_state": target_state},
        )

    # -- Required field discovery ------------------------------------------

    def _discover_required_fields(self, item: WorkItemRef, target_state: str) -> list[str]:
        """Validate-only state change; the rule error names the missing fields."""
        patch = [{"op": "add", "path": "/fields/System.State", "value": target_state}]
        params = {"validateOnly": "true", **_QUIET}
        response = self._send("PATCH", self._work_item_path(item.id), params=params, patch=patch)
        if not response.is_error:
            return []

        message = _error_message(response)
        refs = parse_required_fields(message)
        body_ref = _field_ref_from_body(response)
        if body_ref and body_ref not in refs:
            refs.append(body_ref)
        if response.status_code != 400 or not refs:
            logger.warning(
                "Validate-only transition of work item %d to '%s' failed without naming fields: %s",
                item.id,
                target_state,
                message,
                extra={"work_item_id": item.id, "target_state": target_state, "error": message},
            )
            reason = f"Validation failed but no required fields detected: {message}"
            raise ProviderRejection(reason, status_code=response.status_code)

        logger.debug("Work item %d needs %s to reach '%s'", item.id, refs, target_state)
        return refs

    def _field_spec(self, work_item_type: str, ref_name: str) -> RequiredFieldSpec:
        key = (work_item_type, ref_name)
        with self._metadata_lock:
            cached = self._metadata.get(key)
        if cached is not None:
            return cached
        try:
            field_info = self._request("GET", f"/_apis/wit/fields/{quote(ref_name, safe='')}")
            type_info = self._request(
                "GET",
                f"/{self._project_path}/_apis/wit/workitemtypes/{quote(work_item_type, safe='')}"
                f"/fields/{quote(ref_name, safe='')}",
                params={"$expand": "allowedValues"},
            )
        except ProviderError as exc:
            logger.warning("No metadata for field %s, inferring from its name: %s", ref_name, exc)
            return RequiredFieldSpec(ref_name=ref_name)

        spec = RequiredFieldSpec(
            ref_name=ref_name,
            name=type_info.get("name") or field_info.get("name") or "",
            field_type=field_info.get("type"),
            allowed_values=tuple(str(v) for v in type_info.get("allowedValues") or ()),
            default_value=type_info.get("defaultValue"),
        )
        with self._metadata_lock:
            self._metadata[key] = spec
        return spec
