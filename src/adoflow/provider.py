"""Boundary contract with the workflow rules provider / system of record.

The executor never talks to ADO directly. It asks a ``WorkflowRulesProvider``
for a work item snapshot, the next reachable state, and to apply a change.
``adoflow.ado`` implements the contract over the ADO REST API;
``adoflow.workflows`` implements it in-process from a process definition.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from adoflow.models import NextState, WorkItemRef


class ProviderError(Exception):
    """Base class for failures reported by a provider."""


class ProviderRejection(ProviderError):
    """The system of record refused the request (conflict, permission, rule).

    ``status_code`` is the HTTP status when the provider speaks HTTP.
    """

    def __init__(self, reason: str, *, status_code: int | None = None) -> None:
        self.reason = reason
        self.status_code = status_code
        super().__init__(reason if status_code is None else f"{reason} (HTTP {status_code})")


class ProviderUnavailable(ProviderError):
    """The system of record could not be reached. Not retried by the core."""


class WorkflowRulesProvider(Protocol):
    """Consumed contract. Implementations raise ``ProviderError`` subclasses."""

    def get_work_item(self, work_item_id: int) -> WorkItemRef: ...

    def query_next_state(self, item: WorkItemRef, *, with_fields: bool = True) -> NextState | None:
        """Return the single next state reachable from ``item``, or ``None``.

        When several next states are valid the first one in the provider's
        order wins. With ``with_fields=False`` the provider may skip
        discovering required fields (previews only need the target state).
        """
        ...

    def apply_transition(
        self,
        work_item_id: int,
        target_state: str,
        fields: Mapping[str, Any],
        *,
        expected_rev: int | None = None,
        reason: str | None = None,
    ) -> None:
        """Set state and fields in one update.

        ``reason`` fills ``System.Reason`` unless ``fields`` already carries it.
        """
        ...
