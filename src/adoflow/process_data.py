# src/adoflow/process_data.py
"""Built-in process definitions for the local workflow provider.

Logic lives in workflows.py; this file is pure data. Each process is a
JSON-compatible dict matching the schema ``parse_process`` accepts, so a
process exported to a ``.json`` file loads the same way.

Transition order matters: the first transition out of a state is the one
``query_next_state`` reports.
"""

from __future__ import annotations

from typing import Any

_ASSIGNED_TO: dict[str, Any] = {
    "ref_name": "System.AssignedTo",
    "name": "Assigned To",
    "type": "identity",
}

# ---------------------------------------------------------------------------
# Agile -- Task, Bug, User Story
# ---------------------------------------------------------------------------

_AGILE_PROCESS: dict[str, Any] = {
    "process": "agile",
    "version": "1.0",
    "display_name": "Agile",
    "description": "Task, Bug, and User Story workflows modelled on the ADO Agile process",
    "types": {
        "Task": {
            "name": "Task",
            "description": "A unit of work within a story",
            "states": ["New", "Active", "Resolved", "Closed", "Removed"],
            "initial_state": "New",
            "transitions": [
                {"from": "New", "to": "Active", "requires_fields": ["System.AssignedTo"]},
                {"from": "New", "to": "Removed"},
                {"from": "Active", "to": "Resolved", "requires_fields": ["Microsoft.VSTS.Common.ResolvedReason"]},
                {"from": "Active", "to": "Removed"},
                {"from": "Resolved", "to": "Closed"},
                {"from": "Resolved", "to": "Active"},
            ],
            "fields": [
                _ASSIGNED_TO,
                {
                    "ref_name": "Microsoft.VSTS.Common.ResolvedReason",
                    "name": "Resolved Reason",
                    "type": "string",
                    "allowed_values": ["Fixed", "Won't Fix"],
                },
                {
                    "ref_name": "Microsoft.VSTS.Scheduling.RemainingWork",
                    "name": "Remaining Work",
                    "type": "double",
                },
            ],
        },
        "Bug": {
            "name": "Bug",
            "description": "Defects, regressions, and unexpected behavior",
            "states": ["New", "Active", "Resolved", "Closed"],
            "initial_state": "New",
            "transitions": [
                {"from": "New", "to": "Active"},
                {"from": "Active", "to": "Resolved", "requires_fields": ["Microsoft.VSTS.Common.ResolvedReason"]},
                {"from": "Resolved", "to": "Closed"},
                {"from": "Resolved", "to": "Active"},
                {"from": "Closed", "to": "Active"},
            ],
            "fields": [
                _ASSIGNED_TO,
                {
                    "ref_name": "Microsoft.VSTS.Common.ResolvedReason",
                    "name": "Resolved Reason",
                    "type": "string",
                    "allowed_values": ["Fixed", "As Designed", "Cannot Reproduce", "Deferred", "Duplicate", "Obsolete"],
                    "default": "Fixed",
                },
                {
                    "ref_name": "Microsoft.VSTS.TCM.ReproSteps",
                    "name": "Repro Steps",
                    "type": "html",
                    "required_at": ["Active"],
                },
            ],
        },
        "User Story": {
            "name": "User Story",
            "description": "A feature described from the user's point of view",
            "states": ["New", "Active", "Resolved", "Closed"],
            "initial_state": "New",
            "transitions": [
                {"from": "New", "to": "Active", "requires_fields": ["Microsoft.VSTS.Scheduling.StoryPoints"]},
                {"from": "Active", "to": "Resolved"},
                {"from": "Resolved", "to": "Closed"},
            ],
            "fields": [
                _ASSIGNED_TO,
                {
                    "ref_name": "Microsoft.VSTS.Scheduling.StoryPoints",
                    "name": "Story Points",
                    "type": "double",
                },
                {
                    "ref_name": "Microsoft.VSTS.Common.AcceptanceCriteria",
                    "name": "Acceptance Criteria",
                    "type": "html",
                    "required_at": ["Resolved"],
                },
                {
                    "ref_name": "Microsoft.VSTS.Scheduling.FinishDate",
                    "name": "Finish Date",
                    "type": "dateTime",
                    "required_at": ["Closed"],
                },
            ],
        },
    },
}

BUILT_IN_PROCESSES: dict[str, dict[str, Any]] = {
    "agile": _AGILE_PROCESS,
}
