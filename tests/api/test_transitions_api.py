"""HTTP tests for the begin / finish / cancel / preview endpoints."""

from __future__ import annotations

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

import adoflow.server as server_module
from adoflow.provider import ProviderRejection, ProviderUnavailable
from adoflow.server import create_app
from adoflow.workflows import LocalWorkflowProvider
from tests._fakes import RESOLVED_REASON, ScriptedProvider


async def _begin(client: AsyncClient, work_item_id: int = 42) -> dict[str, Any]:
    resp = await client.post(f"/api/work-items/{work_item_id}/transition")
    assert resp.status_code == 200
    return resp.json()


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["provider"] == "LocalWorkflowProvider"
        assert data["pending_transitions"] == 0

    async def test_uninitialized_executor(self) -> None:
        server_module._executor = None
        transport = ASGITransport(app=create_app())
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            resp = await c.get("/api/health")
        assert resp.status_code == 500


class TestBegin:
    async def test_pending_with_prompts(self, client: AsyncClient) -> None:
        data = await _begin(client)
        assert data["status"] == "pending"
        assert data["target_state"] == "Resolved"
        assert data["current_state"] == "Active"
        (prompt,) = data["prompts"]
        assert prompt["ref_name"] == RESOLVED_REASON
        assert prompt["kind"] == "picklist"
        assert prompt["allowed_values"] == ["Fixed", "Won't Fix"]
        assert prompt["default_value"] == "Fixed"

    async def test_completed(self, client: AsyncClient, local_provider: LocalWorkflowProvider) -> None:
        data = await _begin(client, 7)
        assert data == {"status": "completed", "work_item_id": 7, "target_state": "Closed"}
        assert local_provider.get(7).state == "Closed"

    async def test_unavailable(self, client: AsyncClient) -> None:
        data = await _begin(client, 9)
        assert data == {"status": "unavailable", "work_item_id": 9, "current_state": "Closed"}

    @pytest.mark.parametrize("bad_id", ["abc", "0", "-3", "1.5"])
    async def test_invalid_id(self, client: AsyncClient, bad_id: str) -> None:
        resp = await client.post(f"/api/work-items/{bad_id}/transition")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_unknown_item_is_rejected(self, client: AsyncClient) -> None:
        resp = await client.post("/api/work-items/404/transition")
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "TRANSITION_REJECTED"
        assert error["details"] == {"work_item_id": 404, "provider_status": 404}

    async def test_unreachable_provider(self, scripted_client: AsyncClient, scripted: ScriptedProvider) -> None:
        scripted.lookup_error = ProviderUnavailable("Could not reach Azure DevOps")
        resp = await scripted_client.post("/api/work-items/42/transition")
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert "Could not reach Azure DevOps" in error["message"]
        assert "provider_status" not in error["details"]


class TestFinish:
    async def test_finish_applies(self, client: AsyncClient, local_provider: LocalWorkflowProvider) -> None:
        pending = await _begin(client)
        resp = await client.post(
            f"/api/transitions/{pending['correlation_id']}/finish",
            json={"values": {RESOLVED_REASON: "Fixed"}},
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "completed",
            "work_item_id": 42,
            "target_state": "Resolved",
            "fields": {RESOLVED_REASON: "Fixed"},
        }
        assert local_provider.get(42).state == "Resolved"

    async def test_validation_failure_keeps_pending(self, client: AsyncClient) -> None:
        pending = await _begin(client)
        url = f"/api/transitions/{pending['correlation_id']}/finish"
        resp = await client.post(url, json={"values": {RESOLVED_REASON: "Because"}})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_FAILED"
        assert error["details"]["ref_name"] == RESOLVED_REASON

        resp = await client.post(url, json={"values": {RESOLVED_REASON: "Fixed"}})
        assert resp.status_code == 200

    async def test_empty_body_counts_as_no_values(self, client: AsyncClient) -> None:
        pending = await _begin(client)
        resp = await client.post(f"/api/transitions/{pending['correlation_id']}/finish")
        assert resp.status_code == 422

    async def test_second_finish_is_not_found(self, client: AsyncClient) -> None:
        pending = await _begin(client)
        url = f"/api/transitions/{pending['correlation_id']}/finish"
        body = {"values": {RESOLVED_REASON: "Fixed"}}
        assert (await client.post(url, json=body)).status_code == 200
        resp = await client.post(url, json=body)
        assert resp.status_code == 404
        error = resp.json()["error"]
        assert error["code"] == "CORRELATION_NOT_FOUND"
        assert error["details"] == {"correlation_id": pending["correlation_id"]}

    async def test_forged_id(self, client: AsyncClient) -> None:
        resp = await client.post("/api/transitions/forged/finish", json={"values": {}})
        assert resp.status_code == 404

    async def test_values_must_be_object(self, client: AsyncClient) -> None:
        pending = await _begin(client)
        resp = await client.post(f"/api/transitions/{pending['correlation_id']}/finish", json={"values": ["Fixed"]})
        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"param": "values"}

    async def test_invalid_json(self, client: AsyncClient) -> None:
        pending = await _begin(client)
        resp = await client.post(
            f"/api/transitions/{pending['correlation_id']}/finish",
            content=b"{nope",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid JSON body"

    async def test_provider_rejection(self, scripted_client: AsyncClient, scripted: ScriptedProvider) -> None:
        pending = await _begin(scripted_client)
        scripted.apply_error = ProviderRejection("TF401289: revision mismatch", status_code=412)
        resp = await scripted_client.post(
            f"/api/transitions/{pending['correlation_id']}/finish",
            json={"values": {RESOLVED_REASON: "Fixed"}},
        )
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "TRANSITION_REJECTED"
        assert error["details"]["provider_status"] == 412


class TestCancel:
    async def test_cancel_twice(self, client: AsyncClient) -> None:
        pending = await _begin(client)
        cid = pending["correlation_id"]
        first = await client.delete(f"/api/transitions/{cid}")
        second = await client.delete(f"/api/transitions/{cid}")
        assert first.json() == {"correlation_id": cid, "cancelled": True}
        assert second.json() == {"correlation_id": cid, "cancelled": False}
        resp = await client.post(f"/api/transitions/{cid}/finish", json={"values": {RESOLVED_REASON: "Fixed"}})
        assert resp.status_code == 404


class TestPending:
    async def test_pending_lookup(self, client: AsyncClient) -> None:
        assert (await client.get("/api/work-items/42/pending")).json() == {"pending": None}
        pending = await _begin(client)
        data = (await client.get("/api/work-items/42/pending")).json()["pending"]
        assert data["correlation_id"] == pending["correlation_id"]
        assert data["prompts"] == pending["prompts"]


class TestPreview:
    async def test_preview(self, client: AsyncClient) -> None:
        resp = await client.get("/api/work-items/42/transition-preview")
        assert resp.status_code == 200
        data = resp.json()
        assert data["available"] is True
        assert data["target_state"] == "Resolved"

    async def test_preview_is_cached(self, scripted_client: AsyncClient, scripted: ScriptedProvider) -> None:
        first = (await scripted_client.get("/api/work-items/42/transition-preview")).json()
        second = (await scripted_client.get("/api/work-items/42/transition-preview")).json()
        assert first == second
        assert scripted.lookups == 1

    async def test_invalidate_one(self, scripted_client: AsyncClient, scripted: ScriptedProvider) -> None:
        await scripted_client.get("/api/work-items/42/transition-preview")
        resp = await scripted_client.post("/api/previews/invalidate", json={"work_item_id": 42})
        assert resp.json() == {"invalidated": 42}
        await scripted_client.get("/api/work-items/42/transition-preview")
        assert scripted.lookups == 2

    async def test_invalidate_all(self, scripted_client: AsyncClient, scripted: ScriptedProvider) -> None:
        await scripted_client.get("/api/work-items/42/transition-preview")
        await scripted_client.get("/api/work-items/7/transition-preview")
        resp = await scripted_client.post("/api/previews/invalidate")
        assert resp.json() == {"invalidated": "all"}
        health = (await scripted_client.get("/api/health")).json()
        assert health["cached_previews"] == 0

    async def test_invalidate_bad_id(self, client: AsyncClient) -> None:
        resp = await client.post("/api/previews/invalidate", json={"work_item_id": True})
        assert resp.status_code == 400

    async def test_preview_rejection(self, client: AsyncClient) -> None:
        resp = await client.get("/api/work-items/404/transition-preview")
        assert resp.status_code == 409
