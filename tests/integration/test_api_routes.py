"""
Integration tests for the admin HTTP API
"""

from datetime import timedelta

import pytest

from pledge_engine.domain.models import PledgeStatus, SessionMode, SessionStatus
from pledge_engine.utils.time import now_ist_naive

pytestmark = pytest.mark.integration


def session_payload(**overrides):
    # Routes validate windows against the real clock
    now = now_ist_naive()
    payload = {
        "stock_symbol": "hdfcbank",
        "stock_name": "HDFC Bank",
        "session_mode": "buy_only",
        "execution_rule": "manual",
        "stock_price": "1650.00",
        "session_start": now.isoformat(),
        "session_end": (now + timedelta(days=1)).isoformat(),
    }
    payload.update(overrides)
    return payload


async def create_active(client, **overrides):
    resp = await client.post("/api/v1/sessions", json=session_payload(**overrides))
    assert resp.status_code == 201
    session_id = resp.json()["id"]
    resp = await client.post(f"/api/v1/sessions/{session_id}/activate")
    assert resp.status_code == 200
    return session_id


async def pledge(client, session_id, **overrides):
    payload = {
        "user_id": "user-42",
        "demat_account_id": "1208160000012345",
        "side": "buy",
        "qty": 10,
        "price_target": "1640.25",
    }
    payload.update(overrides)
    return await client.post(f"/api/v1/sessions/{session_id}/pledges", json=payload)


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_openapi_publishes_request_examples(client):
    resp = await client.get("/openapi.json")
    assert resp.status_code == 200

    schemas = resp.json()["components"]["schemas"]
    assert schemas["SessionCreateRequest"]["properties"]["stock_symbol"]["examples"] == ["TCS"]
    assert schemas["PledgeRequest"]["properties"]["qty"]["examples"] == [10]


async def test_create_and_fetch_session(client):
    resp = await client.post("/api/v1/sessions", json=session_payload(), headers={"X-Actor-Id": "ops-7"})

    assert resp.status_code == 201
    data = resp.json()
    assert data["stock_symbol"] == "HDFCBANK"
    assert data["status"] == "draft"
    assert data["stock_price"] == 1650.0
    assert data["session_end"].endswith("+05:30")

    resp = await client.get(f"/api/v1/sessions/{data['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == data["id"]

    audit = await client.get("/api/v1/audit", params={"session_id": data["id"], "action": "session_created"})
    assert [e["actor_id"] for e in audit.json()] == ["ops-7"]


async def test_invalid_session_is_400(client):
    resp = await client.post("/api/v1/sessions", json=session_payload(execution_rule="session_end", session_end=None))
    assert resp.status_code == 400
    assert "session_end is required" in resp.json()["detail"]


async def test_unknown_session_is_404(client):
    resp = await client.get("/api/v1/sessions/999")
    assert resp.status_code == 404


async def test_update_only_while_draft(client):
    resp = await client.post("/api/v1/sessions", json=session_payload())
    session_id = resp.json()["id"]

    resp = await client.patch(f"/api/v1/sessions/{session_id}", json={"max_qty": 50, "admin_notes": "pilot"})
    assert resp.status_code == 200
    assert resp.json()["max_qty"] == 50
    assert resp.json()["admin_notes"] == "pilot"

    await client.post(f"/api/v1/sessions/{session_id}/activate")
    resp = await client.patch(f"/api/v1/sessions/{session_id}", json={"max_qty": 60})
    assert resp.status_code == 409


async def test_lifecycle_cancel_delete_and_list(client):
    session_id = await create_active(client)

    resp = await client.delete(f"/api/v1/sessions/{session_id}")
    assert resp.status_code == 409

    resp = await client.post(f"/api/v1/sessions/{session_id}/cancel", json={"reason": "halted"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["admin_notes"] == "halted"

    resp = await client.delete(f"/api/v1/sessions/{session_id}")
    assert resp.status_code == 200

    resp = await client.get("/api/v1/sessions")
    assert session_id not in [s["id"] for s in resp.json()]


async def test_clone_returns_new_draft(client):
    session_id = await create_active(client)
    end = (now_ist_naive() + timedelta(days=7)).isoformat()

    resp = await client.post(f"/api/v1/sessions/{session_id}/clone", json={"session_end": end})

    assert resp.status_code == 201
    clone = resp.json()
    assert clone["id"] != session_id
    assert clone["status"] == "draft"
    assert clone["stock_symbol"] == "HDFCBANK"


async def test_pledge_intake_and_rollups(client):
    session_id = await create_active(client, max_qty=100)

    resp = await pledge(client, session_id)
    assert resp.status_code == 201
    assert resp.json()["status"] == "ready_for_execution"

    resp = await pledge(client, session_id, qty=500)
    assert resp.status_code == 400
    assert "Maximum quantity" in resp.json()["detail"]

    session = (await client.get(f"/api/v1/sessions/{session_id}")).json()
    assert session["total_pledges"] == 1
    assert session["total_pledge_value"] == pytest.approx(16402.50)

    resp = await client.get(f"/api/v1/sessions/{session_id}/pledges", params={"status": "ready_for_execution"})
    assert len(resp.json()) == 1


async def test_preview_and_confirmed_execution(client, app):
    session_id = await create_active(client)
    await pledge(client, session_id)
    await pledge(client, session_id, user_id="user-43")

    # Loads the operator board
    await client.get("/api/v1/sessions")

    preview = await client.get(f"/api/v1/sessions/{session_id}/execution-preview")
    assert preview.status_code == 200
    assert preview.json()["side"] == "buy"
    assert preview.json()["eligible_count"] == 2
    assert preview.json()["title"] == "Execute BUY Orders?"

    resp = await client.post(f"/api/v1/sessions/{session_id}/execute", json={"confirm_side": "buy"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["previous_status"] == "active"
    assert data["final_status"] == "completed"
    assert data["success_count"] == 2
    assert data["message"] == "Executed 2 buy orders for HDFCBANK."

    assert app.state.board.get(session_id).status == SessionStatus.COMPLETED

    records = (await client.get(f"/api/v1/sessions/{session_id}/executions")).json()
    assert len(records) == 2
    assert {r["status"] for r in records} == {"completed"}
    assert records[0]["settlement_date"] is not None

    resp = await client.post(f"/api/v1/sessions/{session_id}/execute", json={"confirm_side": "buy"})
    assert resp.status_code == 409


async def test_confirmation_for_wrong_side_is_rejected(client):
    session_id = await create_active(client, session_mode=SessionMode.BUY_SELL_CYCLE.value)
    await pledge(client, session_id)

    resp = await client.post(f"/api/v1/sessions/{session_id}/execute", json={"confirm_side": "sell"})
    assert resp.status_code == 409

    pledges = (await client.get(f"/api/v1/sessions/{session_id}/pledges")).json()
    assert [p["status"] for p in pledges] == [PledgeStatus.READY_FOR_EXECUTION.value]


async def test_buy_sell_cycle_over_http(client):
    session_id = await create_active(client, session_mode="buy_sell_cycle")
    await pledge(client, session_id)

    buy = await client.post(f"/api/v1/sessions/{session_id}/execute", json={"confirm_side": "buy"})
    assert buy.json()["final_status"] == "awaiting_sell_execution"

    preview = await client.get(f"/api/v1/sessions/{session_id}/execution-preview")
    assert preview.json()["side"] == "sell"

    sell = await client.post(f"/api/v1/sessions/{session_id}/execute", json={"confirm_side": "sell"})
    assert sell.json()["final_status"] == "completed"

    sells = (await client.get(f"/api/v1/sessions/{session_id}/executions", params={"side": "sell"})).json()
    assert len(sells) == 1
    assert sells[0]["buy_execution_id"] is not None


async def test_automation_status_and_disabled_run(client):
    resp = await client.get("/api/v1/automation")
    assert resp.status_code == 200
    assert resp.json()["enabled"] is False
    assert resp.json()["last_tick"] is None

    resp = await client.post("/api/v1/automation/run")
    assert resp.status_code == 200
    assert resp.json()["ran"] is False
    assert resp.json()["reason"] == "disabled"


async def test_audit_log_is_newest_first(client):
    session_id = await create_active(client)

    entries = (await client.get("/api/v1/audit", params={"session_id": session_id})).json()

    assert [e["action"] for e in entries] == ["session_status_changed", "session_created"]
    assert entries[0]["payload"] == {"from": "draft", "to": "active"}
