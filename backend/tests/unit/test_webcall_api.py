"""
Tests for the /api/v1/webcall/event endpoint
Every outcome is HTTP 200; failures are signalled in the body
"""
import json
import uuid

import pytest
from fastapi.testclient import TestClient

from app.api.v1.dependencies import get_supabase
from app.core.config import IngestionConfig, get_ingestion_config
from app.domain.services.call_event_service import CallEventService
from app.main import app
from conftest import ORG_ID

URL = "/api/v1/webcall/event"
CALL_A = "aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa"
T0 = 1_760_000_000_000


@pytest.fixture
def client(fake_supabase):
    app.dependency_overrides[get_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_ingestion_config] = lambda: IngestionConfig()
    yield TestClient(app)
    app.dependency_overrides.clear()


def started(**overrides):
    body = {"call_id": CALL_A, "vapi_call_id": "019bb1", "event": "started", "ts": T0}
    body.update(overrides)
    return body


class TestWebCallEventErrors:
    """Rejections short-circuit with ok:false and status 200"""

    def test_unauthorized_without_session(self, client, fake_supabase):
        response = client.post(URL, json=started())

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["error"]["code"] == "UNAUTHORIZED"
        assert data["error"]["recoverable"] is False
        assert fake_supabase.rows("calls") == []

    def test_unauthorized_with_unknown_token(self, client):
        response = client.post(URL, json=started(), headers={"Authorization": "Bearer nope"})

        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_unauthorized_when_profile_has_no_org(self, client, fake_supabase, auth_headers):
        fake_supabase.store["profiles"][0]["org_id"] = None

        response = client.post(URL, json=started(), headers=auth_headers)

        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_invalid_json(self, client, auth_headers):
        response = client.post(
            URL,
            content=b"{not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"ok": False, "error": {"code": "INVALID_JSON"}}

    def test_non_object_json(self, client, auth_headers):
        response = client.post(URL, json=[1, 2, 3], headers=auth_headers)

        assert response.json()["error"]["code"] == "INVALID_JSON"

    def test_validation_failed(self, client, auth_headers):
        response = client.post(URL, json=started(call_id="not-a-uuid", event="paused"), headers=auth_headers)

        assert response.status_code == 200
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_FAILED"
        paths = [issue["path"] for issue in error["details"]]
        assert ["call_id"] in paths
        assert ["event"] in paths

    def test_placeholder_vapi_call_id_rejected(self, client, fake_supabase, auth_headers):
        response = client.post(URL, json=started(vapi_call_id="webcall:1234"), headers=auth_headers)

        assert response.json()["error"]["code"] == "MISSING_VAPI_CALL_ID"
        assert fake_supabase.rows("calls") == []

    def test_missing_vapi_call_id_rejected(self, client, auth_headers):
        body = started()
        del body["vapi_call_id"]

        response = client.post(URL, json=body, headers=auth_headers)

        assert response.json()["error"]["code"] == "MISSING_VAPI_CALL_ID"

    def test_rate_limited_signals_end_call(self, client, fake_supabase, auth_headers):
        for i in range(10):
            ok = client.post(
                URL,
                json=started(call_id=str(uuid.uuid4()), vapi_call_id=f"v-{i}"),
                headers=auth_headers,
            )
            assert ok.json()["ok"] is True

        response = client.post(URL, json=started(vapi_call_id="v-over"), headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["error"]["code"].startswith("RATE_LIMITED_")
        assert data["action"] == {"type": "END_CALL", "reason": "RATE_LIMITED"}
        assert fake_supabase.rows("calls", vapi_call_id="v-over") == []

    def test_db_error(self, client, fake_supabase, auth_headers):
        fake_supabase.inject("calls", "upsert", "error")

        response = client.post(URL, json=started(), headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["error"]["code"] == "DB_ERROR"

    def test_unexpected_exception_is_internal_error(self, client, auth_headers, monkeypatch):
        async def explode(self, *args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(CallEventService, "handle_event", explode)

        response = client.post(URL, json=started(), headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"ok": False, "error": {"code": "INTERNAL_ERROR"}}

    @pytest.mark.parametrize("overrides,field", [
        ({"ts": float("nan")}, "ts"),
        ({"ts": float("inf")}, "ts"),
        ({"ts": 1e20}, "ts"),
        ({"ts": -1}, "ts"),
        ({"duration_seconds": float("inf")}, "duration_seconds"),
        ({"cost_usd": float("nan")}, "cost_usd"),
    ])
    def test_non_finite_or_out_of_range_numbers(self, client, fake_supabase, auth_headers, overrides, field):
        # json.dumps emits NaN / Infinity literals, which json.loads accepts
        response = client.post(
            URL,
            content=json.dumps(started(**overrides)),
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_FAILED"
        assert [field] in [issue["path"] for issue in error["details"]]
        assert fake_supabase.rows("audit_log") == []
        assert fake_supabase.rows("calls") == []


class TestWebCallEventFlow:
    """started then ended through the HTTP surface"""

    def test_started_then_ended_with_ticket(self, client, fake_supabase, auth_headers):
        first = client.post(URL, json=started(cost_usd=0.12), headers=auth_headers)

        assert first.json() == {
            "ok": True,
            "call_id": CALL_A,
            "debug": {"event": "started", "call_id": CALL_A},
        }

        fake_supabase.store["tickets"].append({"id": "t-1", "org_id": ORG_ID, "call_id": CALL_A})

        second = client.post(
            URL,
            json=started(event="ended", ts=T0 + 20_000, duration_seconds=20),
            headers=auth_headers,
        )

        data = second.json()
        assert data["ok"] is True
        assert data["completion_state"] == "completed"
        row = fake_supabase.rows("calls", vapi_call_id="019bb1")[0]
        assert row["cost_usd"] == 0.12
        assert row["org_id"] == ORG_ID

    def test_ended_without_artifact(self, client, auth_headers):
        client.post(URL, json=started(), headers=auth_headers)

        response = client.post(
            URL,
            json=started(event="ended", ts=T0 + 20_000, duration_seconds=20),
            headers=auth_headers,
        )

        assert response.json()["completion_state"] == "abandoned"

    def test_org_comes_from_session_not_body(self, client, fake_supabase, auth_headers):
        client.post(URL, json=started(org_id="spoofed-org"), headers=auth_headers)

        row = fake_supabase.rows("calls", vapi_call_id="019bb1")[0]
        assert row["org_id"] == ORG_ID

    def test_get_liveness(self, client):
        response = client.get(URL)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "route": "webcall/event"}
