from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from forkliftops.main import app
from forkliftops.services import checklist_gate

client = TestClient(app)

TECH = "tech-1"


def _auth_headers(user_id: str, role: str) -> dict:
    resp = client.post("/auth/token", json={"user_id": user_id, "role": role})
    assert resp.status_code == 200, f"token request failed: {resp.status_code} {resp.text}"
    data = resp.json()
    assert "access_token" in data, f"token response missing access_token: {data}"
    return {"Authorization": f"Bearer {data['access_token']}"}


def _admin():
    return _auth_headers("admin-1", "admin")


def _tech(user_id=TECH):
    return _auth_headers(user_id, "technician")


def _create(job_type="Repair", **extra) -> dict:
    body = {"customer_id": "cust-1", "job_type": job_type, "title": "Mast chain noise"}
    body.update(extra)
    r = client.post("/jobs", json=body, headers=_admin())
    assert r.status_code == 200, r.text
    return r.json()


def _action(job_id, action, headers, payload=None, expected_version=None):
    body = {"payload": payload or {}}
    if expected_version is not None:
        body["expected_version"] = expected_version
    return client.post(f"/jobs/{job_id}/actions/{action}", json=body, headers=headers)


def test_jobs_create_list_get():
    created = _create()
    job_id = created["job_id"]
    assert created["status"] == "New"
    assert created["version"] == 0
    assert created["created_by_id"] == "admin-1"
    assert created["checklist_template"] == "minor_service"

    listing = client.get("/jobs", headers=_tech())
    assert listing.status_code == 200
    assert [row["job_id"] for row in listing.json()] == [job_id]

    got = client.get(f"/jobs/{job_id}", headers=_tech())
    assert got.status_code == 200
    assert got.json()["title"] == "Mast chain noise"

    assert client.get("/jobs/does-not-exist", headers=_admin()).status_code == 404
    assert client.get("/jobs", params={"status": "Bogus"}, headers=_admin()).status_code == 400


def test_create_validation():
    r = client.post("/jobs", json={"customer_id": "cust-1", "job_type": "Teleport"}, headers=_admin())
    assert r.status_code == 400
    assert r.json()["detail"]["kind"] == "ValidationError"

    r = client.post("/jobs", json={"customer_id": "", "job_type": "Repair"}, headers=_admin())
    assert r.status_code == 422


def test_action_flow_and_rejection_mapping():
    job_id = _create()["job_id"]

    assigned = _action(job_id, "assign", _admin(), {"technician_id": TECH}, expected_version=0)
    assert assigned.status_code == 200, assigned.text
    body = assigned.json()
    assert body["job"]["status"] == "Assigned"
    assert body["job"]["version"] == 1
    assert body["effects"] == ["Notify", "Audit"]

    stale = _action(job_id, "cancel", _admin(), {"reason": "dup"}, expected_version=0)
    assert stale.status_code == 409
    assert stale.json()["detail"]["kind"] == "Conflict"

    wrong_tech = _action(job_id, "accept", _tech("tech-2"))
    assert wrong_tech.status_code == 403
    assert wrong_tech.json()["detail"]["kind"] == "Unauthorized"

    early = _action(job_id, "complete", _tech())
    assert early.status_code == 409
    assert early.json()["detail"]["kind"] == "InvalidTransition"

    assert _action(job_id, "accept", _tech()).status_code == 200

    no_reading = _action(job_id, "start", _tech())
    assert no_reading.status_code == 400
    assert no_reading.json()["detail"]["kind"] == "ValidationError"

    started = _action(job_id, "start", _tech(), {"hourmeter_reading": 1520})
    assert started.status_code == 200
    assert any("checklist incomplete" in w for w in started.json()["warnings"])

    blocked = _action(job_id, "complete", _tech())
    assert blocked.status_code == 422
    detail = blocked.json()["detail"]
    assert detail["kind"] == "PreconditionFailed"
    assert {"technician_signature", "customer_signature", "after_photo"} <= set(detail["missing"])

    unknown = _action(job_id, "teleport", _admin())
    assert unknown.status_code == 400

    assert _action("missing-job", "assign", _admin(), {"technician_id": TECH}).status_code == 404


def test_full_completion_over_http():
    job_id = _create()["job_id"]
    _action(job_id, "assign", _admin(), {"technician_id": TECH})
    _action(job_id, "accept", _tech())
    _action(job_id, "start", _tech(), {"hourmeter_reading": 800})
    _action(job_id, "check_all", _tech())
    _action(job_id, "attach_media", _tech(), {"media_id": "photo-1", "category": "after"})
    _action(job_id, "sign", _tech(), {"kind": "technician", "signer_name": "Ali"})
    _action(job_id, "sign", _tech(), {"kind": "customer", "signer_name": "Mei Ling"})
    _action(job_id, "add_part", _tech(), {"part_id": "P-7", "part_name": "Chain", "quantity": 1, "unit_price": 55})

    done = _action(job_id, "complete", _tech())
    assert done.status_code == 200, done.text
    assert done.json()["job"]["status"] == "Awaiting Finalization"

    accountant = _auth_headers("acct-1", "accountant")
    premature = _action(job_id, "finalize", accountant)
    assert premature.status_code == 422
    assert set(premature.json()["detail"]["missing"]) == {"parts_confirmation", "job_confirmation"}

    # one admin confirming parts covers the job gate too
    assert _action(job_id, "confirm_parts", _admin()).status_code == 200

    final = _action(job_id, "finalize", accountant)
    assert final.status_code == 200
    job = final.json()["job"]
    assert job["status"] == "Completed"
    assert job["invoice_total"] == 205.0
    assert job["invoiced_at"] is not None


def test_checklist_and_sla_views():
    slot_in = _create(job_type="Slot-In")

    sla = client.get(f"/jobs/{slot_in['job_id']}/sla", headers=_admin())
    assert sla.status_code == 200
    assert sla.json()["applies"] is True
    assert sla.json()["pending_ack"] is True

    repair = _create()
    assert client.get(f"/jobs/{repair['job_id']}/sla", headers=_admin()).json()["applies"] is False

    checklist = client.get(f"/jobs/{repair['job_id']}/checklist", headers=_admin())
    assert checklist.status_code == 200
    mandatory = checklist_gate.mandatory_for_template("minor_service")
    assert checklist.json()["total_mandatory"] == len(mandatory)
    assert checklist.json()["complete"] is False
    assert len(checklist.json()["missing_keys"]) == len(mandatory)

    catalog = client.get("/jobs/checklist/catalog", headers=_tech())
    assert catalog.status_code == 200
    assert len(catalog.json()) == len(checklist_gate.CATALOG)


def test_hourmeter_evaluate_uses_forklift_history(forklift_factory):
    forklift = forklift_factory(
        current_hourmeter=1200.0,
        hourmeter_updated_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    job_id = _create(forklift_id=forklift.id)["job_id"]

    r = client.post(f"/jobs/{job_id}/hourmeter/evaluate", json={"reading": 1000}, headers=_tech())
    assert r.status_code == 200
    body = r.json()
    assert body["flagged"] is True
    assert body["reasons"] == ["lower_than_previous"]
    assert body["previous_reading"] == 1200.0

    ok = client.post(f"/jobs/{job_id}/hourmeter/evaluate", json={"reading": 1210}, headers=_tech()).json()
    assert ok["flagged"] is False


def test_outbox_and_sweep_endpoints_are_role_gated():
    job_id = _create()["job_id"]

    assert client.get("/outbox", headers=_tech()).status_code == 403
    listing = client.get("/outbox", params={"job_id": job_id}, headers=_admin())
    assert listing.status_code == 200
    assert [row["event_type"] for row in listing.json()["rows"]] == ["AUDIT"]

    assert client.post("/sweep/run", headers=_tech()).status_code == 403
    swept = client.post("/sweep/run", headers=_auth_headers("scheduler", "system"))
    assert swept.status_code == 200
    assert swept.json()["escalated"] == 0


def test_export_endpoints():
    job_id = _create()["job_id"]
    accountant = _auth_headers("acct-1", "accountant")

    r = client.post(f"/jobs/{job_id}/exports", headers=accountant)
    assert r.status_code == 422
    assert r.json()["detail"]["kind"] == "PreconditionFailed"

    assert client.post("/jobs/missing/exports", headers=accountant).status_code == 404
    assert client.post(f"/jobs/{job_id}/exports", headers=_tech()).status_code == 403
    assert client.get("/exports", headers=accountant).json() == []
    assert client.post("/exports/missing/retry", headers=accountant).status_code == 404


def test_start_ignores_client_sent_hourmeter_history(forklift_factory):
    forklift = forklift_factory(
        current_hourmeter=1000.0,
        hourmeter_updated_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    job_id = _create(forklift_id=forklift.id)["job_id"]
    _action(job_id, "assign", _admin(), {"technician_id": TECH})
    _action(job_id, "accept", _tech())

    started = _action(job_id, "start", _tech(), {"hourmeter_reading": 900, "hourmeter_context": {"previous_reading": "abc"}})
    assert started.status_code == 200, started.text
    job = started.json()["job"]
    assert job["hourmeter_flagged"] is True
    assert job["hourmeter_previous"] == 1000.0
