import uuid

import jwt as pyjwt
import pytest
from fastapi.testclient import TestClient


@pytest.fixture(scope="module")
def client():
    # DATABASE_URL and EVIDENCE_DIR are pointed at a temp dir by conftest
    from backend.app.main import app  # import after env is set

    with TestClient(app) as c:
        yield c


def _provision(client, user_id=None):
    org_id = f"org-{uuid.uuid4().hex[:8]}"
    user_id = user_id or f"user-{uuid.uuid4().hex[:8]}"
    r = client.post("/v1/orgs", json={"id": org_id, "name": f"Org {org_id}", "slug": org_id})
    assert r.status_code == 200, r.text
    r = client.put(f"/v1/profiles/{user_id}", json={"org_id": org_id, "email": f"{user_id}@example.com"})
    assert r.status_code == 200, r.text
    return {"X-User-ID": user_id}


def _audit(client, h, questions):
    t = client.post("/templates", headers=h, json={"title": "Fire safety walkthrough"})
    assert t.status_code == 201, t.text
    tid = t.json()["id"]
    for q in questions:
        assert client.post(f"/templates/{tid}/questions", headers=h, json={"question": q}).status_code == 201
    a = client.post("/audits", headers=h, json={"title": "Internal audit Q1", "scheduled_date": "2026-01-15", "template_id": tid})
    assert a.status_code == 201, a.text
    aid = a.json()["id"]
    detail = client.get(f"/audits/{aid}", headers=h).json()
    return aid, detail["checklists"][0]["items"]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers.get("x-request-id")
    assert r.headers.get("x-content-type-options") == "nosniff"

    # If provided, server should echo same ID
    r2 = client.get("/health", headers={"X-Request-ID": "fixed-id-123"})
    assert r2.headers.get("x-request-id") == "fixed-id-123"


def test_missing_principal_and_unlinked_profile(client):
    r = client.get("/templates")
    assert r.status_code == 401
    assert r.json() == {"detail": "Not authorized"}

    r2 = client.get("/templates", headers={"X-User-ID": "nobody-linked"})
    assert r2.status_code == 403
    assert "organization" in r2.json()["detail"]


def test_audit_lifecycle_end_to_end(client):
    h = _provision(client)
    aid, items = _audit(client, h, ["Fire extinguishers present?", "Exits marked?", "First aid kit stocked?", "Signage visible?"])
    assert [i["outcome"] for i in items] == ["pending"] * 4

    assert client.post(f"/audits/{aid}/start", headers=h).json()["status"] == "InProgress"
    for item, outcome in zip(items, ["compliant", "compliant", "not_applicable", "non_compliant"]):
        r = client.patch(f"/checklist-items/{item['id']}", headers=h, json={"outcome": outcome})
        assert r.status_code == 200, r.text

    v = client.get(f"/audits/{aid}/validation", headers=h).json()
    assert v["is_valid"] is False
    assert v["non_compliant_without_nc"] == 1

    blocked = client.post(f"/audits/{aid}/complete", headers=h)
    assert blocked.status_code == 409
    body = blocked.json()
    assert body["detail"] == (
        "Audit cannot be moved to Review status: "
        "1 non-compliant item(s) do not have associated non-conformity records."
    )
    assert body["validation"]["errors"]

    nc = client.post(
        "/nonconformities",
        headers=h,
        json={"audit_id": aid, "checklist_item_id": items[3]["id"], "title": "Signage missing in hall B"},
    )
    assert nc.status_code == 201, nc.text
    assert nc.json()["severity"] == "major"
    ncid = nc.json()["id"]

    ca = client.post(
        "/corrective-actions",
        headers=h,
        json={"nonconformity_id": ncid, "description": "Install emergency signage", "target_completion_date": "2026-02-28"},
    )
    assert ca.status_code == 201, ca.text
    done = client.post(f"/corrective-actions/{ca.json()['id']}/complete", headers=h)
    assert done.json()["status"] == "completed"

    reviewed = client.post(f"/audits/{aid}/complete", headers=h)
    assert reviewed.status_code == 200, reviewed.text
    assert reviewed.json()["status"] == "Review"

    summary = client.get(f"/audits/{aid}/summary", headers=h).json()
    assert summary["compliance_percentage"] == 75
    assert summary["completed_actions"] == 1

    assert client.post(f"/audits/{aid}/close", headers=h).json()["status"] == "Closed"
    assert client.post(f"/audits/{aid}/close", headers=h).status_code == 200
    trail = client.get(f"/audits/{aid}/trail", headers=h).json()
    assert trail["total_count"] == 3
    assert trail["entries"][0]["new_status"] == "Closed"

    locked = client.patch(f"/checklist-items/{items[0]['id']}", headers=h, json={"notes": "too late"})
    assert locked.status_code == 409

    bad = client.post(f"/audits/{aid}/start", headers=h)
    assert bad.status_code == 409

    listed = client.get("/audits", headers=h)
    assert listed.headers["x-total-count"] == "1"

    mr = client.get("/metrics")
    assert b"audit_transitions_total" in mr.content
    assert b'route="/audits/{audit_id}/complete"' in mr.content


def test_nc_requires_non_compliant_item(client):
    h = _provision(client)
    aid, items = _audit(client, h, ["A?"])
    r = client.post("/nonconformities", headers=h, json={"audit_id": aid, "checklist_item_id": items[0]["id"], "title": "Premature"})
    assert r.status_code == 422
    assert "checklist_item_id" in r.json()["errors"]


def test_cross_tenant_isolation(client):
    h1 = _provision(client)
    h2 = _provision(client)
    aid, items = _audit(client, h1, ["A?"])
    client.patch(f"/checklist-items/{items[0]['id']}", headers=h1, json={"outcome": "non_compliant"})
    ncid = client.post(
        "/nonconformities", headers=h1, json={"audit_id": aid, "checklist_item_id": items[0]["id"], "title": "Finding"}
    ).json()["id"]

    assert client.get(f"/audits/{aid}", headers=h2).status_code == 404
    assert client.get(f"/nonconformities/{ncid}", headers=h2).status_code == 404
    assert client.patch(f"/checklist-items/{items[0]['id']}", headers=h2, json={"outcome": "compliant"}).status_code == 404
    r = client.patch(f"/nonconformities/{ncid}", headers=h2, json={"status": "closed"})
    assert r.status_code == 403
    assert r.json() == {"detail": "Not authorized"}
    assert client.post(f"/audits/{aid}/close", headers=h2).status_code == 404
    assert client.get("/audits", headers=h2).json() == []


def test_validation_errors(client):
    h = _provision(client)
    r = client.post("/audits", headers=h, json={"title": "Audit", "scheduled_date": "not-a-date", "template_id": "x"})
    assert r.status_code == 422
    assert "scheduled_date" in r.json()["errors"]

    r2 = client.post("/audits", headers=h, json={"title": "ab", "scheduled_date": "2026-01-15", "template_id": "x"})
    assert r2.status_code == 422
    assert set(r2.json()["errors"]) == {"title", "template_id"}

    r3 = client.get("/audits", headers=h, params={"limit": 0})
    assert r3.status_code == 400


def test_organization_settings(client):
    h = _provision(client)
    other = _provision(client)
    other_slug = client.get("/organization", headers=other).json()["slug"]

    r = client.patch("/organization", headers=h, json={"name": "Acme S.p.A.", "slug": "acme-" + uuid.uuid4().hex[:6], "vat_number": "IT01234567890"})
    assert r.status_code == 200, r.text
    assert r.json()["vat_number"] == "IT01234567890"

    dup = client.patch("/organization", headers=h, json={"name": "Acme", "slug": other_slug})
    assert dup.status_code == 409


def test_evidence_upload_and_download(client):
    h = _provision(client)
    aid, items = _audit(client, h, ["A?"])
    files = {"file": ("photo.png", b"\x89PNG evidence", "image/png")}
    r = client.post(f"/checklist-items/{items[0]['id']}/evidence", headers=h, files=files)
    assert r.status_code == 200, r.text
    url = r.json()["evidence_url"]
    key = url.split("/evidence/", 1)[1]

    d = client.get(f"/evidence/{key}")
    assert d.status_code == 200
    assert d.content == b"\x89PNG evidence"

    ev = client.get(f"/audits/{aid}/evidence", headers=h).json()
    assert [e["evidence_url"] for e in ev] == [url]

    bad = client.post(
        f"/checklist-items/{items[0]['id']}/evidence", headers=h, files={"file": ("x.exe", b"MZ", "application/x-msdownload")}
    )
    assert bad.status_code == 422

    # no object store configured in tests
    p = client.post(f"/checklist-items/{items[0]['id']}/evidence/presign", headers=h, json={"filename": "a.png", "content_type": "image/png"})
    assert p.status_code == 503


def test_analysis_unavailable_without_engine(client):
    h = _provision(client)
    aid, items = _audit(client, h, ["A?"])
    client.patch(f"/checklist-items/{items[0]['id']}", headers=h, json={"outcome": "non_compliant"})
    ncid = client.post(
        "/nonconformities", headers=h, json={"audit_id": aid, "checklist_item_id": items[0]["id"], "title": "Finding"}
    ).json()["id"]
    r = client.post(f"/nonconformities/{ncid}/analysis", headers=h)
    assert r.status_code == 200
    assert r.json() == {"available": False, "root_cause_analysis": None, "suggested_action_plan": None}


def test_static_token_auth(client, monkeypatch):
    h = _provision(client)
    monkeypatch.setenv("API_TOKEN", "test-token")
    monkeypatch.setenv("API_ROLE", "editor")

    # Unauthenticated write should fail
    r = client.post("/templates", headers=h, json={"title": "Walkthrough"})
    assert r.status_code == 401

    r2 = client.post("/templates", headers=dict(h, Authorization="Bearer test-token"), json={"title": "Walkthrough"})
    assert r2.status_code == 201, r2.text

    r3 = client.post("/templates", headers=dict(h, Authorization="Bearer wrong"), json={"title": "Walkthrough"})
    assert r3.status_code == 403

    # Static token with viewer role must be rejected for writes
    monkeypatch.setenv("API_ROLE", "viewer")
    r4 = client.post("/templates", headers=dict(h, Authorization="Bearer test-token"), json={"title": "Walkthrough"})
    assert r4.status_code == 403
    assert "Insufficient" in r4.text
    assert client.get("/templates", headers=dict(h, Authorization="Bearer test-token")).status_code == 200


def test_jwt_auth_hs256(client, monkeypatch):
    _provision(client, user_id="jwt-tester")
    monkeypatch.setenv("OIDC_HS256_SECRET", "super-secret")
    monkeypatch.setenv("OIDC_ISSUER", "https://issuer.example")
    monkeypatch.setenv("OIDC_AUDIENCE", "iso9001-api")

    def token(**claims):
        base = {"iss": "https://issuer.example", "aud": "iso9001-api", "sub": "jwt-tester"}
        base.update(claims)
        return pyjwt.encode(base, "super-secret", algorithm="HS256")

    r_fail = client.post("/templates", json={"title": "Walkthrough"})
    assert r_fail.status_code == 401

    r_ok = client.post("/templates", headers={"Authorization": f"Bearer {token(roles=['editor'])}"}, json={"title": "Walkthrough"})
    assert r_ok.status_code == 201, r_ok.text

    # default role is viewer
    r_ro = client.post("/templates", headers={"Authorization": f"Bearer {token()}"}, json={"title": "Walkthrough"})
    assert r_ro.status_code == 403

    r_bad = client.get("/templates", headers={"Authorization": f"Bearer {token(aud='someone-else')}"})
    assert r_bad.status_code == 403

    # provisioning needs admin
    r_admin = client.get("/v1/orgs", headers={"Authorization": f"Bearer {token(roles=['editor'])}"})
    assert r_admin.status_code == 403
