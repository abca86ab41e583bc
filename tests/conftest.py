"""
Shared fixtures.

The HTTP app binds its engine at import time, so the environment is set up
here before anything under ``backend`` is imported.
"""
import os
import sys
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="iso9001-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP / 'test.db'}")
os.environ.setdefault("EVIDENCE_DIR", str(_TMP / "evidence"))
for _var in ("API_TOKEN", "API_ROLE", "OIDC_HS256_SECRET", "OIDC_JWKS_URL", "OIDC_JWKS", "OIDC_JWKS_PATH",
             "OBJECT_STORE_ENDPOINT", "AI_ENGINE_URL", "DEV_USER_ID"):
    os.environ.pop(_var, None)

repo_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(repo_root))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from backend.app import organizations, snapshot, templates
from backend.app.db import metadata
from backend.app.tenancy import TenantContext


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def conn(engine):
    with engine.begin() as c:
        yield c


def _tenant(conn, org_id: str, user_id: str) -> TenantContext:
    organizations.create_organization(conn, org_id, org_id.title(), f"{org_id}-org")
    organizations.link_profile(conn, user_id, org_id, f"{user_id}@{org_id}.example")
    return TenantContext(user_id=user_id, org_id=org_id, request_id="req-test")


@pytest.fixture
def ctx(conn):
    return _tenant(conn, "acme", "auditor-1")


@pytest.fixture
def other_ctx(conn):
    return _tenant(conn, "globex", "auditor-2")


@pytest.fixture
def make_template(conn):
    def _make(ctx, questions=("Fire extinguishers present?", "Exits marked?"), title="Fire safety walkthrough"):
        tpl = templates.create_template(conn, ctx, title)
        for q in questions:
            templates.add_question(conn, ctx, tpl["id"], q)
        return templates.get_template(conn, ctx, tpl["id"])
    return _make


@pytest.fixture
def make_audit(conn, make_template):
    """Create an audit snapshotted from a fresh template; returns the audit detail."""
    def _make(ctx, questions=("Fire extinguishers present?", "Exits marked?"), title="Internal audit Q1"):
        tpl = make_template(ctx, questions)
        audit_id = snapshot.create_audit_from_template(conn, ctx, title, "2026-01-15", tpl["id"])
        return snapshot.get_audit(conn, ctx, audit_id)
    return _make
