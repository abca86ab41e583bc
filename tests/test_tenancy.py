import pytest

from backend.app import organizations
from backend.app.db import audits_table
from backend.app.errors import ConflictError, NoOrganization, NotFound, Unauthorized, ValidationError
from backend.app.tenancy import assert_owned, load_owned, resolve_tenant


def test_resolve_binds_profile_org(conn, ctx):
    resolved = resolve_tenant(conn, {"sub": ctx.user_id}, request_id="r-1")
    assert resolved.org_id == ctx.org_id
    assert resolved.request_id == "r-1"


def test_no_session_is_401(conn):
    for claims in (None, {}, {"sub": None}):
        with pytest.raises(Unauthorized) as exc:
            resolve_tenant(conn, claims)
        assert exc.value.status_code == 401


def test_profile_without_org(conn):
    with pytest.raises(NoOrganization):
        resolve_tenant(conn, {"sub": "stranger"})
    organizations.link_profile(conn, "drifter", None)
    with pytest.raises(NoOrganization):
        resolve_tenant(conn, {"sub": "drifter"})


def test_foreign_and_missing_rows_look_the_same(conn, ctx, other_ctx, make_audit):
    audit = make_audit(ctx)
    missing = "00000000-0000-4000-8000-000000000000"
    errors = []
    for row_id in (audit["id"], missing):
        with pytest.raises(NotFound) as exc:
            load_owned(conn, audits_table, row_id, other_ctx, "Audit")
        errors.append(exc.value.to_body())
    assert errors[0] == errors[1]

    for row_id in (audit["id"], missing):
        with pytest.raises(Unauthorized) as exc:
            assert_owned(conn, audits_table, row_id, other_ctx)
        assert exc.value.to_body() == {"detail": "Not authorized"}
    assert_owned(conn, audits_table, audit["id"], ctx)


def test_organization_settings(conn, ctx, other_ctx):
    updated = organizations.update_organization(conn, ctx, "Acme S.p.A.", "acme-spa", "IT01234567890")
    assert updated["slug"] == "acme-spa"
    assert updated["vat_number"] == "IT01234567890"

    cleared = organizations.update_organization(conn, ctx, "Acme S.p.A.", "acme-spa", "  ")
    assert cleared["vat_number"] is None

    with pytest.raises(ConflictError):
        organizations.update_organization(conn, ctx, "Acme", other_ctx.org_id + "-org")
    with pytest.raises(ValidationError) as exc:
        organizations.update_organization(conn, ctx, "A", "Bad Slug!")
    assert set(exc.value.errors) == {"name", "slug"}


def test_create_organization_is_idempotent(conn):
    first = organizations.create_organization(conn, "initech", "Initech", "initech")
    again = organizations.create_organization(conn, "initech", "Renamed", "initech-2")
    assert again == first
    with pytest.raises(ConflictError):
        organizations.create_organization(conn, "initrode", "Initrode", "initech")
    rows, total = organizations.list_organizations(conn)
    assert total == 1 and rows[0]["id"] == "initech"


def test_link_profile_requires_known_org(conn):
    with pytest.raises(NotFound):
        organizations.link_profile(conn, "someone", "nowhere")
