from typing import Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from .db import utcnow
from .errors import ConflictError, NotFound, ValidationError
from .tenancy import TenantContext
from .validation import SLUG_PATTERN, clean_text


def _clean_settings(name: str, slug: str, vat_number: Optional[str]) -> Dict:
    errors = {}
    values = {}
    try:
        values["name"] = clean_text(name, "name", 2, 120)
    except ValidationError as e:
        errors.update(e.errors)
    slug = (slug or "").strip()
    if len(slug) < 3 or len(slug) > 50:
        errors["slug"] = "must be between 3 and 50 characters"
    elif not SLUG_PATTERN.match(slug):
        errors["slug"] = "use only lowercase letters, numbers, and hyphens"
    values["slug"] = slug
    vat = (vat_number or "").strip()
    if len(vat) > 20:
        errors["vat_number"] = "must be at most 20 characters"
    values["vat_number"] = vat or None
    if errors:
        raise ValidationError(errors)
    return values


def _slug_taken(conn, slug: str, exclude_id: Optional[str] = None) -> bool:
    row = conn.execute(
        text("SELECT id FROM organizations WHERE slug = :slug"), {"slug": slug}
    ).mappings().first()
    return bool(row) and row["id"] != exclude_id


def create_organization(conn, org_id: str, name: str, slug: str, vat_number: Optional[str] = None) -> Dict:
    """Out-of-band provisioning; repeated calls with the same id return the existing row."""
    if not org_id or len(org_id) > 64:
        raise ValidationError({"id": "must be 1-64 characters"})
    values = _clean_settings(name, slug, vat_number)
    existing = conn.execute(
        text("SELECT * FROM organizations WHERE id = :id"), {"id": org_id}
    ).mappings().first()
    if existing:
        return dict(existing)
    if _slug_taken(conn, values["slug"]):
        raise ConflictError("Slug already in use by another organization")
    now = utcnow()
    conn.execute(
        text(
            "INSERT INTO organizations (id, name, vat_number, slug, created_at, updated_at) "
            "VALUES (:id, :name, :vat_number, :slug, :ts, :ts)"
        ),
        {"id": org_id, "ts": now, **values},
    )
    return dict(conn.execute(text("SELECT * FROM organizations WHERE id = :id"), {"id": org_id}).mappings().first())


def list_organizations(conn, limit: int = 50, offset: int = 0) -> Tuple[List[Dict], int]:
    total = conn.execute(text("SELECT COUNT(*) FROM organizations")).scalar_one()
    rows = conn.execute(
        text("SELECT * FROM organizations ORDER BY created_at DESC, id DESC LIMIT :limit OFFSET :offset"),
        {"limit": limit, "offset": offset},
    ).mappings().all()
    return [dict(r) for r in rows], int(total or 0)


def link_profile(conn, user_id: str, org_id: Optional[str], email: Optional[str] = None) -> Dict:
    if org_id is not None:
        exists = conn.execute(text("SELECT 1 FROM organizations WHERE id = :id"), {"id": org_id}).first()
        if not exists:
            raise NotFound("Organization not found")
    row = conn.execute(text("SELECT * FROM profiles WHERE id = :id"), {"id": user_id}).mappings().first()
    if row:
        conn.execute(
            text("UPDATE profiles SET org_id = :org_id, email = COALESCE(:email, email) WHERE id = :id"),
            {"id": user_id, "org_id": org_id, "email": email},
        )
    else:
        conn.execute(
            text("INSERT INTO profiles (id, email, org_id, created_at) VALUES (:id, :email, :org_id, :ts)"),
            {"id": user_id, "email": email, "org_id": org_id, "ts": utcnow()},
        )
    return dict(conn.execute(text("SELECT * FROM profiles WHERE id = :id"), {"id": user_id}).mappings().first())


def get_organization(conn, ctx: TenantContext) -> Dict:
    row = conn.execute(
        text("SELECT * FROM organizations WHERE id = :id"), {"id": ctx.org_id}
    ).mappings().first()
    if not row:
        raise NotFound("Organization not found")
    return dict(row)


def update_organization(conn, ctx: TenantContext, name: str, slug: str, vat_number: Optional[str] = None) -> Dict:
    values = _clean_settings(name, slug, vat_number)
    if _slug_taken(conn, values["slug"], exclude_id=ctx.org_id):
        raise ConflictError("Slug already in use by another organization")
    try:
        res = conn.execute(
            text(
                "UPDATE organizations SET name = :name, vat_number = :vat_number, slug = :slug, "
                "updated_at = :ts WHERE id = :id"
            ),
            {"id": ctx.org_id, "ts": utcnow(), **values},
        )
    except IntegrityError:
        raise ConflictError("Slug already in use by another organization")
    if res.rowcount == 0:
        raise NotFound("Organization not found")
    return get_organization(conn, ctx)
