"""Tenant resolution and ownership checks.

Every operation receives a :class:`TenantContext` built from the
authenticated principal and filters its reads and writes by
``ctx.org_id``, regardless of any row-level security on the store.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import Table, text

from .errors import NoOrganization, NotFound, Unauthorized


@dataclass(frozen=True)
class TenantContext:
    user_id: str
    org_id: str
    request_id: Optional[str] = None


def resolve_tenant(conn, claims: Optional[Dict], request_id: Optional[str] = None) -> TenantContext:
    user_id = (claims or {}).get("sub")
    if not user_id:
        raise Unauthorized(status_code=401)
    row = conn.execute(
        text("SELECT org_id FROM profiles WHERE id = :id"), {"id": str(user_id)}
    ).mappings().first()
    if not row or not row["org_id"]:
        raise NoOrganization()
    return TenantContext(user_id=str(user_id), org_id=row["org_id"], request_id=request_id)


def load_owned(conn, table: Table, row_id: str, ctx: TenantContext, label: str) -> Dict:
    # Absent and foreign rows are reported identically.
    row = conn.execute(
        text(f"SELECT * FROM {table.name} WHERE id = :id AND org_id = :org_id"),
        {"id": row_id, "org_id": ctx.org_id},
    ).mappings().first()
    if not row:
        raise NotFound(f"{label} not found")
    return dict(row)


def assert_owned(conn, table: Table, row_id: str, ctx: TenantContext) -> None:
    row = conn.execute(
        text(f"SELECT org_id FROM {table.name} WHERE id = :id"), {"id": row_id}
    ).mappings().first()
    if not row or row["org_id"] != ctx.org_id:
        raise Unauthorized()
