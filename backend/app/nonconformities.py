from typing import Dict, List, Optional

from sqlalchemy import text

from .db import audits_table, checklist_items_table, new_id, nonconformities_table, utcnow
from .errors import ValidationError
from .logging_config import log_event
from .schemas import NCStatus, Outcome, Severity
from .tenancy import TenantContext, assert_owned, load_owned
from .validation import clean_text, ensure_choice, ensure_uuid


def create_nonconformity(
    conn,
    ctx: TenantContext,
    audit_id: str,
    checklist_item_id: str,
    title: str,
    description: Optional[str] = None,
    severity: Optional[str] = None,
) -> Dict:
    errors = {}
    ids = {}
    for field, value in (("audit_id", audit_id), ("checklist_item_id", checklist_item_id)):
        try:
            ids[field] = ensure_uuid(value, field)
        except ValidationError as e:
            errors.update(e.errors)
    try:
        title = clean_text(title, "title", 3, 200)
    except ValidationError as e:
        errors.update(e.errors)
    try:
        severity = ensure_choice(severity or Severity.major, Severity, "severity")
    except ValidationError as e:
        errors.update(e.errors)
    if errors:
        raise ValidationError(errors)

    audit_id, checklist_item_id = ids["audit_id"], ids["checklist_item_id"]
    load_owned(conn, audits_table, audit_id, ctx, "Audit")
    item = load_owned(conn, checklist_items_table, checklist_item_id, ctx, "Checklist item")
    if item["audit_id"] != audit_id:
        raise ValidationError({"checklist_item_id": "does not belong to this audit"})
    if item["outcome"] != Outcome.non_compliant.value:
        raise ValidationError({"checklist_item_id": "only non-compliant items can raise a non-conformity"})

    nc_id = new_id()
    now = utcnow()
    conn.execute(
        text(
            """
            INSERT INTO nonconformities (id, audit_id, checklist_item_id, org_id, title, description, severity, status, created_at, updated_at, closed_at, created_by)
            VALUES (:id, :audit_id, :item_id, :org_id, :title, :description, :severity, :status, :ts, :ts, NULL, :created_by)
            """
        ),
        {
            "id": nc_id,
            "audit_id": audit_id,
            "item_id": checklist_item_id,
            "org_id": ctx.org_id,
            "title": title,
            "description": description,
            "severity": severity,
            "status": NCStatus.open.value,
            "ts": now,
            "created_by": ctx.user_id,
        },
    )
    log_event("nonconformity_created", nc_id=nc_id, audit_id=audit_id, severity=severity, request_id=ctx.request_id)
    return get_nonconformity(conn, ctx, nc_id)


def get_nonconformity(conn, ctx: TenantContext, nc_id: str) -> Dict:
    nc_id = ensure_uuid(nc_id, "nonconformity_id")
    return load_owned(conn, nonconformities_table, nc_id, ctx, "Non-conformity")


def list_nonconformities(conn, ctx: TenantContext, audit_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict]:
    filters = ["org_id = :org_id"]
    params = {"org_id": ctx.org_id}
    if audit_id is not None:
        params["aid"] = ensure_uuid(audit_id, "audit_id")
        filters.append("audit_id = :aid")
    if status is not None:
        params["status"] = ensure_choice(status, NCStatus, "status")
        filters.append("status = :status")
    rows = conn.execute(
        text("SELECT * FROM nonconformities WHERE " + " AND ".join(filters) + " ORDER BY created_at DESC, id DESC"),
        params,
    ).mappings().all()
    return [dict(r) for r in rows]


def update_nonconformity(
    conn,
    ctx: TenantContext,
    nc_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    severity: Optional[str] = None,
    status: Optional[str] = None,
) -> Dict:
    errors = {}
    updates = {}
    try:
        nc_id = ensure_uuid(nc_id, "nonconformity_id")
    except ValidationError as e:
        errors.update(e.errors)
    if title is not None:
        try:
            updates["title"] = clean_text(title, "title", 3, 200)
        except ValidationError as e:
            errors.update(e.errors)
    if description is not None:
        updates["description"] = description
    if severity is not None:
        try:
            updates["severity"] = ensure_choice(severity, Severity, "severity")
        except ValidationError as e:
            errors.update(e.errors)
    if status is not None:
        try:
            updates["status"] = ensure_choice(status, NCStatus, "status")
        except ValidationError as e:
            errors.update(e.errors)
    if errors:
        raise ValidationError(errors)
    if not updates:
        raise ValidationError({"body": "no fields to update"})

    assert_owned(conn, nonconformities_table, nc_id, ctx)
    now = utcnow()
    updates["updated_at"] = now
    if updates.get("status") == NCStatus.closed.value:
        updates["closed_at"] = now
    elif "status" in updates:
        updates["closed_at"] = None
    set_clause = ", ".join([f"{k} = :{k}" for k in updates.keys()])
    conn.execute(
        text(f"UPDATE nonconformities SET {set_clause} WHERE id = :id AND org_id = :org_id"),
        dict(updates, id=nc_id, org_id=ctx.org_id),
    )
    return get_nonconformity(conn, ctx, nc_id)


def close_nonconformity(conn, ctx: TenantContext, nc_id: str) -> Dict:
    nc_id = ensure_uuid(nc_id, "nonconformity_id")
    assert_owned(conn, nonconformities_table, nc_id, ctx)
    now = utcnow()
    conn.execute(
        text(
            "UPDATE nonconformities SET status = :status, closed_at = :ts, updated_at = :ts "
            "WHERE id = :id AND org_id = :org_id"
        ),
        {"status": NCStatus.closed.value, "ts": now, "id": nc_id, "org_id": ctx.org_id},
    )
    log_event("nonconformity_closed", nc_id=nc_id, request_id=ctx.request_id)
    return get_nonconformity(conn, ctx, nc_id)
