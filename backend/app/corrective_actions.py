"""Corrective actions: remediation plans owned by a non-conformity.

Completing an action never changes the parent non-conformity; closing it
stays a manual step.
"""
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import text

from .db import corrective_actions_table, new_id, nonconformities_table, utcnow
from .errors import ConflictError, ValidationError
from .logging_config import log_event
from .schemas import CAStatus, NCStatus
from .tenancy import TenantContext, assert_owned, load_owned
from .validation import clean_text, ensure_choice, ensure_date, ensure_email, ensure_uuid


def row_to_ca(row) -> Dict:
    d = dict(row)
    if d.get("target_completion_date"):
        try:
            d["target_completion_date"] = date.fromisoformat(d["target_completion_date"])
        except Exception:
            d["target_completion_date"] = None
    return d


def _clean_fields(values: Dict) -> Dict:
    errors = {}
    out = {}
    for field, value in values.items():
        if value is None:
            continue
        try:
            if field == "description":
                out[field] = clean_text(value, field, 5, 5000)
            elif field == "responsible_person_email":
                out[field] = ensure_email(value.strip(), field)
            elif field == "target_completion_date":
                out[field] = ensure_date(value, field).isoformat()
            elif field == "status":
                out[field] = ensure_choice(value, CAStatus, field)
            else:
                out[field] = value
        except ValidationError as e:
            errors.update(e.errors)
    if errors:
        raise ValidationError(errors)
    return out


def _open_parent(conn, ctx: TenantContext, nc_id: str) -> Dict:
    nc = load_owned(conn, nonconformities_table, nc_id, ctx, "Non-conformity")
    if nc["status"] == NCStatus.closed.value:
        raise ConflictError("Non-conformity is closed")
    return nc


def create_corrective_action(
    conn,
    ctx: TenantContext,
    nonconformity_id: str,
    description: str,
    root_cause: Optional[str] = None,
    action_plan: Optional[str] = None,
    responsible_person_name: Optional[str] = None,
    responsible_person_email: Optional[str] = None,
    target_completion_date=None,
) -> Dict:
    errors = {}
    try:
        nonconformity_id = ensure_uuid(nonconformity_id, "nonconformity_id")
    except ValidationError as e:
        errors.update(e.errors)
    try:
        values = _clean_fields({
            "description": description if description is not None else "",
            "root_cause": root_cause,
            "action_plan": action_plan,
            "responsible_person_name": responsible_person_name,
            "responsible_person_email": responsible_person_email,
            "target_completion_date": target_completion_date,
        })
    except ValidationError as e:
        errors.update(e.errors)
    if errors:
        raise ValidationError(errors)

    _open_parent(conn, ctx, nonconformity_id)
    ca_id = new_id()
    now = utcnow()
    row = {
        "root_cause": None,
        "action_plan": None,
        "responsible_person_name": None,
        "responsible_person_email": None,
        "target_completion_date": None,
    }
    row.update(values)
    conn.execute(
        text(
            """
            INSERT INTO corrective_actions (id, nonconformity_id, org_id, description, root_cause, action_plan, responsible_person_name, responsible_person_email, target_completion_date, status, completed_at, created_at, updated_at, created_by)
            VALUES (:id, :nc_id, :org_id, :description, :root_cause, :action_plan, :responsible_person_name, :responsible_person_email, :target_completion_date, :status, NULL, :ts, :ts, :created_by)
            """
        ),
        dict(row, id=ca_id, nc_id=nonconformity_id, org_id=ctx.org_id, status=CAStatus.pending.value, ts=now, created_by=ctx.user_id),
    )
    return get_corrective_action(conn, ctx, ca_id)


def get_corrective_action(conn, ctx: TenantContext, ca_id: str) -> Dict:
    ca_id = ensure_uuid(ca_id, "corrective_action_id")
    return row_to_ca(load_owned(conn, corrective_actions_table, ca_id, ctx, "Corrective action"))


def list_corrective_actions(conn, ctx: TenantContext, nonconformity_id: Optional[str] = None, audit_id: Optional[str] = None) -> List[Dict]:
    filters = ["ca.org_id = :org_id"]
    params = {"org_id": ctx.org_id}
    if nonconformity_id is not None:
        params["nc_id"] = ensure_uuid(nonconformity_id, "nonconformity_id")
        filters.append("ca.nonconformity_id = :nc_id")
    if audit_id is not None:
        params["aid"] = ensure_uuid(audit_id, "audit_id")
        filters.append("nc.audit_id = :aid")
    rows = conn.execute(
        text(
            "SELECT ca.* FROM corrective_actions ca "
            "JOIN nonconformities nc ON nc.id = ca.nonconformity_id AND nc.org_id = ca.org_id "
            "WHERE " + " AND ".join(filters) + " ORDER BY ca.created_at DESC, ca.id DESC"
        ),
        params,
    ).mappings().all()
    return [row_to_ca(r) for r in rows]


def _check_completable(conn, ctx: TenantContext, ca: Dict) -> None:
    _open_parent(conn, ctx, ca["nonconformity_id"])
    if ca["status"] == CAStatus.cancelled.value:
        raise ConflictError("A cancelled corrective action cannot be completed")


def update_corrective_action(conn, ctx: TenantContext, ca_id: str, **fields) -> Dict:
    errors = {}
    try:
        ca_id = ensure_uuid(ca_id, "corrective_action_id")
    except ValidationError as e:
        errors.update(e.errors)
    allowed = (
        "description", "root_cause", "action_plan", "responsible_person_name",
        "responsible_person_email", "target_completion_date", "status",
    )
    unknown = [k for k in fields if k not in allowed]
    for k in unknown:
        errors[k] = "unknown field"
    try:
        updates = _clean_fields({k: v for k, v in fields.items() if k in allowed})
    except ValidationError as e:
        errors.update(e.errors)
        updates = {}
    if errors:
        raise ValidationError(errors)
    if not updates:
        raise ValidationError({"body": "no fields to update"})

    assert_owned(conn, corrective_actions_table, ca_id, ctx)
    completing = False
    if updates.get("status") == CAStatus.completed.value:
        ca = get_corrective_action(conn, ctx, ca_id)
        _check_completable(conn, ctx, ca)
        if ca["status"] == CAStatus.completed.value:
            # keep the original completion stamp
            del updates["status"]
            if not updates:
                return ca
        else:
            completing = True
    now = utcnow()
    updates["updated_at"] = now
    if completing:
        updates["completed_at"] = now
    elif "status" in updates:
        updates["completed_at"] = None
    set_clause = ", ".join([f"{k} = :{k}" for k in updates.keys()])
    conn.execute(
        text(f"UPDATE corrective_actions SET {set_clause} WHERE id = :id AND org_id = :org_id"),
        dict(updates, id=ca_id, org_id=ctx.org_id),
    )
    updated = get_corrective_action(conn, ctx, ca_id)
    if completing:
        log_event("corrective_action_completed", ca_id=ca_id, nc_id=updated["nonconformity_id"], request_id=ctx.request_id)
    return updated


def complete_corrective_action(conn, ctx: TenantContext, ca_id: str) -> Dict:
    ca_id = ensure_uuid(ca_id, "corrective_action_id")
    assert_owned(conn, corrective_actions_table, ca_id, ctx)
    ca = get_corrective_action(conn, ctx, ca_id)
    _check_completable(conn, ctx, ca)
    if ca["status"] == CAStatus.completed.value:
        return ca
    now = utcnow()
    conn.execute(
        text(
            "UPDATE corrective_actions SET status = :status, completed_at = :ts, updated_at = :ts "
            "WHERE id = :id AND org_id = :org_id"
        ),
        {"status": CAStatus.completed.value, "ts": now, "id": ca_id, "org_id": ctx.org_id},
    )
    log_event("corrective_action_completed", ca_id=ca_id, nc_id=ca["nonconformity_id"], request_id=ctx.request_id)
    return get_corrective_action(conn, ctx, ca_id)
