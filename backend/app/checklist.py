"""Checklist item outcomes, notes and evidence.

Aggregate figures are computed on read by :func:`checklist_stats`; item
updates never touch the parent audit.
"""
import math
import os
from typing import Dict, Iterable, List, Optional

from sqlalchemy import text

from .db import audits_table, checklist_items_table, utcnow
from .errors import ConflictError, ValidationError
from .logging_config import log_event
from .schemas import AuditStatus, Outcome
from .storage import EvidenceStore, evidence_key
from .tenancy import TenantContext, load_owned
from .validation import ensure_choice, ensure_url, ensure_uuid

DEFAULT_UPLOAD_MEDIA = {"image/png", "image/jpeg", "image/webp", "image/heic", "application/pdf"}


def _percent(part: int, whole: int) -> int:
    if not whole:
        return 0
    # half-up, matching how the dashboards round
    return int(math.floor(part * 100.0 / whole + 0.5))


def checklist_stats(items: Iterable[Dict]) -> Dict:
    counts = {o.value: 0 for o in Outcome}
    for item in items:
        outcome = getattr(item["outcome"], "value", item["outcome"])
        counts[outcome] = counts.get(outcome, 0) + 1
    total = sum(counts.values())
    completed = total - counts["pending"]
    return {
        "total": total,
        "compliant": counts["compliant"],
        "non_compliant": counts["non_compliant"],
        "not_applicable": counts["not_applicable"],
        "pending": counts["pending"],
        "completed": completed,
        "progress_percentage": _percent(completed, total),
        "compliance_percentage": _percent(counts["compliant"] + counts["not_applicable"], total),
    }


def list_items(conn, ctx: TenantContext, audit_id: str) -> List[Dict]:
    rows = conn.execute(
        text(
            "SELECT * FROM checklist_items WHERE audit_id = :aid AND org_id = :org_id "
            "ORDER BY sort_order, created_at, id"
        ),
        {"aid": audit_id, "org_id": ctx.org_id},
    ).mappings().all()
    return [dict(r) for r in rows]


def get_item(conn, ctx: TenantContext, item_id: str) -> Dict:
    item_id = ensure_uuid(item_id, "item_id")
    return load_owned(conn, checklist_items_table, item_id, ctx, "Checklist item")


def _ensure_audit_open(conn, ctx: TenantContext, audit_id: str) -> None:
    audit = load_owned(conn, audits_table, audit_id, ctx, "Audit")
    if AuditStatus.coerce(audit["status"]) == AuditStatus.Closed:
        raise ConflictError("Audit is closed; checklist items can no longer change")


def update_item(
    conn,
    ctx: TenantContext,
    item_id: str,
    outcome: Optional[str] = None,
    notes: Optional[str] = None,
    evidence_url: Optional[str] = None,
) -> Dict:
    """Partial update: only the supplied fields change. Last write wins."""
    errors = {}
    updates = {}
    try:
        item_id = ensure_uuid(item_id, "item_id")
    except ValidationError as e:
        errors.update(e.errors)
    if outcome is not None:
        try:
            updates["outcome"] = ensure_choice(outcome, Outcome, "outcome")
        except ValidationError as e:
            errors.update(e.errors)
    if notes is not None:
        updates["notes"] = notes
    if evidence_url is not None:
        if evidence_url == "":
            updates["evidence_url"] = None
        else:
            try:
                updates["evidence_url"] = ensure_url(evidence_url, "evidence_url")
            except ValidationError as e:
                errors.update(e.errors)
    if errors:
        raise ValidationError(errors)

    item = load_owned(conn, checklist_items_table, item_id, ctx, "Checklist item")
    _ensure_audit_open(conn, ctx, item["audit_id"])
    updates["updated_at"] = utcnow()
    updates["updated_by"] = ctx.user_id
    set_clause = ", ".join([f"{k} = :{k}" for k in updates.keys()])
    conn.execute(
        text(f"UPDATE checklist_items SET {set_clause} WHERE id = :id AND org_id = :org_id"),
        dict(updates, id=item_id, org_id=ctx.org_id),
    )
    return load_owned(conn, checklist_items_table, item_id, ctx, "Checklist item")


def _check_upload(filename: Optional[str], content_type: Optional[str], size: Optional[int]) -> None:
    allowed_env = os.getenv("ALLOWED_UPLOAD_MEDIA")
    allowed = {m.strip() for m in allowed_env.split(",") if m.strip()} if allowed_env else DEFAULT_UPLOAD_MEDIA
    errors = {}
    if not filename:
        errors["filename"] = "is required"
    if content_type and content_type not in allowed:
        errors["content_type"] = f"not allowed: {content_type}"
    max_mb = int(os.getenv("MAX_UPLOAD_MB", "25"))
    if size and size > max_mb * 1024 * 1024:
        errors["file"] = "file too large"
    if errors:
        raise ValidationError(errors)


def attach_evidence(
    conn,
    ctx: TenantContext,
    item_id: str,
    store: EvidenceStore,
    filename: Optional[str],
    data: bytes,
    content_type: Optional[str] = None,
) -> Dict:
    """Upload a file, then point the item at it.

    If the second step fails the uploaded blob is simply unreferenced and the
    whole call can be repeated.
    """
    _check_upload(filename, content_type, len(data))
    item = get_item(conn, ctx, item_id)
    _ensure_audit_open(conn, ctx, item["audit_id"])
    key = evidence_key(ctx.org_id, item["audit_id"], item["id"], filename)
    url = store.upload(key, data, content_type)
    updated = update_item(conn, ctx, item["id"], evidence_url=url)
    log_event(
        "evidence_uploaded",
        item_id=item["id"],
        audit_id=item["audit_id"],
        key=key,
        size=len(data),
        request_id=ctx.request_id,
    )
    return updated


def presign_evidence(
    conn,
    ctx: TenantContext,
    item_id: str,
    store: EvidenceStore,
    filename: str,
    content_type: Optional[str] = None,
    size: Optional[int] = None,
) -> Dict:
    _check_upload(filename, content_type, size)
    item = get_item(conn, ctx, item_id)
    _ensure_audit_open(conn, ctx, item["audit_id"])
    key = evidence_key(ctx.org_id, item["audit_id"], item["id"], filename)
    upload_url, headers = store.presign_upload(key, content_type)
    return {"upload_url": upload_url, "object_key": key, "public_url": store.public_url(key), "headers": headers}


def list_audit_evidence(conn, ctx: TenantContext, audit_id: str, outcome: Optional[str] = None) -> List[Dict]:
    audit_id = ensure_uuid(audit_id, "audit_id")
    where = "audit_id = :aid AND org_id = :org_id AND evidence_url IS NOT NULL"
    params = {"aid": audit_id, "org_id": ctx.org_id}
    if outcome is not None:
        params["outcome"] = ensure_choice(outcome, Outcome, "outcome")
        where += " AND outcome = :outcome"
    load_owned(conn, audits_table, audit_id, ctx, "Audit")
    rows = conn.execute(
        text(f"SELECT id, question, outcome, evidence_url, updated_at FROM checklist_items WHERE {where} ORDER BY updated_at DESC, id"),
        params,
    ).mappings().all()
    return [
        {
            "checklist_item_id": r["id"],
            "question": r["question"],
            "outcome": r["outcome"],
            "evidence_url": r["evidence_url"],
            "uploaded_at": r["updated_at"],
        }
        for r in rows
    ]
