"""Audit creation from a checklist template, plus audit reads.

Creating an audit copies the template's active questions into audit-scoped
checklist items. The copy is taken once: later template edits never reach
existing audits.
"""
from datetime import date
from typing import Dict, List, Optional, Tuple

from sqlalchemy import text

from .checklist import checklist_stats, list_items
from .db import audits_table, checklist_templates_table, new_id, utcnow
from .errors import ValidationError
from .logging_config import log_event
from .schemas import AuditStatus
from .templates import active_questions
from .tenancy import TenantContext, load_owned
from .validation import clean_text, ensure_date, ensure_uuid


def row_to_audit(row) -> Dict:
    d = dict(row)
    d["status"] = AuditStatus.coerce(d["status"])
    if d.get("scheduled_date"):
        try:
            d["scheduled_date"] = date.fromisoformat(d["scheduled_date"])
        except Exception:
            d["scheduled_date"] = None
    return d


def create_audit_from_template(conn, ctx: TenantContext, title: str, scheduled_date, template_id: str) -> str:
    errors = {}
    try:
        title = clean_text(title, "title", 3, 200)
    except ValidationError as e:
        errors.update(e.errors)
    try:
        scheduled_date = ensure_date(scheduled_date, "scheduled_date")
    except ValidationError as e:
        errors.update(e.errors)
    try:
        template_id = ensure_uuid(template_id, "template_id")
    except ValidationError as e:
        errors.update(e.errors)
    if errors:
        raise ValidationError(errors)

    template = load_owned(conn, checklist_templates_table, template_id, ctx, "Template")
    now = utcnow()
    audit_id = new_id()
    conn.execute(
        text(
            """
            INSERT INTO audits (id, org_id, title, status, scheduled_date, template_id, created_at, updated_at, created_by, updated_by, request_id)
            VALUES (:id, :org_id, :title, :status, :scheduled_date, :template_id, :ts, :ts, :user_id, :user_id, :request_id)
            """
        ),
        {
            "id": audit_id,
            "org_id": ctx.org_id,
            "title": title,
            "status": AuditStatus.Scheduled.value,
            "scheduled_date": scheduled_date.isoformat(),
            "template_id": template_id,
            "ts": now,
            "user_id": ctx.user_id,
            "request_id": ctx.request_id,
        },
    )
    checklist_id = new_id()
    conn.execute(
        text(
            "INSERT INTO checklists (id, audit_id, org_id, template_id, title, created_at) "
            "VALUES (:id, :audit_id, :org_id, :template_id, :title, :ts)"
        ),
        {"id": checklist_id, "audit_id": audit_id, "org_id": ctx.org_id, "template_id": template_id, "title": template["title"], "ts": now},
    )

    questions = active_questions(conn, template_id)
    if questions:
        conn.execute(
            text(
                """
                INSERT INTO checklist_items (id, audit_id, checklist_id, org_id, question, outcome, notes, evidence_url, sort_order, created_at, updated_at, updated_by)
                VALUES (:id, :audit_id, :checklist_id, :org_id, :question, 'pending', NULL, NULL, :sort_order, :ts, :ts, NULL)
                """
            ),
            [
                {
                    "id": new_id(),
                    "audit_id": audit_id,
                    "checklist_id": checklist_id,
                    "org_id": ctx.org_id,
                    "question": q["question"],
                    "sort_order": q["sort_order"],
                    "ts": now,
                }
                for q in questions
            ],
        )
    log_event(
        "audit_created",
        audit_id=audit_id,
        org_id=ctx.org_id,
        template_id=template_id,
        items=len(questions),
        request_id=ctx.request_id,
    )
    return audit_id


def get_audit(conn, ctx: TenantContext, audit_id: str) -> Dict:
    audit_id = ensure_uuid(audit_id, "audit_id")
    audit = row_to_audit(load_owned(conn, audits_table, audit_id, ctx, "Audit"))
    items = list_items(conn, ctx, audit_id)
    checklists = conn.execute(
        text("SELECT id, title, template_id FROM checklists WHERE audit_id = :aid AND org_id = :org_id ORDER BY created_at, id"),
        {"aid": audit_id, "org_id": ctx.org_id},
    ).mappings().all()
    audit["checklists"] = [
        dict(c, items=[i for i in items if i["checklist_id"] == c["id"]]) for c in checklists
    ]
    audit["stats"] = checklist_stats(items)
    return audit


def list_audits(conn, ctx: TenantContext, status: Optional[AuditStatus] = None, limit: int = 50, offset: int = 0) -> Tuple[List[Dict], int]:
    where = "org_id = :org_id"
    params = {"org_id": ctx.org_id}
    if status:
        where += " AND status = :status"
        params["status"] = AuditStatus.coerce(status).value
    total = conn.execute(text(f"SELECT COUNT(*) FROM audits WHERE {where}"), params).scalar_one()
    rows = conn.execute(
        text(f"SELECT * FROM audits WHERE {where} ORDER BY scheduled_date DESC, created_at DESC, id DESC LIMIT :limit OFFSET :offset"),
        dict(params, limit=limit, offset=offset),
    ).mappings().all()
    return [row_to_audit(r) for r in rows], int(total or 0)
