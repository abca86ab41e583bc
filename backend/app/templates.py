"""Checklist templates: reusable question sets, independent of any audit.

Questions are never physically deleted. ``soft_delete_question`` stamps a
``deleted_at`` tombstone and every read filters on it, so audits already
snapshotted from a template keep a stable history.
"""
from typing import Dict, List, Optional

from sqlalchemy import text

from .db import checklist_templates_table, new_id, utcnow
from .errors import NotFound
from .tenancy import TenantContext, load_owned
from .validation import clean_text, ensure_uuid


def active_questions(conn, template_id: str) -> List[Dict]:
    rows = conn.execute(
        text(
            "SELECT id, template_id, question, sort_order, created_at FROM template_questions "
            "WHERE template_id = :tid AND deleted_at IS NULL ORDER BY sort_order, created_at"
        ),
        {"tid": template_id},
    ).mappings().all()
    return [dict(r) for r in rows]


def create_template(conn, ctx: TenantContext, title: str, description: Optional[str] = None) -> Dict:
    title = clean_text(title, "title", 3, 200)
    tid = new_id()
    now = utcnow()
    conn.execute(
        text(
            "INSERT INTO checklist_templates (id, org_id, title, description, created_at, updated_at, created_by) "
            "VALUES (:id, :org_id, :title, :description, :ts, :ts, :created_by)"
        ),
        {
            "id": tid,
            "org_id": ctx.org_id,
            "title": title,
            "description": (description or "").strip() or None,
            "ts": now,
            "created_by": ctx.user_id,
        },
    )
    return get_template(conn, ctx, tid)


def get_template(conn, ctx: TenantContext, template_id: str) -> Dict:
    template_id = ensure_uuid(template_id, "template_id")
    row = load_owned(conn, checklist_templates_table, template_id, ctx, "Template")
    row["questions"] = active_questions(conn, template_id)
    return row


def list_templates(conn, ctx: TenantContext) -> List[Dict]:
    rows = conn.execute(
        text("SELECT * FROM checklist_templates WHERE org_id = :org_id ORDER BY created_at DESC, id DESC"),
        {"org_id": ctx.org_id},
    ).mappings().all()
    out = []
    for r in rows:
        d = dict(r)
        d["questions"] = active_questions(conn, d["id"])
        out.append(d)
    return out


def add_question(conn, ctx: TenantContext, template_id: str, question: str) -> Dict:
    question = clean_text(question, "question", 1, 1000)
    template_id = ensure_uuid(template_id, "template_id")
    load_owned(conn, checklist_templates_table, template_id, ctx, "Template")
    # Tombstoned rows still count so a new question never reuses their slot
    current = conn.execute(
        text("SELECT MAX(sort_order) FROM template_questions WHERE template_id = :tid"),
        {"tid": template_id},
    ).scalar()
    qid = new_id()
    now = utcnow()
    conn.execute(
        text(
            "INSERT INTO template_questions (id, template_id, question, sort_order, deleted_at, created_at) "
            "VALUES (:id, :tid, :question, :sort_order, NULL, :ts)"
        ),
        {"id": qid, "tid": template_id, "question": question, "sort_order": int(current or 0) + 1, "ts": now},
    )
    conn.execute(
        text("UPDATE checklist_templates SET updated_at = :ts WHERE id = :id AND org_id = :org_id"),
        {"ts": now, "id": template_id, "org_id": ctx.org_id},
    )
    row = conn.execute(
        text("SELECT id, template_id, question, sort_order, created_at FROM template_questions WHERE id = :id"),
        {"id": qid},
    ).mappings().first()
    return dict(row)


def soft_delete_question(conn, ctx: TenantContext, question_id: str, template_id: str) -> None:
    question_id = ensure_uuid(question_id, "question_id")
    template_id = ensure_uuid(template_id, "template_id")
    load_owned(conn, checklist_templates_table, template_id, ctx, "Template")
    row = conn.execute(
        text("SELECT deleted_at FROM template_questions WHERE id = :id AND template_id = :tid"),
        {"id": question_id, "tid": template_id},
    ).mappings().first()
    if not row:
        raise NotFound("Question not found")
    if row["deleted_at"]:
        return
    conn.execute(
        text("UPDATE template_questions SET deleted_at = :ts WHERE id = :id AND template_id = :tid"),
        {"ts": utcnow(), "id": question_id, "tid": template_id},
    )
