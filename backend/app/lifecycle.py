"""Audit status lifecycle: Scheduled -> InProgress -> Review -> Closed.

Moving an audit to Review is gated by :func:`validate_audit_completion`.
Every transition updates the audit row and appends an ``audit_trail`` row
on the same connection, so both land in one transaction or neither does.
"""
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from prometheus_client import Counter
from sqlalchemy import text

from .checklist import _percent
from .db import audits_table, new_id, utcnow
from .errors import CompletionBlocked, InvalidTransition
from .logging_config import log_event
from .schemas import AuditStatus, CAStatus, NCStatus, Outcome
from .snapshot import row_to_audit
from .tenancy import TenantContext, load_owned
from .validation import ensure_uuid

ALLOWED_TRANSITIONS = {
    AuditStatus.Scheduled: {AuditStatus.InProgress, AuditStatus.Review},
    AuditStatus.InProgress: {AuditStatus.Review},
    AuditStatus.Review: {AuditStatus.Closed},
    AuditStatus.Closed: set(),
}

TRANSITION_COUNT = Counter(
    "audit_transitions_total",
    "Audit status transitions",
    labelnames=("from_status", "to_status"),
)


@dataclass
class CompletionValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    pending_items: int = 0
    non_compliant_without_nc: int = 0

    def as_dict(self) -> Dict:
        return asdict(self)


def validate_audit_completion(conn, ctx: TenantContext, audit_id: str) -> CompletionValidation:
    """Check whether an audit may move to Review.

    Both rules are always evaluated so the caller sees every problem at once:

    1. no checklist item may still be ``pending``;
    2. every ``non_compliant`` item needs at least one non-conformity.
    """
    audit_id = ensure_uuid(audit_id, "audit_id")
    load_owned(conn, audits_table, audit_id, ctx, "Audit")
    errors = []

    pending = conn.execute(
        text(
            "SELECT COUNT(*) FROM checklist_items "
            "WHERE audit_id = :aid AND org_id = :org_id AND outcome = :pending"
        ),
        {"aid": audit_id, "org_id": ctx.org_id, "pending": Outcome.pending.value},
    ).scalar_one()
    pending = int(pending or 0)
    if pending > 0:
        errors.append(
            f'{pending} checklist item(s) still have "pending" outcome. All items must be evaluated.'
        )

    uncovered = conn.execute(
        text(
            """
            SELECT COUNT(*) FROM checklist_items ci
            WHERE ci.audit_id = :aid AND ci.org_id = :org_id AND ci.outcome = :nc_outcome
              AND NOT EXISTS (
                SELECT 1 FROM nonconformities nc
                WHERE nc.checklist_item_id = ci.id AND nc.audit_id = ci.audit_id AND nc.org_id = ci.org_id
              )
            """
        ),
        {"aid": audit_id, "org_id": ctx.org_id, "nc_outcome": Outcome.non_compliant.value},
    ).scalar_one()
    uncovered = int(uncovered or 0)
    if uncovered > 0:
        errors.append(
            f"{uncovered} non-compliant item(s) do not have associated non-conformity records."
        )

    return CompletionValidation(
        is_valid=not errors,
        errors=errors,
        pending_items=pending,
        non_compliant_without_nc=uncovered,
    )


def _transition(conn, ctx: TenantContext, audit: Dict, target: AuditStatus) -> Dict:
    current = AuditStatus.coerce(audit["status"])
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value)
    now = utcnow()
    moved = conn.execute(
        text(
            "UPDATE audits SET status = :status, updated_at = :ts, updated_by = :user_id, request_id = :request_id "
            "WHERE id = :id AND org_id = :org_id AND status = :current"
        ),
        {
            "status": target.value,
            "current": audit["status"],
            "ts": now,
            "user_id": ctx.user_id,
            "request_id": ctx.request_id,
            "id": audit["id"],
            "org_id": ctx.org_id,
        },
    )
    if moved.rowcount == 0:
        # Another request moved the audit since it was read
        latest = load_owned(conn, audits_table, audit["id"], ctx, "Audit")
        if AuditStatus.coerce(latest["status"]) == target:
            return row_to_audit(latest)
        raise InvalidTransition(AuditStatus.coerce(latest["status"]).value, target.value)
    conn.execute(
        text(
            """
            INSERT INTO audit_trail (id, audit_id, org_id, old_status, new_status, changed_by, changed_at, request_id)
            VALUES (:id, :audit_id, :org_id, :old_status, :new_status, :changed_by, :ts, :request_id)
            """
        ),
        {
            "id": new_id(),
            "audit_id": audit["id"],
            "org_id": ctx.org_id,
            "old_status": current.value,
            "new_status": target.value,
            "changed_by": ctx.user_id,
            "ts": now,
            "request_id": ctx.request_id,
        },
    )
    TRANSITION_COUNT.labels(from_status=current.value, to_status=target.value).inc()
    log_event(
        "audit_status_changed",
        audit_id=audit["id"],
        org_id=ctx.org_id,
        old_status=current.value,
        new_status=target.value,
        changed_by=ctx.user_id,
        request_id=ctx.request_id,
    )
    return row_to_audit(load_owned(conn, audits_table, audit["id"], ctx, "Audit"))


def start_audit(conn, ctx: TenantContext, audit_id: str) -> Dict:
    audit_id = ensure_uuid(audit_id, "audit_id")
    audit = load_owned(conn, audits_table, audit_id, ctx, "Audit")
    return _transition(conn, ctx, audit, AuditStatus.InProgress)


def complete_audit(conn, ctx: TenantContext, audit_id: str) -> Dict:
    audit_id = ensure_uuid(audit_id, "audit_id")
    audit = load_owned(conn, audits_table, audit_id, ctx, "Audit")
    current = AuditStatus.coerce(audit["status"])
    if AuditStatus.Review not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, AuditStatus.Review.value)
    validation = validate_audit_completion(conn, ctx, audit_id)
    if not validation.is_valid:
        log_event(
            "audit_completion_blocked",
            level="warning",
            audit_id=audit_id,
            pending_items=validation.pending_items,
            non_compliant_without_nc=validation.non_compliant_without_nc,
            request_id=ctx.request_id,
        )
        raise CompletionBlocked(validation)
    return _transition(conn, ctx, audit, AuditStatus.Review)


def close_audit(conn, ctx: TenantContext, audit_id: str) -> Dict:
    audit_id = ensure_uuid(audit_id, "audit_id")
    audit = load_owned(conn, audits_table, audit_id, ctx, "Audit")
    if AuditStatus.coerce(audit["status"]) == AuditStatus.Closed:
        # Already closed: no second trail entry
        return row_to_audit(audit)
    return _transition(conn, ctx, audit, AuditStatus.Closed)


def get_audit_summary(conn, ctx: TenantContext, audit_id: str) -> Dict:
    audit_id = ensure_uuid(audit_id, "audit_id")
    load_owned(conn, audits_table, audit_id, ctx, "Audit")
    params = {"aid": audit_id, "org_id": ctx.org_id}
    outcomes = conn.execute(
        text("SELECT outcome, COUNT(*) AS n FROM checklist_items WHERE audit_id = :aid AND org_id = :org_id GROUP BY outcome"),
        params,
    ).mappings().all()
    counts = {r["outcome"]: int(r["n"]) for r in outcomes}
    total = sum(counts.values())
    compliant = counts.get(Outcome.compliant.value, 0)
    not_applicable = counts.get(Outcome.not_applicable.value, 0)

    ncs = conn.execute(
        text("SELECT status, COUNT(*) AS n FROM nonconformities WHERE audit_id = :aid AND org_id = :org_id GROUP BY status"),
        params,
    ).mappings().all()
    nc_counts = {r["status"]: int(r["n"]) for r in ncs}

    cas = conn.execute(
        text(
            "SELECT ca.status, COUNT(*) AS n FROM corrective_actions ca "
            "JOIN nonconformities nc ON nc.id = ca.nonconformity_id "
            "WHERE nc.audit_id = :aid AND nc.org_id = :org_id AND ca.org_id = :org_id GROUP BY ca.status"
        ),
        params,
    ).mappings().all()
    ca_counts = {r["status"]: int(r["n"]) for r in cas}

    return {
        "total_items": total,
        "compliant": compliant,
        "non_compliant": counts.get(Outcome.non_compliant.value, 0),
        "not_applicable": not_applicable,
        "pending": counts.get(Outcome.pending.value, 0),
        "compliance_percentage": _percent(compliant + not_applicable, total),
        "nonconformities_count": sum(nc_counts.values()),
        "open_nonconformities": nc_counts.get(NCStatus.open.value, 0),
        "completed_actions": ca_counts.get(CAStatus.completed.value, 0),
        "pending_actions": ca_counts.get(CAStatus.pending.value, 0),
    }


def get_audit_trail(conn, ctx: TenantContext, audit_id: str, limit: Optional[int] = None) -> List[Dict]:
    """Status history, newest first."""
    audit_id = ensure_uuid(audit_id, "audit_id")
    load_owned(conn, audits_table, audit_id, ctx, "Audit")
    sql = (
        "SELECT id, audit_id, old_status, new_status, changed_by, changed_at FROM audit_trail "
        "WHERE audit_id = :aid AND org_id = :org_id ORDER BY changed_at DESC, id DESC"
    )
    params = {"aid": audit_id, "org_id": ctx.org_id}
    if limit:
        sql += " LIMIT :limit"
        params["limit"] = int(limit)
    rows = conn.execute(text(sql), params).mappings().all()
    return [dict(r) for r in rows]


def get_latest_transition(conn, ctx: TenantContext, audit_id: str) -> Optional[Dict]:
    entries = get_audit_trail(conn, ctx, audit_id, limit=1)
    return entries[0] if entries else None
