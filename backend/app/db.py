import os
import uuid
from datetime import datetime
from pathlib import Path

from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    String,
    Integer,
)


# --- Config ---
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_DB_URL = os.getenv("DATABASE_URL", f"sqlite:///{ROOT_DIR}/backend/app.db")

# SQLAlchemy engine and metadata
engine = create_engine(DEFAULT_DB_URL, future=True)
metadata = MetaData()


organizations_table = Table(
    "organizations",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("vat_number", String),
    Column("slug", String, nullable=False, unique=True),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
)

# Auth subjects and the organization they belong to
profiles_table = Table(
    "profiles",
    metadata,
    Column("id", String, primary_key=True),
    Column("email", String),
    Column("org_id", String),
    Column("created_at", String, nullable=False),
)

checklist_templates_table = Table(
    "checklist_templates",
    metadata,
    Column("id", String, primary_key=True),
    Column("org_id", String, nullable=False),
    Column("title", String, nullable=False),
    Column("description", String),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    Column("created_by", String),
)

template_questions_table = Table(
    "template_questions",
    metadata,
    Column("id", String, primary_key=True),
    Column("template_id", String, nullable=False),
    Column("question", String, nullable=False),
    Column("sort_order", Integer, nullable=False),
    Column("deleted_at", String),
    Column("created_at", String, nullable=False),
)

audits_table = Table(
    "audits",
    metadata,
    Column("id", String, primary_key=True),
    Column("org_id", String, nullable=False),
    Column("title", String, nullable=False),
    Column("status", String, nullable=False),
    Column("scheduled_date", String),
    Column("template_id", String),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    Column("created_by", String),
    Column("updated_by", String),
    Column("request_id", String),
)

checklists_table = Table(
    "checklists",
    metadata,
    Column("id", String, primary_key=True),
    Column("audit_id", String, nullable=False),
    Column("org_id", String, nullable=False),
    Column("template_id", String),
    Column("title", String, nullable=False),
    Column("created_at", String, nullable=False),
)

checklist_items_table = Table(
    "checklist_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("audit_id", String, nullable=False),
    Column("checklist_id", String),
    Column("org_id", String, nullable=False),
    Column("question", String, nullable=False),
    Column("outcome", String, nullable=False),
    Column("notes", String),
    Column("evidence_url", String),
    Column("sort_order", Integer, nullable=False),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    Column("updated_by", String),
)

nonconformities_table = Table(
    "nonconformities",
    metadata,
    Column("id", String, primary_key=True),
    Column("audit_id", String, nullable=False),
    Column("checklist_item_id", String, nullable=False),
    Column("org_id", String, nullable=False),
    Column("title", String, nullable=False),
    Column("description", String),
    Column("severity", String, nullable=False),
    Column("status", String, nullable=False),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    Column("closed_at", String),
    Column("created_by", String),
)

corrective_actions_table = Table(
    "corrective_actions",
    metadata,
    Column("id", String, primary_key=True),
    Column("nonconformity_id", String, nullable=False),
    Column("org_id", String, nullable=False),
    Column("description", String, nullable=False),
    Column("root_cause", String),
    Column("action_plan", String),
    Column("responsible_person_name", String),
    Column("responsible_person_email", String),
    Column("target_completion_date", String),
    Column("status", String, nullable=False),
    Column("completed_at", String),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    Column("created_by", String),
)

# Append-only: rows are inserted by lifecycle transitions and never updated
audit_trail_table = Table(
    "audit_trail",
    metadata,
    Column("id", String, primary_key=True),
    Column("audit_id", String, nullable=False),
    Column("org_id", String, nullable=False),
    Column("old_status", String),
    Column("new_status", String, nullable=False),
    Column("changed_by", String),
    Column("changed_at", String, nullable=False),
    Column("request_id", String),
)


def init_db(bind=None):
    metadata.create_all(bind or engine)


def utcnow() -> str:
    return datetime.utcnow().isoformat()


def new_id() -> str:
    return str(uuid.uuid4())
