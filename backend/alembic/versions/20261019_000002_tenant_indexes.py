"""tenant and lookup indexes

Revision ID: 000002_tenant_indexes
Revises: 000001_initial
Create Date: 2026-10-19 00:20:00

"""
from alembic import op


revision = '000002_tenant_indexes'
down_revision = '000001_initial'
branch_labels = None
depends_on = None

INDEXES = [
    ('ix_profiles_org_id', 'profiles', ['org_id']),
    ('ix_checklist_templates_org_id', 'checklist_templates', ['org_id']),
    ('ix_template_questions_template_order', 'template_questions', ['template_id', 'sort_order']),
    ('ix_audits_org_status', 'audits', ['org_id', 'status']),
    ('ix_audits_org_scheduled', 'audits', ['org_id', 'scheduled_date']),
    ('ix_checklists_audit_id', 'checklists', ['audit_id']),
    ('ix_checklist_items_audit_outcome', 'checklist_items', ['audit_id', 'outcome']),
    ('ix_checklist_items_org_id', 'checklist_items', ['org_id']),
    ('ix_nonconformities_audit_item', 'nonconformities', ['audit_id', 'checklist_item_id']),
    ('ix_nonconformities_org_status', 'nonconformities', ['org_id', 'status']),
    ('ix_corrective_actions_nc_id', 'corrective_actions', ['nonconformity_id']),
    ('ix_corrective_actions_org_status', 'corrective_actions', ['org_id', 'status']),
    ('ix_audit_trail_audit_changed', 'audit_trail', ['audit_id', 'changed_at']),
]


def upgrade() -> None:
    for name, table, cols in INDEXES:
        op.create_index(name, table, cols)


def downgrade() -> None:
    for name, table, _ in reversed(INDEXES):
        op.drop_index(name, table_name=table)
