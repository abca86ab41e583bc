"""initial audit schema

Revision ID: 000001_initial
Revises: 
Create Date: 2026-10-19 00:00:01

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '000001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('vat_number', sa.String()),
        sa.Column('slug', sa.String(), nullable=False, unique=True),
        sa.Column('created_at', sa.String(), nullable=False),
        sa.Column('updated_at', sa.String(), nullable=False),
    )
    op.create_table(
        'profiles',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String()),
        sa.Column('org_id', sa.String(), sa.ForeignKey('organizations.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.String(), nullable=False),
    )
    op.create_table(
        'checklist_templates',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('org_id', sa.String(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.String()),
        sa.Column('created_at', sa.String(), nullable=False),
        sa.Column('updated_at', sa.String(), nullable=False),
        sa.Column('created_by', sa.String()),
    )
    op.create_table(
        'template_questions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('template_id', sa.String(), sa.ForeignKey('checklist_templates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question', sa.String(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('deleted_at', sa.String()),
        sa.Column('created_at', sa.String(), nullable=False),
    )
    op.create_table(
        'audits',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('org_id', sa.String(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('scheduled_date', sa.String()),
        sa.Column('template_id', sa.String()),
        sa.Column('created_at', sa.String(), nullable=False),
        sa.Column('updated_at', sa.String(), nullable=False),
        sa.Column('created_by', sa.String()),
        sa.Column('updated_by', sa.String()),
        sa.Column('request_id', sa.String()),
    )
    op.create_table(
        'checklists',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('audit_id', sa.String(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('template_id', sa.String()),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('created_at', sa.String(), nullable=False),
    )
    op.create_table(
        'checklist_items',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('audit_id', sa.String(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('checklist_id', sa.String(), sa.ForeignKey('checklists.id', ondelete='CASCADE')),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('question', sa.String(), nullable=False),
        sa.Column('outcome', sa.String(), nullable=False, server_default='pending'),
        sa.Column('notes', sa.String()),
        sa.Column('evidence_url', sa.String()),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.String(), nullable=False),
        sa.Column('updated_at', sa.String(), nullable=False),
        sa.Column('updated_by', sa.String()),
    )
    op.create_table(
        'nonconformities',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('audit_id', sa.String(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('checklist_item_id', sa.String(), sa.ForeignKey('checklist_items.id'), nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.String()),
        sa.Column('severity', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('created_at', sa.String(), nullable=False),
        sa.Column('updated_at', sa.String(), nullable=False),
        sa.Column('closed_at', sa.String()),
        sa.Column('created_by', sa.String()),
    )
    op.create_table(
        'corrective_actions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('nonconformity_id', sa.String(), sa.ForeignKey('nonconformities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('root_cause', sa.String()),
        sa.Column('action_plan', sa.String()),
        sa.Column('responsible_person_name', sa.String()),
        sa.Column('responsible_person_email', sa.String()),
        sa.Column('target_completion_date', sa.String()),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('completed_at', sa.String()),
        sa.Column('created_at', sa.String(), nullable=False),
        sa.Column('updated_at', sa.String(), nullable=False),
        sa.Column('created_by', sa.String()),
    )
    # Append-only: no FK cascade so history survives audit deletes
    op.create_table(
        'audit_trail',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('audit_id', sa.String(), nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('old_status', sa.String()),
        sa.Column('new_status', sa.String(), nullable=False),
        sa.Column('changed_by', sa.String()),
        sa.Column('changed_at', sa.String(), nullable=False),
        sa.Column('request_id', sa.String()),
    )


def downgrade() -> None:
    for table in [
        'audit_trail', 'corrective_actions', 'nonconformities', 'checklist_items',
        'checklists', 'audits', 'template_questions', 'checklist_templates',
        'profiles', 'organizations',
    ]:
        op.drop_table(table)
