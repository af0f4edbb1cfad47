"""Create audit templates, sessions, responses and reports

Key points:
1. `audit_responses` has a unique (session_id, question_id) constraint; the
   response ledger upserts against it
2. `audit_sessions.status` stores enum *values* ("In Progress")
3. Responses and reports are deleted with their session

Revision ID: create_audit_tables
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = 'create_audit_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'audit_templates',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('sections', sa.JSON, nullable=False),  # [{name, questions: [{id, text, type}]}]
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_templates_organization_id', 'audit_templates', ['organization_id'])

    session_status = postgresql.ENUM('Pending', 'In Progress', 'Completed', name='sessionstatus')
    session_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'audit_sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('template_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('audit_templates.id'), nullable=False),
        sa.Column('template_name', sa.String(255), nullable=False),
        sa.Column('auditor_id', sa.String(255), nullable=True),
        sa.Column('auditor_name', sa.String(255), nullable=True),
        sa.Column('auditor_email', sa.String(320), nullable=True),
        sa.Column('department', sa.String(255), nullable=False),
        sa.Column('due_date', sa.Date, nullable=True),
        sa.Column('status', postgresql.ENUM(name='sessionstatus', create_type=False),
                  nullable=False, server_default='Pending'),
        sa.Column('progress', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_audit_sessions_organization_id', 'audit_sessions', ['organization_id'])
    op.create_index('ix_audit_sessions_org_created', 'audit_sessions', ['organization_id', 'created_at'])

    op.create_table(
        'audit_responses',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('session_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('audit_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('question_id', sa.String(100), nullable=False),
        sa.Column('status', sa.String(255), nullable=False, server_default=''),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('evidence_path', sa.String(500), nullable=True),
        sa.Column('is_resolved', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('resolved_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_unique_constraint(
        'uq_audit_responses_session_question',
        'audit_responses',
        ['session_id', 'question_id']
    )
    op.create_index('ix_audit_responses_organization_id', 'audit_responses', ['organization_id'])
    op.create_index('ix_audit_responses_org_status', 'audit_responses', ['organization_id', 'status'])

    op.create_table(
        'ai_audit_reports',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('session_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('audit_sessions.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('report_content', sa.Text, nullable=False),
        sa.Column('model', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_ai_audit_reports_organization_id', 'ai_audit_reports', ['organization_id'])


def downgrade() -> None:
    op.drop_table('ai_audit_reports')
    op.drop_table('audit_responses')
    op.drop_table('audit_sessions')
    op.drop_table('audit_templates')
    postgresql.ENUM(name='sessionstatus').drop(op.get_bind(), checkfirst=True)
