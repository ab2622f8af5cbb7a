"""Initial governance ledger, report run and job snapshot tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Ledger
    op.create_table(
        'ledger_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('sequence', sa.BigInteger(), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('severity', sa.String(length=32), nullable=False),
        sa.Column('outcome', sa.String(length=32), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('target_type', sa.String(length=64), nullable=True),
        sa.Column('target_id', sa.String(length=64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('previous_hash', sa.String(length=64), nullable=False),
        sa.Column('hash', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'previous_hash', name='uq_ledger_org_previous_hash'),
        sa.UniqueConstraint('organization_id', 'sequence', name='uq_ledger_org_sequence'),
        sa.UniqueConstraint('organization_id', 'idempotency_key', name='uq_ledger_org_idempotency_key'),
    )
    op.create_index('ix_ledger_events_organization_id', 'ledger_events', ['organization_id'])
    op.create_index('ix_ledger_events_event_type', 'ledger_events', ['event_type'])
    op.create_index('ix_ledger_events_category', 'ledger_events', ['category'])
    op.create_index('ix_ledger_events_actor_id', 'ledger_events', ['actor_id'])
    op.create_index('ix_ledger_events_created_at', 'ledger_events', ['created_at'])
    op.create_index('ix_ledger_events_hash', 'ledger_events', ['hash'], unique=True)
    op.create_index('ix_ledger_events_org_target', 'ledger_events', ['organization_id', 'target_type', 'target_id'])

    op.create_table(
        'ledger_chain_heads',
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('last_sequence', sa.BigInteger(), nullable=False),
        sa.Column('last_hash', sa.String(length=64), nullable=False),
        sa.Column('last_event_id', sa.String(length=36), nullable=False),
        sa.Column('last_created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('organization_id'),
    )

    op.create_table(
        'ledger_checkpoints',
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('verified_through_event_id', sa.String(length=36), nullable=True),
        sa.Column('verified_through_sequence', sa.BigInteger(), nullable=True),
        sa.Column('verified_through_hash', sa.String(length=64), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('error_details', sa.JSON(), nullable=True),
        sa.Column('checked_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('organization_id'),
    )

    # Report runs and signatures
    op.create_table(
        'report_runs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('job_id', sa.String(length=64), nullable=False),
        sa.Column('packet_type', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('data_hash', sa.String(length=64), nullable=False),
        sa.Column('canonical_payload', sa.Text(), nullable=False),
        sa.Column('generated_by', sa.String(length=64), nullable=False),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('completed_by', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_report_runs_organization_id', 'report_runs', ['organization_id'])
    op.create_index('ix_report_runs_job_id', 'report_runs', ['job_id'])
    op.create_index('ix_report_runs_status', 'report_runs', ['status'])
    op.create_index('ix_report_runs_data_hash', 'report_runs', ['data_hash'])
    op.create_index('ix_report_runs_generated_at', 'report_runs', ['generated_at'])

    op.create_table(
        'report_signatures',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('report_run_id', sa.String(length=36), nullable=False),
        sa.Column('signer_user_id', sa.String(length=64), nullable=True),
        sa.Column('signer_name', sa.String(length=255), nullable=False),
        sa.Column('signer_title', sa.String(length=255), nullable=False),
        sa.Column('signature_role', sa.String(length=32), nullable=False),
        sa.Column('signature_svg', sa.Text(), nullable=False),
        sa.Column('attestation_text', sa.Text(), nullable=False),
        sa.Column('data_hash', sa.String(length=64), nullable=False),
        sa.Column('signature_hash', sa.String(length=64), nullable=False),
        sa.Column('signed_at', sa.DateTime(), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_by', sa.String(length=64), nullable=True),
        sa.Column('revoked_reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['report_run_id'], ['report_runs.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_report_signatures_organization_id', 'report_signatures', ['organization_id'])
    op.create_index('ix_report_signatures_report_run_id', 'report_signatures', ['report_run_id'])
    op.create_index('ix_report_signatures_signer_user_id', 'report_signatures', ['signer_user_id'])
    # One active signature per role per run
    op.create_index(
        'uq_report_signatures_active_role',
        'report_signatures',
        ['report_run_id', 'signature_role'],
        unique=True,
        postgresql_where=sa.text('revoked_at IS NULL'),
        sqlite_where=sa.text('revoked_at IS NULL'),
    )

    # Job snapshot tables
    op.create_table(
        'jobs',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('client_name', sa.String(length=255), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('job_type', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_jobs_organization_id', 'jobs', ['organization_id'])

    op.create_table(
        'job_risk_scores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_id', sa.String(length=64), nullable=False),
        sa.Column('overall_score', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('risk_level', sa.String(length=32), nullable=False),
        sa.Column('factors', sa.JSON(), nullable=True),
        sa.Column('calculated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['jobs.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id'),
    )
    op.create_index('ix_job_risk_scores_id', 'job_risk_scores', ['id'])

    op.create_table(
        'mitigation_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('done', sa.Boolean(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('completed_by', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['jobs.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mitigation_items_id', 'mitigation_items', ['id'])
    op.create_index('ix_mitigation_items_job_id', 'mitigation_items', ['job_id'])

    op.create_table(
        'job_documents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('doc_type', sa.String(length=50), nullable=False),
        sa.Column('storage_path', sa.String(length=1024), nullable=True),
        sa.Column('sha256', sa.String(length=64), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['jobs.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_job_documents_id', 'job_documents', ['id'])
    op.create_index('ix_job_documents_job_id', 'job_documents', ['job_id'])


def downgrade() -> None:
    op.drop_index('ix_job_documents_job_id', table_name='job_documents')
    op.drop_index('ix_job_documents_id', table_name='job_documents')
    op.drop_table('job_documents')
    op.drop_index('ix_mitigation_items_job_id', table_name='mitigation_items')
    op.drop_index('ix_mitigation_items_id', table_name='mitigation_items')
    op.drop_table('mitigation_items')
    op.drop_index('ix_job_risk_scores_id', table_name='job_risk_scores')
    op.drop_table('job_risk_scores')
    op.drop_index('ix_jobs_organization_id', table_name='jobs')
    op.drop_table('jobs')
    op.drop_index('uq_report_signatures_active_role', table_name='report_signatures')
    op.drop_index('ix_report_signatures_signer_user_id', table_name='report_signatures')
    op.drop_index('ix_report_signatures_report_run_id', table_name='report_signatures')
    op.drop_index('ix_report_signatures_organization_id', table_name='report_signatures')
    op.drop_table('report_signatures')
    op.drop_index('ix_report_runs_generated_at', table_name='report_runs')
    op.drop_index('ix_report_runs_data_hash', table_name='report_runs')
    op.drop_index('ix_report_runs_status', table_name='report_runs')
    op.drop_index('ix_report_runs_job_id', table_name='report_runs')
    op.drop_index('ix_report_runs_organization_id', table_name='report_runs')
    op.drop_table('report_runs')
    op.drop_table('ledger_checkpoints')
    op.drop_table('ledger_chain_heads')
    op.drop_index('ix_ledger_events_org_target', table_name='ledger_events')
    op.drop_index('ix_ledger_events_hash', table_name='ledger_events')
    op.drop_index('ix_ledger_events_created_at', table_name='ledger_events')
    op.drop_index('ix_ledger_events_actor_id', table_name='ledger_events')
    op.drop_index('ix_ledger_events_category', table_name='ledger_events')
    op.drop_index('ix_ledger_events_event_type', table_name='ledger_events')
    op.drop_index('ix_ledger_events_organization_id', table_name='ledger_events')
    op.drop_table('ledger_events')
