"""initial import pipeline tables: users, audits, entities, audit_logs, import_jobs,
observations, observation_review_cycles, import_job_records, import_mapping_templates

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    ]


def upgrade() -> None:
    # ─── users ───
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_name', 'users', ['name'])

    # ─── audits / entities ───
    op.create_table(
        'audits',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('audit_type', sa.String(50), nullable=False, server_default='INTERNAL'),
        sa.Column('status', sa.String(30), nullable=False, server_default='IN_PROGRESS'),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'entities',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_entities_code', 'entities', ['code'], unique=True)
    op.create_index('ix_entities_name', 'entities', ['name'])

    # ─── audit_logs (append-only) ───
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('actor_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('actor_email', sa.String(255), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', UUID(as_uuid=True), nullable=True),
        sa.Column('before_state', sa.Text, nullable=True),
        sa.Column('after_state', sa.Text, nullable=True),
        sa.Column('ip_address', sa.String(50), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.execute("REVOKE UPDATE, DELETE ON audit_logs FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON audit_logs TO PUBLIC;")

    # ─── import_jobs ───
    op.create_table(
        'import_jobs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('audit_id', UUID(as_uuid=True), sa.ForeignKey('audits.id'), nullable=False),
        sa.Column('uploaded_by', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('original_filename', sa.String(255), nullable=False),
        sa.Column('file_extension', sa.String(10), nullable=False),
        sa.Column('file_path', sa.String(500), nullable=False),
        sa.Column('file_checksum', sa.String(64), nullable=False),
        sa.Column('file_size', sa.Integer, nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='UPLOADED'),
        sa.Column('column_mapping', sa.JSON, nullable=True),
        sa.Column('total_rows', sa.Integer, nullable=False, server_default='0'),
        sa.Column('processed_rows', sa.Integer, nullable=False, server_default='0'),
        sa.Column('successful_rows', sa.Integer, nullable=False, server_default='0'),
        sa.Column('failed_rows', sa.Integer, nullable=False, server_default='0'),
        sa.Column('errors', sa.JSON, nullable=False, server_default=sa.text("'[]'")),
        sa.Column('error_file_path', sa.String(500), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rolled_back_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rolled_back_by', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('rollback_reason', sa.Text, nullable=True),
        sa.Column('rolled_back_count', sa.Integer, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_import_jobs_audit_id', 'import_jobs', ['audit_id'])
    op.create_index('ix_import_jobs_file_checksum', 'import_jobs', ['file_checksum'])
    op.create_index('ix_import_jobs_status', 'import_jobs', ['status'])

    # ─── observations ───
    op.create_table(
        'observations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('audit_id', UUID(as_uuid=True), sa.ForeignKey('audits.id'), nullable=False),
        sa.Column('entity_id', UUID(as_uuid=True), sa.ForeignKey('entities.id'), nullable=True),
        sa.Column('owner_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('sequence_number', sa.Integer, nullable=False),
        sa.Column('external_reference', sa.String(100), nullable=True),
        sa.Column('audit_source', sa.String(255), nullable=True),
        sa.Column('control_domain_area', sa.String(255), nullable=True),
        sa.Column('control_clause_ref', sa.String(100), nullable=True),
        sa.Column('control_requirement', sa.Text, nullable=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('finding_classification', sa.String(100), nullable=True),
        sa.Column('risk_rating', sa.String(20), nullable=False, server_default='MEDIUM'),
        sa.Column('root_cause', sa.Text, nullable=True),
        sa.Column('impact', sa.Text, nullable=True),
        sa.Column('recommendation', sa.Text, nullable=True),
        sa.Column('responsible_party_text', sa.String(255), nullable=True),
        sa.Column('corrective_action_plan', sa.Text, nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='OPEN'),
        sa.Column('open_date', sa.Date, nullable=False),
        sa.Column('target_date', sa.Date, nullable=False),
        sa.Column('recurrence_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('import_job_id', UUID(as_uuid=True), sa.ForeignKey('import_jobs.id'), nullable=True),
        sa.Column('import_row_number', sa.Integer, nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('audit_id', 'sequence_number', name='uq_observations_audit_sequence'),
    )
    op.create_index('ix_observations_audit_id', 'observations', ['audit_id'])
    op.create_index('ix_observations_import_job_id', 'observations', ['import_job_id'])
    op.create_index(
        'uq_observations_audit_external_ref',
        'observations',
        ['audit_id', 'external_reference'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table(
        'observation_review_cycles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column(
            'observation_id', UUID(as_uuid=True),
            sa.ForeignKey('observations.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('period', sa.String(20), nullable=False),
        sa.Column('comment', sa.Text, nullable=False),
        sa.Column('created_by', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_observation_review_cycles_observation_id', 'observation_review_cycles', ['observation_id'])

    # ─── rollback manifest ───
    op.create_table(
        'import_job_records',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('job_id', UUID(as_uuid=True), sa.ForeignKey('import_jobs.id'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('target_type', sa.String(50), nullable=False),
        sa.Column('target_id', UUID(as_uuid=True), nullable=False),
        sa.Column('row_number', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('job_id', 'position', name='uq_import_job_records_position'),
    )
    op.create_index('ix_import_job_records_job_id', 'import_job_records', ['job_id'])

    # ─── mapping templates ───
    op.create_table(
        'import_mapping_templates',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('mappings', sa.JSON, nullable=False, server_default=sa.text("'[]'")),
        sa.Column('is_default', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_by', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('import_mapping_templates')
    op.drop_index('ix_import_job_records_job_id', table_name='import_job_records')
    op.drop_table('import_job_records')
    op.drop_index('ix_observation_review_cycles_observation_id', table_name='observation_review_cycles')
    op.drop_table('observation_review_cycles')
    op.drop_index('uq_observations_audit_external_ref', table_name='observations')
    op.drop_index('ix_observations_import_job_id', table_name='observations')
    op.drop_index('ix_observations_audit_id', table_name='observations')
    op.drop_table('observations')
    op.drop_index('ix_import_jobs_status', table_name='import_jobs')
    op.drop_index('ix_import_jobs_file_checksum', table_name='import_jobs')
    op.drop_index('ix_import_jobs_audit_id', table_name='import_jobs')
    op.drop_table('import_jobs')
    op.execute("GRANT UPDATE, DELETE ON audit_logs TO PUBLIC;")
    op.drop_table('audit_logs')
    op.drop_index('ix_entities_name', table_name='entities')
    op.drop_index('ix_entities_code', table_name='entities')
    op.drop_table('entities')
    op.drop_table('audits')
    op.drop_index('ix_users_name', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
