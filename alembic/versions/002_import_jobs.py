"""Add import job tracking

Revision ID: 002_import_jobs
Revises: 001_initial_schema
Create Date: 2025-10-15

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '002_import_jobs'
down_revision = '001_initial_schema'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create the import_jobs table used by the progress endpoints.
    """
    op.create_table(
        'import_jobs',
        sa.Column('id', sa.String(length=255), nullable=False, comment='Import id / Celery task UUID'),
        sa.Column('entity_type', sa.String(length=20), nullable=False, comment='contacts or transactions'),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False,
                  comment='Current job status'),
        sa.Column('filename', sa.String(length=255), nullable=True, comment='Original upload filename'),
        sa.Column('total', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created', sa.Integer(), server_default='0', nullable=False),
        sa.Column('skipped', sa.Integer(), server_default='0', nullable=False),
        sa.Column('failed', sa.Integer(), server_default='0', nullable=False),
        sa.Column('progress', sa.Numeric(precision=5, scale=2), server_default='0', nullable=False,
                  comment='Progress percentage (0.00 to 100.00)'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('params', postgresql.JSONB(astext_type=sa.Text()), server_default='{}',
                  nullable=False, comment='Mapping and import options'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'),
                  nullable=False, comment='Job creation timestamp'),
        sa.Column('started_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=True,
                  comment='User or API key that created the job'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name='import_jobs_status_check'
        ),
        sa.CheckConstraint(
            "entity_type IN ('contacts', 'transactions')",
            name='import_jobs_entity_type_check'
        ),
        sa.PrimaryKeyConstraint('id'),
        comment='Tracks spreadsheet import jobs'
    )
    op.create_index('idx_import_jobs_status', 'import_jobs', ['status'])
    op.create_index('idx_import_jobs_created_at', 'import_jobs', ['created_at'])


def downgrade() -> None:
    op.drop_index('idx_import_jobs_created_at', table_name='import_jobs')
    op.drop_index('idx_import_jobs_status', table_name='import_jobs')
    op.drop_table('import_jobs')
