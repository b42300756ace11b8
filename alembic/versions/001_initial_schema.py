"""Initial schema for imported contacts and transactions

Revision ID: 001_initial_schema
Revises: 
Create Date: 2025-10-14

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create contacts table
    op.create_table(
        'contacts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False, comment='Name shown for the contact'),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone_number', sa.String(length=64), nullable=True),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('first_name', sa.String(length=255), nullable=True),
        sa.Column('last_name', sa.String(length=255), nullable=True),
        sa.Column('contact_type', sa.String(length=20), server_default='supplier', nullable=False,
                  comment='supplier, customer or employee'),
        sa.Column('website', sa.String(length=255), nullable=True),
        sa.Column('address_line1', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('country', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('import_id', sa.String(length=255), nullable=True,
                  comment='Import job that created the contact'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint(
            "contact_type IN ('customer', 'supplier', 'employee')",
            name='contacts_contact_type_check'
        ),
        sa.PrimaryKeyConstraint('id'),
        comment='Contacts created from spreadsheet imports'
    )
    op.create_index('idx_contacts_email', 'contacts', ['email'])
    op.create_index('idx_contacts_import_id', 'contacts', ['import_id'])

    # Create transactions table
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.String(length=255), nullable=False,
                  comment='Bank account the statement belongs to'),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False,
                  comment='Signed amount; credits positive'),
        sa.Column('import_id', sa.String(length=255), nullable=True,
                  comment='Import job that created the transaction'),
        sa.Column('raw_data', postgresql.JSONB(astext_type=sa.Text()), server_default='{}',
                  nullable=False, comment='Source row keyed by column header'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        comment='Bank transactions created from statement imports'
    )
    op.create_index('idx_transactions_account_date', 'transactions', ['account_id', 'date'])
    op.create_index('idx_transactions_import_id', 'transactions', ['import_id'])


def downgrade() -> None:
    op.drop_index('idx_transactions_import_id', table_name='transactions')
    op.drop_index('idx_transactions_account_date', table_name='transactions')
    op.drop_table('transactions')

    op.drop_index('idx_contacts_import_id', table_name='contacts')
    op.drop_index('idx_contacts_email', table_name='contacts')
    op.drop_table('contacts')
