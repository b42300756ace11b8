"""
SQLAlchemy models for imported records.

This module defines the database schema using SQLAlchemy ORM,
matching the schema defined in Alembic migrations.
"""

from sqlalchemy import (
    JSON, Column, Date, Integer, Numeric, String, Text, TIMESTAMP,
    CheckConstraint, Index, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB on PostgreSQL, generic JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), 'postgresql')


class Contact(Base):
    """A customer or supplier created by a contacts import."""

    __tablename__ = 'contacts'
    __table_args__ = (
        CheckConstraint(
            "contact_type IN ('customer', 'supplier', 'employee')",
            name='contacts_contact_type_check'
        ),
        Index('idx_contacts_email', 'email'),
        Index('idx_contacts_import_id', 'import_id'),
        {'comment': 'Contacts created from spreadsheet imports'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    display_name = Column(
        String(255),
        nullable=False,
        comment='Name shown for the contact'
    )
    email = Column(String(255), nullable=True)
    phone_number = Column(String(64), nullable=True)
    company_name = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    contact_type = Column(
        String(20),
        server_default='supplier',
        nullable=False,
        comment='supplier, customer or employee'
    )
    website = Column(String(255), nullable=True)
    address_line1 = Column(String(255), nullable=True)
    city = Column(String(128), nullable=True)
    country = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)
    import_id = Column(
        String(255),
        nullable=True,
        comment='Import job that created the contact'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<Contact(id={self.id}, display_name='{self.display_name}')>"


class Transaction(Base):
    """A bank account transaction created by a transactions import."""

    __tablename__ = 'transactions'
    __table_args__ = (
        Index('idx_transactions_account_date', 'account_id', 'date'),
        Index('idx_transactions_import_id', 'import_id'),
        {'comment': 'Bank transactions created from statement imports'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    account_id = Column(
        String(255),
        nullable=False,
        comment='Bank account the statement belongs to'
    )
    date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(
        Numeric(precision=18, scale=2),
        nullable=False,
        comment='Signed amount; credits positive'
    )
    import_id = Column(
        String(255),
        nullable=True,
        comment='Import job that created the transaction'
    )
    raw_data = Column(
        JSONType,
        server_default='{}',
        nullable=False,
        comment='Source row keyed by column header'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<Transaction(id={self.id}, date={self.date}, amount={self.amount})>"
