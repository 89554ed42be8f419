"""
Statement Core - Bank Statement Database Models

The durable store behind the reconciliation core.

Tables:
- clients: Foreign-key anchor for statements (identified by access code)
- account_statements: One bank statement for one client/period (aggregate root)
- statement_transactions: The ledger rows owned by a statement
- statement_checks: Check records listed on the statement
- statement_summaries: Derived totals, exactly one per statement
- classification_knowledge: Append-only (pattern -> split) associations
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime,
    ForeignKey, Index, Numeric
)
from sqlalchemy.orm import relationship

from database.connection import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS ====================

class TransactionKind(str, PyEnum):
    """Kind of a ledger row, used to partition the summary totals"""
    CREDIT = "credit"
    DEBIT = "debit"
    CHECK = "check"
    FEE = "fee"


# Lifecycle values are an open set; this one is the column default
DEFAULT_STATUS_UPLOADED = "uploaded"

MONEY = Numeric(12, 2)

# Text column widths, shared with the payload models
LABEL_LENGTH = 255
NUMBER_LENGTH = 100
SHORT_LENGTH = 50
KIND_LENGTH = 20


# ==================== DATABASE MODELS ====================

class ClientDB(Base):
    """
    Owner of zero or more statements.

    Only used as a foreign-key anchor and for access-code lookups at ingestion.
    """
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_name = Column(String(255), nullable=False)
    access_code = Column(String(100), nullable=False, unique=True)
    contact_name = Column(String(255), nullable=True)
    contact_phone = Column(String(50), nullable=True)
    client_type = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)

    statements = relationship("AccountStatementDB", back_populates="client", lazy="raise")


class AccountStatementDB(Base):
    """
    One bank statement for one client and period.

    Contains:
    - Bank and holder metadata
    - Statement period and balances
    - Lifecycle status (open string set)
    - Reference to the source document
    """
    __tablename__ = "account_statements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    bank_name = Column(String(LABEL_LENGTH), nullable=True)
    account_holder = Column(String(LABEL_LENGTH), nullable=False)
    account_number = Column(String(NUMBER_LENGTH), nullable=False)
    statement_from_date = Column(Date, nullable=False)
    statement_to_date = Column(Date, nullable=False)
    beginning_balance = Column(MONEY, nullable=False)
    ending_balance = Column(MONEY, nullable=False)
    month_reference = Column(String(SHORT_LENGTH), nullable=True)
    status = Column(String(SHORT_LENGTH), nullable=True, default=DEFAULT_STATUS_UPLOADED)

    # Source document reference
    pdf_url = Column(Text, nullable=True)
    pdf_file_name = Column(String(LABEL_LENGTH), nullable=True)
    pdf_upload_date = Column(DateTime(timezone=True), nullable=True)
    pdf_file_size = Column(Integer, nullable=True)  # bytes

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    client = relationship("ClientDB", back_populates="statements", lazy="raise")
    transactions = relationship(
        "StatementTransactionDB", back_populates="account",
        cascade="all, delete-orphan", passive_deletes=True, lazy="raise"
    )
    checks = relationship(
        "StatementCheckDB", back_populates="account",
        cascade="all, delete-orphan", passive_deletes=True, lazy="raise"
    )
    summary = relationship(
        "StatementSummaryDB", back_populates="account", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True, lazy="raise"
    )


class StatementTransactionDB(Base):
    """
    A ledger row.

    The amount sign is authoritative for credit vs. debit; `split` is the
    classification label and stays null until classified or corrected.
    """
    __tablename__ = "statement_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        Integer, ForeignKey("account_statements.id", ondelete="CASCADE"),
        nullable=False, index=True
    )

    date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    kind = Column(String(KIND_LENGTH), nullable=False)

    # Detail fields
    location = Column(String(LABEL_LENGTH), nullable=True)
    reference_number = Column(String(NUMBER_LENGTH), nullable=True)
    check_number = Column(String(SHORT_LENGTH), nullable=True)

    split = Column(String(LABEL_LENGTH), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    account = relationship("AccountStatementDB", back_populates="transactions", lazy="raise")

    __table_args__ = (
        Index('ix_statement_transactions_account_date', 'account_id', 'date'),
        Index('ix_statement_transactions_account_split', 'account_id', 'split'),
    )


class StatementCheckDB(Base):
    """Check listed on a statement. Never edited after ingestion."""
    __tablename__ = "statement_checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        Integer, ForeignKey("account_statements.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    check_number = Column(String(SHORT_LENGTH), nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(MONEY, nullable=False)

    account = relationship("AccountStatementDB", back_populates="checks", lazy="raise")


class StatementSummaryDB(Base):
    """
    Derived totals for a statement.

    Written only by the aggregate calculator, always in the same unit of
    work as the ledger change that made it stale.
    """
    __tablename__ = "statement_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        Integer, ForeignKey("account_statements.id", ondelete="CASCADE"),
        nullable=False, unique=True
    )
    total_deposits = Column(MONEY, nullable=False, default=0)
    total_withdrawals = Column(MONEY, nullable=False, default=0)
    total_checks = Column(MONEY, nullable=False, default=0)
    total_fees = Column(MONEY, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    account = relationship("AccountStatementDB", back_populates="summary", lazy="raise")


class KnowledgeEntryDB(Base):
    """
    A learned (pattern -> split) association.

    Insert-only: corrections add rows, history is never edited.
    The debit/credit columns keep the sample amount that taught the entry.
    """
    __tablename__ = "classification_knowledge"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pattern = Column(String(LABEL_LENGTH), nullable=False)
    category = Column(String(LABEL_LENGTH), nullable=False)
    entry_type = Column(String(KIND_LENGTH), nullable=True)
    name = Column(String(LABEL_LENGTH), nullable=True)
    account = Column(String(LABEL_LENGTH), nullable=True)
    debit = Column(MONEY, nullable=True)
    credit = Column(MONEY, nullable=True)
    entry_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)


__all__ = [
    'TransactionKind',
    'DEFAULT_STATUS_UPLOADED',
    'LABEL_LENGTH',
    'NUMBER_LENGTH',
    'SHORT_LENGTH',
    'KIND_LENGTH',
    'ClientDB',
    'AccountStatementDB',
    'StatementTransactionDB',
    'StatementCheckDB',
    'StatementSummaryDB',
    'KnowledgeEntryDB',
]
