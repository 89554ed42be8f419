"""
Statement Core - Ledger Store

Row-level access to the transactions owned by a bank statement:
- Per-statement locking (serialises concurrent edits of one statement)
- Upsert of submitted rows (update by (id, account_id), insert otherwise)
- Single-row deletion
- Reads used by the aggregate calculator and the classification engine

Nothing here commits. Every method flushes into the caller's session so the
caller's unit of work decides what becomes visible.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Sequence
import logging

from sqlalchemy import select, delete, update, func, or_, text
from sqlalchemy.ext.asyncio import AsyncSession

from database.statement_models import (
    AccountStatementDB, StatementTransactionDB, StatementCheckDB, TransactionKind
)
from models.schemas import (
    TransactionInput, TransactionDetails, TransactionView, CheckInput, CheckView
)
from services.errors import NotFoundError, PayloadValidationError
from services.transaction_details import (
    derive_kind, extract_location, extract_reference_number, extract_check_number
)

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


# ==================== HELPER FUNCTIONS ====================

def transaction_to_view(db_obj: StatementTransactionDB) -> TransactionView:
    """Convert database model to Pydantic model"""
    return TransactionView(
        id=db_obj.id,
        date=db_obj.date,
        description=db_obj.description,
        amount=Decimal(str(db_obj.amount)),
        kind=TransactionKind(db_obj.kind),
        details=TransactionDetails(
            location=db_obj.location,
            reference_number=db_obj.reference_number,
            check_number=db_obj.check_number,
            classification=db_obj.split,
        ),
    )


def check_to_view(db_obj: StatementCheckDB) -> CheckView:
    return CheckView(
        check_number=db_obj.check_number,
        date=db_obj.date,
        amount=Decimal(str(db_obj.amount)),
    )


def _unlabelled():
    return or_(StatementTransactionDB.split.is_(None), StatementTransactionDB.split == "")


# ==================== REPOSITORY CLASS ====================

class LedgerStore:
    """Repository for the transactions of account statements"""

    def __init__(self, session: AsyncSession, lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.session = session
        self.lock_timeout_seconds = lock_timeout_seconds

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    # ==================== LOCKING ====================

    async def lock_account(self, account_id: int, shared: bool = False) -> AccountStatementDB:
        """
        Lock the statement row for the rest of the current transaction.

        PostgreSQL waits at most `lock_timeout_seconds` for the row lock.
        SQLite has no row locks, so an exclusive lock takes the database
        write lock up front (bounded by the connection busy timeout) and a
        shared lock is a plain read.
        """
        dialect = self.dialect
        query = (
            select(AccountStatementDB)
            .where(AccountStatementDB.id == account_id)
            .execution_options(populate_existing=True)
        )

        if dialect == "sqlite":
            if not shared:
                table = AccountStatementDB.__table__
                await self.session.execute(
                    update(table)
                    .where(table.c.id == account_id)
                    .values(updated_at=table.c.updated_at)
                )
        else:
            if dialect == "postgresql":
                timeout_ms = int(self.lock_timeout_seconds * 1000)
                await self.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
            query = query.with_for_update(read=shared)

        result = await self.session.execute(query)
        account = result.scalar_one_or_none()

        if account is None:
            raise NotFoundError(f"Bank statement {account_id} not found", account_id=account_id)

        return account

    async def lock_accounts(self, account_ids: Sequence[int]) -> Dict[int, AccountStatementDB]:
        """
        Lock several statements in ascending id order.

        Statements deleted since the ids were read are skipped.
        """
        locked = {}
        for account_id in sorted(set(account_ids)):
            try:
                locked[account_id] = await self.lock_account(account_id)
            except NotFoundError:
                logger.info(f"Bank statement {account_id} vanished before lock, skipping")
        return locked

    # ==================== READ ====================

    async def get_transaction(self, transaction_id: int) -> Optional[StatementTransactionDB]:
        result = await self.session.execute(
            select(StatementTransactionDB)
            .where(StatementTransactionDB.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_transactions(self, account_id: int) -> List[StatementTransactionDB]:
        result = await self.session.execute(
            select(StatementTransactionDB)
            .where(StatementTransactionDB.account_id == account_id)
            .order_by(StatementTransactionDB.date, StatementTransactionDB.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_checks(self, account_id: int) -> List[StatementCheckDB]:
        result = await self.session.execute(
            select(StatementCheckDB)
            .where(StatementCheckDB.account_id == account_id)
            .order_by(StatementCheckDB.date, StatementCheckDB.id)
        )
        return list(result.scalars().all())

    async def list_unclassified(self, account_ids: Optional[Sequence[int]] = None) -> List[StatementTransactionDB]:
        """Rows without a split, newest first"""
        query = select(StatementTransactionDB).where(_unlabelled())
        if account_ids is not None:
            query = query.where(StatementTransactionDB.account_id.in_(list(account_ids)))
        result = await self.session.execute(
            query
            .order_by(StatementTransactionDB.date.desc(), StatementTransactionDB.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def unclassified_account_ids(self) -> List[int]:
        result = await self.session.execute(
            select(StatementTransactionDB.account_id)
            .where(_unlabelled())
            .distinct()
            .order_by(StatementTransactionDB.account_id)
        )
        return [row[0] for row in result.all()]

    async def count_unclassified(self, account_id: int) -> int:
        result = await self.session.execute(
            select(func.count(StatementTransactionDB.id))
            .where(StatementTransactionDB.account_id == account_id, _unlabelled())
        )
        return result.scalar() or 0

    # ==================== WRITE ====================

    async def upsert_transactions(
        self,
        account_id: int,
        rows: Sequence[TransactionInput],
    ) -> List[StatementTransactionDB]:
        """
        Apply submitted rows to the statement's ledger.

        Rows with an id patch the row matching (id, account_id); rows without
        one are inserted. A row id that does not resolve inside this
        statement raises NotFoundError. Rows not mentioned are left alone.
        """
        requested_ids = [row.id for row in rows if row.id is not None]
        existing: Dict[int, StatementTransactionDB] = {}

        if requested_ids:
            result = await self.session.execute(
                select(StatementTransactionDB)
                .where(
                    StatementTransactionDB.account_id == account_id,
                    StatementTransactionDB.id.in_(requested_ids),
                )
                .execution_options(populate_existing=True)
            )
            existing = {txn.id: txn for txn in result.scalars().all()}

        written = []
        for index, row in enumerate(rows):
            if row.id is None:
                txn = self._new_transaction(account_id, row, index)
                self.session.add(txn)
            else:
                txn = existing.get(row.id)
                if txn is None:
                    raise NotFoundError(
                        f"Transaction {row.id} not found in bank statement {account_id}",
                        account_id=account_id,
                        transaction_id=row.id,
                        row_index=index,
                    )
                self._apply_patch(txn, row)
            written.append(txn)

        await self.session.flush()
        return written

    async def insert_checks(self, account_id: int, checks: Sequence[CheckInput]) -> List[StatementCheckDB]:
        created = [
            StatementCheckDB(
                account_id=account_id,
                check_number=check.check_number,
                date=check.date,
                amount=check.amount,
            )
            for check in checks
        ]
        self.session.add_all(created)
        await self.session.flush()
        return created

    async def delete_transaction(self, transaction_id: int) -> int:
        """Delete exactly one row and return the id of the statement that owned it"""
        txn = await self.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)

        account_id = txn.account_id
        await self.session.execute(
            delete(StatementTransactionDB).where(StatementTransactionDB.id == transaction_id)
        )
        await self.session.flush()
        return account_id

    async def delete_account_rows(self, account_id: int) -> int:
        """Remove every transaction and check of a statement; returns the transaction count"""
        result = await self.session.execute(
            delete(StatementTransactionDB).where(StatementTransactionDB.account_id == account_id)
        )
        await self.session.execute(
            delete(StatementCheckDB).where(StatementCheckDB.account_id == account_id)
        )
        return result.rowcount or 0

    # ==================== ROW BUILDING ====================

    def _new_transaction(self, account_id: int, row: TransactionInput, index: int) -> StatementTransactionDB:
        missing = [
            name for name in ("date", "description", "amount")
            if getattr(row, name) is None
        ]
        if row.description is not None and not row.description.strip():
            missing.append("description")
        if missing:
            raise PayloadValidationError(
                f"New transaction at position {index} is missing: {', '.join(sorted(set(missing)))}",
                account_id=account_id,
                row_index=index,
            )

        details = row.details or TransactionDetails()
        provided = details.model_fields_set
        description = row.description.strip()

        location = details.location if "location" in provided else extract_location(description)
        reference_number = (
            details.reference_number if "reference_number" in provided
            else extract_reference_number(description)
        )
        check_number = (
            details.check_number if "check_number" in provided
            else extract_check_number(description)
        )

        return StatementTransactionDB(
            account_id=account_id,
            date=row.date,
            description=description,
            amount=row.amount,
            kind=derive_kind(row.amount, row.kind, check_number).value,
            location=location,
            reference_number=reference_number,
            check_number=check_number,
            split=details.classification,
        )

    def _apply_patch(self, txn: StatementTransactionDB, row: TransactionInput) -> None:
        provided = row.model_fields_set

        if "date" in provided and row.date is not None:
            txn.date = row.date
        if "description" in provided and row.description and row.description.strip():
            txn.description = row.description.strip()
        if "amount" in provided and row.amount is not None:
            txn.amount = row.amount

        if row.details is not None:
            detail_fields = row.details.model_fields_set
            if "location" in detail_fields:
                txn.location = row.details.location
            if "reference_number" in detail_fields:
                txn.reference_number = row.details.reference_number
            if "check_number" in detail_fields:
                txn.check_number = row.details.check_number
            if "classification" in detail_fields:
                txn.split = row.details.classification

        # Sign stays authoritative whatever was patched
        claimed = row.kind if ("kind" in provided and row.kind is not None) else TransactionKind(txn.kind)
        txn.kind = derive_kind(Decimal(str(txn.amount)), claimed, txn.check_number).value
