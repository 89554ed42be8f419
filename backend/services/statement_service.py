"""
Statement Service

Coordinates every mutation of a bank statement as one unit of work:
- Partial updates (accountInfo patches + transaction upserts)
- Single transaction deletion
- Ingestion of a parsed statement snapshot
- Status changes
- Reads of the persisted statement view

Each operation locks the statement row, applies its row changes, recomputes
the Summary from the now-current ledger and commits both together. Any
failure rolls the whole operation back.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database.statement_models import (
    AccountStatementDB, ClientDB, StatementSummaryDB, SHORT_LENGTH
)
from models.schemas import (
    AccountInfoPatch, AccountInfoView, Balances, StatementListItem, StatementPeriod,
    StatementSnapshot, StatementUpdate, StatementView, SummaryTotals
)
from services.aggregate_calculator import AggregateCalculator
from services.errors import NotFoundError, PayloadValidationError
from services.ledger_store import LedgerStore, transaction_to_view, check_to_view
from services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class StatementAuditEvent:
    """Audit event types for statement operations."""
    INGESTED = "statement.ingested"
    UPDATED = "statement.updated"
    STATUS_CHANGED = "statement.status_changed"
    DELETED = "statement.deleted"
    TRANSACTION_DELETED = "transaction.deleted"
    SUMMARY_MISMATCH = "statement.summary_mismatch"


def log_statement_event(
    event_type: str,
    account_id: Optional[int],
    details: Dict[str, Any],
    actor: str = "system"
):
    """Log statement event for audit trail."""
    log_entry = {
        "event": event_type,
        "account_id": account_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Statement event: {event_type}", extra=log_entry)


def parse_payload(model: Type[ModelT], payload: Union[ModelT, Dict[str, Any]], **context: Any) -> ModelT:
    """
    Validate a caller payload into `model`.

    Anything that is not a mapping, and any mapping pydantic rejects (a
    `transactions` that is not a list, an `accountInfo` that is not an
    object, a malformed row), becomes a PayloadValidationError.
    """
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, dict):
        raise PayloadValidationError(
            f"{model.__name__} payload must be an object, got {type(payload).__name__}",
            **context
        )
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise PayloadValidationError(
            f"Invalid {model.__name__} payload: {errors[0]['loc'] or 'root'}: {errors[0]['msg']}",
            errors=errors,
            **context
        ) from e


def _provided_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class StatementService:
    """
    Reconciliation coordinator for bank statements.

    One instance works against one session; every public method is a
    complete unit of work on it.
    """

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.ledger = LedgerStore(db, lock_timeout_seconds=self.settings.LOCK_TIMEOUT_SECONDS)
        self.calculator = AggregateCalculator(db)

    # ==================== MUTATIONS ====================

    async def apply_update(
        self,
        account_id: int,
        update: Union[StatementUpdate, Dict[str, Any]]
    ) -> StatementView:
        """
        Apply a partial update to one statement.

        Args:
            account_id: Statement to update
            update: {accountInfo?, transactions?}

        Returns:
            The persisted statement, summary included
        """
        payload = parse_payload(StatementUpdate, update, account_id=account_id)
        if payload.account_info is None and payload.transactions is None:
            raise PayloadValidationError(
                "Update carries neither accountInfo nor transactions",
                account_id=account_id
            )

        async with unit_of_work(self.db, "apply_update", account_id=account_id):
            account = await self.ledger.lock_account(account_id)

            changed_fields: List[str] = []
            if payload.account_info is not None:
                changed_fields = self._apply_account_patch(account, payload.account_info)

            written = []
            if payload.transactions:
                written = await self.ledger.upsert_transactions(account_id, payload.transactions)

            await self.db.flush()
            summary = await self.calculator.recompute(account_id)
            view = await self._build_view(account, summary)

        log_statement_event(
            StatementAuditEvent.UPDATED,
            account_id,
            {
                "account_fields": changed_fields,
                "transactions_written": len(written),
                "summary": view.summary.model_dump(mode="json"),
            }
        )
        return view

    async def delete_transaction(self, transaction_id: int) -> StatementView:
        """
        Delete one transaction and recompute its statement's Summary.

        Returns the owning statement as persisted after the deletion.
        """
        async with unit_of_work(self.db, "delete_transaction", transaction_id=transaction_id):
            txn = await self.ledger.get_transaction(transaction_id)
            if txn is None:
                raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)

            account = await self.ledger.lock_account(txn.account_id)
            # Re-reads under the lock; a concurrent delete surfaces as NotFound here
            account_id = await self.ledger.delete_transaction(transaction_id)

            summary = await self.calculator.recompute(account_id)
            view = await self._build_view(account, summary)

        log_statement_event(
            StatementAuditEvent.TRANSACTION_DELETED,
            account_id,
            {"transaction_id": transaction_id, "summary": view.summary.model_dump(mode="json")}
        )
        return view

    async def ingest_statement(
        self,
        snapshot: Union[StatementSnapshot, Dict[str, Any]],
        client_access_code: Optional[str] = None
    ) -> StatementView:
        """
        Persist a freshly extracted statement with its ledger, checks and Summary.

        Row ids in the snapshot are ignored. A summary carried by the snapshot
        is only compared with the recomputed one.
        """
        payload = parse_payload(StatementSnapshot, snapshot)
        info = payload.account_info

        async with unit_of_work(self.db, "ingest_statement"):
            client_id = None
            if client_access_code:
                result = await self.db.execute(
                    select(ClientDB.id).where(ClientDB.access_code == client_access_code)
                )
                client_id = result.scalar_one_or_none()
                if client_id is None:
                    raise NotFoundError(
                        "No client matches the supplied access code",
                        client_access_code=client_access_code
                    )

            account = AccountStatementDB(
                client_id=client_id,
                bank_name=_provided_text(info.bank_name),
                account_holder=info.account_holder.strip(),
                account_number=info.account_number.strip(),
                statement_from_date=info.statement_period.from_date,
                statement_to_date=info.statement_period.to_date,
                beginning_balance=info.balances.beginning,
                ending_balance=info.balances.ending,
                month_reference=_provided_text(info.month_reference),
                status=self.settings.STATUS_UPLOADED,
                pdf_url=info.pdf_url,
                pdf_file_name=info.pdf_file_name,
                pdf_upload_date=info.pdf_upload_date,
                pdf_file_size=info.pdf_file_size,
            )
            self.db.add(account)
            await self.db.flush()

            rows = [row.model_copy(update={"id": None}) for row in payload.transactions]
            if rows:
                await self.ledger.upsert_transactions(account.id, rows)
            if payload.checks:
                await self.ledger.insert_checks(account.id, payload.checks)

            summary = await self.calculator.recompute(account.id)
            view = await self._build_view(account, summary)

        if payload.summary is not None and payload.summary != view.summary:
            logger.warning(
                f"Extracted summary disagrees with ledger for statement {view.account_id}",
                extra={
                    "event": StatementAuditEvent.SUMMARY_MISMATCH,
                    "account_id": view.account_id,
                    "extracted": payload.summary.model_dump(mode="json"),
                    "recomputed": view.summary.model_dump(mode="json"),
                }
            )

        log_statement_event(
            StatementAuditEvent.INGESTED,
            view.account_id,
            {
                "client_id": client_id,
                "transactions": len(view.transactions),
                "checks": len(view.checks),
                "summary": view.summary.model_dump(mode="json"),
            }
        )
        return view

    async def update_status(self, account_id: int, status: str) -> StatementView:
        """Set the lifecycle status; the Summary is recomputed under the same lock"""
        if not isinstance(status, str) or not status.strip():
            raise PayloadValidationError("Status must be a non-empty string", account_id=account_id)
        if len(status.strip()) > SHORT_LENGTH:
            raise PayloadValidationError(
                f"Status is longer than {SHORT_LENGTH} characters", account_id=account_id
            )

        async with unit_of_work(self.db, "update_status", account_id=account_id):
            account = await self.ledger.lock_account(account_id)
            previous = account.status
            account.status = status.strip()
            await self.db.flush()

            summary = await self.calculator.recompute(account_id)
            view = await self._build_view(account, summary)

        log_statement_event(
            StatementAuditEvent.STATUS_CHANGED,
            account_id,
            {"from": previous, "to": view.status}
        )
        return view

    async def delete_statement(self, account_id: int) -> int:
        """
        Delete a statement with its transactions, checks and Summary.

        Returns the number of transactions removed.
        """
        async with unit_of_work(self.db, "delete_statement", account_id=account_id):
            await self.ledger.lock_account(account_id)
            removed = await self.ledger.delete_account_rows(account_id)
            await self.db.execute(
                delete(StatementSummaryDB).where(StatementSummaryDB.account_id == account_id)
            )
            await self.db.execute(
                delete(AccountStatementDB).where(AccountStatementDB.id == account_id)
            )

        log_statement_event(
            StatementAuditEvent.DELETED,
            account_id,
            {"transactions_removed": removed}
        )
        return removed

    # ==================== READS ====================

    async def get_statement(self, account_id: int) -> StatementView:
        """
        Read the persisted statement.

        Holds a shared lock so the ledger and Summary are read from the same
        committed state. A statement without a Summary row gets one.
        """
        async with unit_of_work(self.db, "get_statement", account_id=account_id):
            account = await self.ledger.lock_account(account_id, shared=True)

            result = await self.db.execute(
                select(StatementSummaryDB)
                .where(StatementSummaryDB.account_id == account_id)
                .execution_options(populate_existing=True)
            )
            summary = result.scalar_one_or_none()
            if summary is None:
                logger.info(f"Statement {account_id} has no summary yet, recomputing")
                summary = await self.calculator.recompute(account_id)

            view = await self._build_view(account, summary)

        return view

    async def list_statements(self, client_id: Optional[int] = None) -> List[StatementListItem]:
        async with unit_of_work(self.db, "list_statements", client_id=client_id):
            query = select(
                AccountStatementDB.id,
                AccountStatementDB.client_id,
                AccountStatementDB.status,
                AccountStatementDB.bank_name,
                AccountStatementDB.account_holder,
                AccountStatementDB.month_reference,
                AccountStatementDB.created_at,
            )
            if client_id is not None:
                query = query.where(AccountStatementDB.client_id == client_id)
            result = await self.db.execute(query.order_by(AccountStatementDB.id))
            rows = result.all()

        return [
            StatementListItem(
                account_id=row.id,
                client_id=row.client_id,
                status=row.status,
                bank_name=row.bank_name,
                account_holder=row.account_holder,
                month_reference=row.month_reference,
                created_at=row.created_at,
            )
            for row in rows
        ]

    # ==================== HELPERS ====================

    def _apply_account_patch(self, account: AccountStatementDB, patch: AccountInfoPatch) -> List[str]:
        """
        Override only the provided fields.

        Blank text means "not provided"; a balance of 0 is a real value.
        A period end left out keeps its stored date.
        """
        changed = []

        for field in ("bank_name", "account_holder", "account_number", "month_reference"):
            value = _provided_text(getattr(patch, field))
            if value is not None:
                setattr(account, field, value)
                changed.append(field)

        period = patch.statement_period
        if period is not None and (period.from_date or period.to_date):
            from_date = period.from_date or account.statement_from_date
            to_date = period.to_date or account.statement_to_date
            if from_date > to_date:
                raise PayloadValidationError(
                    "statement period ends before it starts",
                    account_id=account.id, field="statement_period"
                )
            account.statement_from_date = from_date
            account.statement_to_date = to_date
            changed.append("statement_period")

        if patch.balances is not None:
            if patch.balances.beginning is not None:
                account.beginning_balance = patch.balances.beginning
                changed.append("beginning_balance")
            if patch.balances.ending is not None:
                account.ending_balance = patch.balances.ending
                changed.append("ending_balance")

        return changed

    async def _build_view(self, account: AccountStatementDB, summary: StatementSummaryDB) -> StatementView:
        transactions = await self.ledger.list_transactions(account.id)
        checks = await self.ledger.list_checks(account.id)

        return StatementView(
            account_id=account.id,
            client_id=account.client_id,
            status=account.status,
            account_info=AccountInfoView(
                bank_name=account.bank_name,
                account_holder=account.account_holder,
                account_number=account.account_number,
                statement_period=StatementPeriod(
                    from_date=account.statement_from_date,
                    to_date=account.statement_to_date,
                ),
                balances=Balances(
                    beginning=Decimal(str(account.beginning_balance)),
                    ending=Decimal(str(account.ending_balance)),
                ),
                month_reference=account.month_reference,
                pdf_url=account.pdf_url,
                pdf_file_name=account.pdf_file_name,
                pdf_upload_date=account.pdf_upload_date,
                pdf_file_size=account.pdf_file_size,
            ),
            transactions=[transaction_to_view(txn) for txn in transactions],
            checks=[check_to_view(check) for check in checks],
            summary=SummaryTotals.model_validate(summary),
        )
