"""
Statement Core - Aggregate Calculator

Derives the Summary of a statement from its current ledger.

The Summary is a materialised view: it is rebuilt from source rows on every
mutation, inside the unit of work that changed them, never adjusted
incrementally. Only Transaction rows feed it; Check records are supporting
detail for the statement view.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.statement_models import StatementTransactionDB, StatementSummaryDB, TransactionKind
from models.schemas import SummaryTotals

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

KIND_TO_TOTAL = {
    TransactionKind.CREDIT.value: "total_deposits",
    TransactionKind.DEBIT.value: "total_withdrawals",
    TransactionKind.CHECK.value: "total_checks",
    TransactionKind.FEE.value: "total_fees",
}


def _magnitude(amount) -> Decimal:
    return abs(Decimal(str(amount)))


def summarize(transactions: Iterable) -> SummaryTotals:
    """
    Fold ledger rows into summary totals.

    `transactions` yields objects with `kind` and `amount`. Each total is the
    sum of magnitudes of the rows of that kind.
    """
    totals = {name: Decimal("0") for name in KIND_TO_TOTAL.values()}

    for txn in transactions:
        kind = txn.kind.value if isinstance(txn.kind, TransactionKind) else txn.kind
        field = KIND_TO_TOTAL.get(kind)
        if field is None:
            logger.warning(f"Ignoring transaction with unknown kind {kind!r} in summary")
            continue
        totals[field] += _magnitude(txn.amount)

    return SummaryTotals(**{
        name: value.quantize(CENTS, rounding=ROUND_HALF_UP)
        for name, value in totals.items()
    })


class AggregateCalculator:
    """Rebuilds StatementSummaryDB rows inside the caller's unit of work"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def compute(self, account_id: int) -> SummaryTotals:
        result = await self.session.execute(
            select(
                StatementTransactionDB.kind,
                StatementTransactionDB.amount,
            ).where(StatementTransactionDB.account_id == account_id)
        )
        return summarize(result.all())

    async def recompute(self, account_id: int) -> StatementSummaryDB:
        """
        Recompute and upsert the Summary of one statement.

        Pending ledger changes must already be flushed. Running it twice
        without an intervening mutation writes identical values.
        """
        totals = await self.compute(account_id)

        result = await self.session.execute(
            select(StatementSummaryDB)
            .where(StatementSummaryDB.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        summary = result.scalar_one_or_none()

        if summary is None:
            summary = StatementSummaryDB(account_id=account_id)
            self.session.add(summary)

        summary.total_deposits = totals.total_deposits
        summary.total_withdrawals = totals.total_withdrawals
        summary.total_checks = totals.total_checks
        summary.total_fees = totals.total_fees

        await self.session.flush()

        logger.debug(
            f"Summary recomputed for statement {account_id}",
            extra={"account_id": account_id, **totals.model_dump(mode="json")}
        )
        return summary
