"""
Classification Service

Assigns splits to unclassified transactions:
- Batch classification against the knowledge base (one account or all)
- Manual correction, which also teaches the knowledge base
- Bulk knowledge base import
- Audit logging

A batch is one unit of work: every account it touches is locked (ascending
id order) before any label is written, and a failure mid-batch rolls back
every label written so far. Rows that already carry a split are never
re-labelled by a batch.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database.statement_models import AccountStatementDB, LABEL_LENGTH, KIND_LENGTH
from models.schemas import (
    ClassificationReport, ClassificationRow, CorrectionResult,
    KnowledgeEntry, KnowledgeEntryCreate
)
from classification.knowledge_base import KnowledgeBase
from classification.matching_rules.description_rules import DescriptionMatchingRules
from services.errors import NotFoundError, PayloadValidationError
from services.ledger_store import LedgerStore, transaction_to_view
from services.statement_service import parse_payload
from services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

STATUS_CLASSIFIED_ROW = "classified"
STATUS_UNCLASSIFIED_ROW = "unclassified"


class ClassificationAuditEvent:
    """Audit event types for classification operations."""
    RUN_STARTED = "classification.run_started"
    RUN_COMPLETED = "classification.run_completed"
    CORRECTED = "classification.corrected"
    STATEMENT_CLASSIFIED = "classification.statement_classified"
    KNOWLEDGE_IMPORTED = "classification.knowledge_imported"


def log_classification_event(
    event_type: str,
    details: Dict[str, Any],
    account_id: Optional[int] = None,
    transaction_id: Optional[int] = None,
    actor: str = "system"
):
    """Log classification event for audit trail."""
    log_entry = {
        "event": event_type,
        "account_id": account_id,
        "transaction_id": transaction_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Classification event: {event_type}", extra=log_entry)


class ClassificationService:
    """
    Service for classifying statement transactions.

    Matching is delegated to a DescriptionMatchingRules instance so the
    scorer can be swapped without touching the batch logic.
    """

    def __init__(
        self,
        db: AsyncSession,
        rules: Optional[DescriptionMatchingRules] = None,
        settings: Optional[Settings] = None
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.rules = rules or DescriptionMatchingRules.from_settings(self.settings)
        self.ledger = LedgerStore(db, lock_timeout_seconds=self.settings.LOCK_TIMEOUT_SECONDS)
        self.knowledge_base = KnowledgeBase(db)

    async def classify(self, account_id: Optional[int] = None) -> ClassificationReport:
        """
        Label every unclassified transaction that has a qualifying match.

        Args:
            account_id: Restrict the batch to one statement; None runs over
                every statement with unclassified rows

        Returns:
            ClassificationReport with one row per processed transaction
        """
        log_classification_event(
            ClassificationAuditEvent.RUN_STARTED,
            {"scorer": self.rules.scorer_name, "threshold": self.rules.threshold},
            account_id=account_id
        )

        async with unit_of_work(self.db, "classify", account_id=account_id):
            if account_id is not None:
                accounts = {account_id: await self.ledger.lock_account(account_id)}
            else:
                candidate_ids = await self.ledger.unclassified_account_ids()
                accounts = await self.ledger.lock_accounts(candidate_ids)

            transactions = await self.ledger.list_unclassified(list(accounts)) if accounts else []
            entries = await self.knowledge_base.find_all()

            report = ClassificationReport(total_processed=len(transactions))
            touched = set()

            for txn in transactions:
                result = self.rules.find_matches(txn.description, entries)
                touched.add(txn.account_id)

                if result.best_match is None:
                    report.unclassified += 1
                    report.results.append(ClassificationRow(
                        id=txn.id,
                        description=txn.description,
                        status=STATUS_UNCLASSIFIED_ROW
                    ))
                    continue

                txn.split = result.best_match.category
                report.classified += 1
                report.results.append(ClassificationRow(
                    id=txn.id,
                    description=txn.description,
                    status=STATUS_CLASSIFIED_ROW,
                    category=result.best_match.category,
                    score=round(result.best_match.score, 4),
                    entry_id=result.best_match.entry_id
                ))

            await self.db.flush()

            completed = []
            for touched_id in sorted(touched):
                if await self._refresh_status(accounts[touched_id]):
                    completed.append(touched_id)

        log_classification_event(
            ClassificationAuditEvent.RUN_COMPLETED,
            {
                "total_processed": report.total_processed,
                "classified": report.classified,
                "unclassified": report.unclassified,
                "statements_completed": completed,
            },
            account_id=account_id
        )
        return report

    async def correct(
        self,
        transaction_id: int,
        category: str,
        account: Optional[str] = None,
        entry_type: Optional[str] = None
    ) -> CorrectionResult:
        """
        Set a transaction's split by hand and record it in the knowledge base.

        Works on rows that are already labelled. The label write and the new
        knowledge base entry commit together.
        """
        if not isinstance(category, str) or not category.strip():
            raise PayloadValidationError("Category must be a non-empty string", transaction_id=transaction_id)
        category = category.strip()
        for field, value, limit in (
            ("category", category, LABEL_LENGTH),
            ("account", account, LABEL_LENGTH),
            ("entry_type", entry_type, KIND_LENGTH),
        ):
            if value is not None and len(value) > limit:
                raise PayloadValidationError(
                    f"{field} is longer than {limit} characters",
                    transaction_id=transaction_id, field=field
                )

        async with unit_of_work(self.db, "correct", transaction_id=transaction_id):
            txn = await self.ledger.get_transaction(transaction_id)
            if txn is None:
                raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)

            statement = await self.ledger.lock_account(txn.account_id)
            txn = await self.ledger.get_transaction(transaction_id)
            if txn is None:
                raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)

            previous = txn.split
            txn.split = category

            amount = Decimal(str(txn.amount))
            entry = await self.knowledge_base.append(KnowledgeEntryCreate(
                pattern=txn.description[:LABEL_LENGTH],
                category=category,
                entry_type=entry_type,
                name=txn.description[:LABEL_LENGTH],
                account=account,
                debit=abs(amount) if amount < 0 else None,
                credit=amount if amount > 0 else None,
                entry_date=txn.date,
            ))

            await self.db.flush()
            await self._refresh_status(statement)
            view = transaction_to_view(txn)

        log_classification_event(
            ClassificationAuditEvent.CORRECTED,
            {"from": previous, "to": category, "entry_id": entry.id},
            account_id=statement.id,
            transaction_id=transaction_id
        )
        return CorrectionResult(transaction=view, entry=entry)

    async def import_knowledge(
        self,
        entries: Sequence[Union[KnowledgeEntryCreate, Dict[str, Any]]]
    ) -> List[KnowledgeEntry]:
        """Seed the knowledge base in bulk, e.g. from an accounting-package export"""
        if isinstance(entries, (str, bytes, dict)) or not isinstance(entries, Sequence):
            raise PayloadValidationError("Knowledge base import expects a list of entries")

        parsed = [
            parse_payload(KnowledgeEntryCreate, entry, row_index=index)
            for index, entry in enumerate(entries)
        ]

        async with unit_of_work(self.db, "import_knowledge"):
            created = await self.knowledge_base.append_many(parsed)

        log_classification_event(
            ClassificationAuditEvent.KNOWLEDGE_IMPORTED,
            {"entries": len(created)}
        )
        return created

    async def _refresh_status(self, statement: AccountStatementDB) -> bool:
        """Mark the statement classified once no unlabelled row is left"""
        remaining = await self.ledger.count_unclassified(statement.id)
        if remaining or statement.status == self.settings.STATUS_CLASSIFIED:
            return False

        statement.status = self.settings.STATUS_CLASSIFIED
        await self.db.flush()
        log_classification_event(
            ClassificationAuditEvent.STATEMENT_CLASSIFIED,
            {"status": statement.status},
            account_id=statement.id
        )
        return True
