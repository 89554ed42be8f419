"""
Unit Tests for the Classification Service

Tests:
- Batch classification for one statement and across statements
- Unmatched rows stay unclassified
- Labelled rows are never overwritten by a batch
- Statement status moves to classified once nothing is left
- Manual correction grows the knowledge base atomically
- Batch failure rolls back every label
- A batch waits for a concurrent update of the same statement

Run with: pytest tests/test_classification.py -v
"""

import asyncio
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select

from classification.knowledge_base import KnowledgeBase
from classification.matching_rules.description_rules import DescriptionMatchingRules
from classification.services.classification_service import (
    ClassificationService,
    ClassificationAuditEvent,
    log_classification_event,
)
from database.statement_models import StatementTransactionDB
from models.schemas import KnowledgeEntryCreate
from services.errors import NotFoundError, PayloadValidationError
from services.ledger_store import LedgerStore
from services.statement_service import StatementService

from conftest import make_snapshot


ROWS = [
    {"date": "2024-01-03", "description": "ZELLE PAYMENT TO JOHN", "amount": "-120.00"},
    {"date": "2024-01-04", "description": "COFFEE SHOP PURCHASE", "amount": "-4.50"},
    {"date": "2024-01-05", "description": "PAYROLL DEPOSIT ACME", "amount": "2500.00"},
]


async def seed_knowledge(db, *pairs):
    kb = KnowledgeBase(db)
    for pattern, category in pairs:
        await kb.append(KnowledgeEntryCreate(pattern=pattern, category=category))
    await db.commit()


async def splits(session_factory, account_id):
    async with session_factory() as session:
        result = await session.execute(
            select(StatementTransactionDB.description, StatementTransactionDB.split)
            .where(StatementTransactionDB.account_id == account_id)
        )
        return dict(result.all())


class TestClassify:
    """Test batch classification."""

    @pytest.fixture
    def service(self, db, settings):
        return ClassificationService(db, settings=settings)

    @pytest.mark.asyncio
    async def test_zelle_is_labelled_and_coffee_is_not(self, db, settings, service, session_factory):
        view = await StatementService(db, settings).ingest_statement(make_snapshot(ROWS))
        await seed_knowledge(db, ("ZELLE", "Transfers"))

        report = await service.classify(view.account_id)

        assert report.total_processed == 3
        assert report.classified == 1
        assert report.unclassified == 2
        by_description = {row.description: row for row in report.results}
        assert by_description["ZELLE PAYMENT TO JOHN"].status == "classified"
        assert by_description["ZELLE PAYMENT TO JOHN"].category == "Transfers"
        assert by_description["COFFEE SHOP PURCHASE"].status == "unclassified"
        assert by_description["COFFEE SHOP PURCHASE"].category is None

        stored = await splits(session_factory, view.account_id)
        assert stored["ZELLE PAYMENT TO JOHN"] == "Transfers"
        assert stored["COFFEE SHOP PURCHASE"] is None

    @pytest.mark.asyncio
    async def test_results_are_newest_first(self, db, settings, service):
        view = await StatementService(db, settings).ingest_statement(make_snapshot(ROWS))

        report = await service.classify(view.account_id)

        assert [row.description for row in report.results] == [
            "PAYROLL DEPOSIT ACME", "COFFEE SHOP PURCHASE", "ZELLE PAYMENT TO JOHN"
        ]

    @pytest.mark.asyncio
    async def test_labelled_rows_are_skipped(self, db, settings, service, session_factory):
        rows = [dict(ROWS[0], details={"classification": "Loan Repayment"}), ROWS[1]]
        view = await StatementService(db, settings).ingest_statement(make_snapshot(rows))
        await seed_knowledge(db, ("ZELLE", "Transfers"))

        report = await service.classify(view.account_id)

        assert report.total_processed == 1
        stored = await splits(session_factory, view.account_id)
        assert stored["ZELLE PAYMENT TO JOHN"] == "Loan Repayment"

    @pytest.mark.asyncio
    async def test_status_becomes_classified_when_all_labelled(self, db, settings, service):
        statements = StatementService(db, settings)
        view = await statements.ingest_statement(make_snapshot(ROWS))
        await seed_knowledge(db, ("ZELLE", "Transfers"), ("COFFEE", "Meals"), ("PAYROLL", "Wages"))

        report = await service.classify(view.account_id)

        assert report.classified == 3
        assert (await statements.get_statement(view.account_id)).status == "classified"

    @pytest.mark.asyncio
    async def test_status_unchanged_while_rows_remain(self, db, settings, service):
        statements = StatementService(db, settings)
        view = await statements.ingest_statement(make_snapshot(ROWS))
        await seed_knowledge(db, ("ZELLE", "Transfers"))

        await service.classify(view.account_id)

        assert (await statements.get_statement(view.account_id)).status == "uploaded"

    @pytest.mark.asyncio
    async def test_global_batch_covers_every_statement(self, db, settings, service, session_factory):
        statements = StatementService(db, settings)
        first = await statements.ingest_statement(make_snapshot(ROWS[:1]))
        second = await statements.ingest_statement(make_snapshot(ROWS[2:]))
        await seed_knowledge(db, ("ZELLE", "Transfers"), ("PAYROLL", "Wages"))

        report = await service.classify()

        assert report.total_processed == 2
        assert report.classified == 2
        assert (await splits(session_factory, first.account_id)) == {"ZELLE PAYMENT TO JOHN": "Transfers"}
        assert (await splits(session_factory, second.account_id)) == {"PAYROLL DEPOSIT ACME": "Wages"}

    @pytest.mark.asyncio
    async def test_classify_does_not_change_summary(self, db, settings, service):
        statements = StatementService(db, settings)
        view = await statements.ingest_statement(make_snapshot(ROWS))
        await seed_knowledge(db, ("ZELLE", "Transfers"))

        await service.classify(view.account_id)

        assert (await statements.get_statement(view.account_id)).summary == view.summary

    @pytest.mark.asyncio
    async def test_missing_account_raises_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.classify(4040)

    @pytest.mark.asyncio
    async def test_failure_mid_batch_rolls_back_all_labels(self, db, settings, session_factory):
        view = await StatementService(db, settings).ingest_statement(make_snapshot(ROWS))
        await seed_knowledge(db, ("ZELLE", "Transfers"), ("COFFEE", "Meals"), ("PAYROLL", "Wages"))
        rules = DescriptionMatchingRules()
        service = ClassificationService(db, rules=rules, settings=settings)

        real_find = rules.find_matches
        calls = []

        def flaky(description, entries):
            calls.append(description)
            if len(calls) == 3:
                raise RuntimeError("scorer crashed")
            return real_find(description, entries)

        with patch.object(rules, "find_matches", side_effect=flaky):
            with pytest.raises(RuntimeError):
                await service.classify(view.account_id)

        stored = await splits(session_factory, view.account_id)
        assert set(stored.values()) == {None}

    @pytest.mark.asyncio
    async def test_batch_waits_for_concurrent_update_to_commit(self, db, settings, session_factory):
        view = await StatementService(db, settings).ingest_statement(make_snapshot(ROWS))
        await seed_knowledge(db, ("ZELLE", "Transfers"))

        async with session_factory() as holder:
            await LedgerStore(holder).lock_account(view.account_id)
            holder.add(StatementTransactionDB(
                account_id=view.account_id, date=date(2024, 1, 30),
                description="ZELLE PAYMENT FROM ANNA", amount=Decimal("60.00"), kind="credit"
            ))
            await holder.flush()

            async def batch():
                async with session_factory() as session:
                    return await ClassificationService(session, settings=settings).classify(view.account_id)

            task = asyncio.create_task(batch())
            await asyncio.sleep(0.3)
            assert not task.done()

            await holder.commit()

        report = await asyncio.wait_for(task, timeout=10)

        # The batch saw the row committed while it waited
        assert report.total_processed == 4
        labelled = await splits(session_factory, view.account_id)
        assert labelled["ZELLE PAYMENT FROM ANNA"] == "Transfers"


class TestCorrect:
    """Test manual correction."""

    @pytest.fixture
    def service(self, db, settings):
        return ClassificationService(db, settings=settings)

    @pytest.mark.asyncio
    async def test_correct_labels_row_and_appends_entry(self, db, settings, service, session_factory):
        view = await StatementService(db, settings).ingest_statement(make_snapshot(ROWS))
        coffee = view.transactions[1]

        result = await service.correct(coffee.id, "Meals", account="6000 Meals", entry_type="Expense")

        assert result.transaction.details.classification == "Meals"
        assert result.entry.pattern == "COFFEE SHOP PURCHASE"
        assert result.entry.name == "COFFEE SHOP PURCHASE"
        assert result.entry.debit == Decimal("4.50")
        assert result.entry.credit is None
        assert result.entry.account == "6000 Meals"

        async with session_factory() as session:
            assert await KnowledgeBase(session).count() == 1
        assert (await splits(session_factory, view.account_id))["COFFEE SHOP PURCHASE"] == "Meals"

    @pytest.mark.asyncio
    async def test_credit_amount_recorded_as_credit(self, db, settings, service):
        view = await StatementService(db, settings).ingest_statement(make_snapshot(ROWS))
        payroll = view.transactions[2]

        result = await service.correct(payroll.id, "Wages")

        assert result.entry.credit == Decimal("2500.00")
        assert result.entry.debit is None

    @pytest.mark.asyncio
    async def test_correct_overrides_existing_label(self, db, settings, service, session_factory):
        rows = [dict(ROWS[0], details={"classification": "Transfers"})]
        view = await StatementService(db, settings).ingest_statement(make_snapshot(rows))

        await service.correct(view.transactions[0].id, "Owner Draw")

        assert (await splits(session_factory, view.account_id))["ZELLE PAYMENT TO JOHN"] == "Owner Draw"

    @pytest.mark.asyncio
    async def test_corrected_pattern_teaches_later_batches(self, db, settings, service):
        statements = StatementService(db, settings)
        first = await statements.ingest_statement(make_snapshot(ROWS[1:2]))
        await service.correct(first.transactions[0].id, "Meals")

        second = await statements.ingest_statement(make_snapshot(ROWS[1:2]))
        report = await service.classify(second.account_id)

        assert report.results[0].category == "Meals"

    @pytest.mark.asyncio
    async def test_correct_marks_statement_classified(self, db, settings, service):
        statements = StatementService(db, settings)
        view = await statements.ingest_statement(make_snapshot(ROWS[:1]))

        await service.correct(view.transactions[0].id, "Transfers")

        assert (await statements.get_statement(view.account_id)).status == "classified"

    @pytest.mark.asyncio
    async def test_correct_missing_transaction(self, service):
        with pytest.raises(NotFoundError):
            await service.correct(123456, "Meals")

    @pytest.mark.asyncio
    async def test_blank_category_rejected(self, service):
        with pytest.raises(PayloadValidationError):
            await service.correct(1, "  ")

    @pytest.mark.asyncio
    async def test_overlong_category_rejected_before_any_write(self, db, settings, service, session_factory):
        view = await StatementService(db, settings).ingest_statement(make_snapshot(ROWS))

        with pytest.raises(PayloadValidationError) as exc_info:
            await service.correct(view.transactions[1].id, "C" * 256)

        assert exc_info.value.context["field"] == "category"
        assert (await splits(session_factory, view.account_id))["COFFEE SHOP PURCHASE"] is None
        assert await KnowledgeBase(db).count() == 0

    @pytest.mark.asyncio
    async def test_failed_correction_writes_nothing(self, db, settings, service, session_factory):
        view = await StatementService(db, settings).ingest_statement(make_snapshot(ROWS))

        with patch.object(service.knowledge_base, "append", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                await service.correct(view.transactions[1].id, "Meals")

        assert (await splits(session_factory, view.account_id))["COFFEE SHOP PURCHASE"] is None


class TestImportKnowledge:
    """Test bulk knowledge import."""

    @pytest.mark.asyncio
    async def test_import_accepts_camel_case_dicts(self, db, settings):
        service = ClassificationService(db, settings=settings)

        created = await service.import_knowledge([
            {"pattern": "NETFLIX", "category": "Subscriptions", "entryType": "Expense"},
            {"pattern": "SHELL", "category": "Fuel"},
        ])

        assert [e.pattern for e in created] == ["NETFLIX", "SHELL"]
        assert created[0].entry_type == "Expense"

    @pytest.mark.asyncio
    async def test_invalid_entry_rejects_whole_import(self, db, settings):
        service = ClassificationService(db, settings=settings)

        with pytest.raises(PayloadValidationError) as exc_info:
            await service.import_knowledge([
                {"pattern": "NETFLIX", "category": "Subscriptions"},
                {"pattern": "", "category": "Fuel"},
            ])

        assert exc_info.value.context["row_index"] == 1
        assert await KnowledgeBase(db).count() == 0

    @pytest.mark.asyncio
    async def test_import_requires_a_list(self, db, settings):
        with pytest.raises(PayloadValidationError):
            await ClassificationService(db, settings=settings).import_knowledge({"pattern": "X"})


def test_log_classification_event(caplog):
    with caplog.at_level("INFO", logger="classification.services.classification_service"):
        log_classification_event(ClassificationAuditEvent.CORRECTED, {"to": "Meals"}, transaction_id=9)

    record = caplog.records[-1]
    assert record.event == "classification.corrected"
    assert record.transaction_id == 9
