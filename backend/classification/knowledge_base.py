"""
Classification Knowledge Base

Append-only store of learned (pattern -> split) associations.
There is no update or delete path: a correction always adds a new entry.
"""

import logging
from typing import List, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from database.statement_models import KnowledgeEntryDB
from models.schemas import KnowledgeEntry, KnowledgeEntryCreate

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """Repository for classification_knowledge. Never commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_all(self) -> List[KnowledgeEntryDB]:
        """All entries in insertion order"""
        result = await self.session.execute(
            select(KnowledgeEntryDB).order_by(KnowledgeEntryDB.id)
        )
        return list(result.scalars().all())

    async def append(self, entry: KnowledgeEntryCreate) -> KnowledgeEntry:
        db_entry = KnowledgeEntryDB(**entry.model_dump())
        self.session.add(db_entry)
        await self.session.flush()
        return KnowledgeEntry.model_validate(db_entry)

    async def append_many(self, entries: Sequence[KnowledgeEntryCreate]) -> List[KnowledgeEntry]:
        db_entries = [KnowledgeEntryDB(**entry.model_dump()) for entry in entries]
        self.session.add_all(db_entries)
        await self.session.flush()
        logger.info(f"Appended {len(db_entries)} knowledge base entries")
        return [KnowledgeEntry.model_validate(e) for e in db_entries]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(KnowledgeEntryDB.id)))
        return result.scalar() or 0
