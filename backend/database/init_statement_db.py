"""
Statement Core - Database Initialization

Creates the bank statement tables (clients, statements, transactions,
checks, summaries, classification knowledge).
Run this script to set up the database schema.
"""

import asyncio
import logging
from pathlib import Path

from sqlalchemy import inspect
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

from database.connection import get_engine, dispose_engine, Base
from database.statement_models import (  # noqa: F401 - registers the tables on Base
    ClientDB, AccountStatementDB, StatementTransactionDB, StatementCheckDB,
    StatementSummaryDB, KnowledgeEntryDB
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _table_names(sync_conn):
    return sorted(inspect(sync_conn).get_table_names())


async def create_tables(engine=None):
    """Create all statement tables"""
    engine = engine or get_engine()
    logger.info("Creating statement database tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        # Verify tables were created
        tables = await conn.run_sync(_table_names)
        tables = [name for name in tables if name in Base.metadata.tables]

        logger.info(f"Created statement tables: {tables}")
        return tables


async def drop_tables(engine=None):
    """Drop all statement tables (use with caution!)"""
    engine = engine or get_engine()
    logger.info("Dropping statement database tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("All statement tables dropped")


async def check_tables(engine=None):
    """Check which tables exist"""
    engine = engine or get_engine()
    async with engine.connect() as conn:
        return await conn.run_sync(_table_names)


async def main():
    """Main initialization function"""
    import sys

    if len(sys.argv) > 1:
        command = sys.argv[1]

        if command == "drop":
            await drop_tables()
        elif command == "check":
            tables = await check_tables()
            print(f"Existing tables: {tables}")
        elif command == "create":
            tables = await create_tables()
            print(f"Created tables: {tables}")
        else:
            print(f"Unknown command: {command}")
            print("Usage: python init_statement_db.py [create|drop|check]")
    else:
        # Default: create tables
        tables = await create_tables()
        print(f"Created tables: {tables}")

    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
