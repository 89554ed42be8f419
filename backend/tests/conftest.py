"""
Shared fixtures for the statement core tests.

Every test gets its own file-backed SQLite database (aiosqlite) so that
separate sessions really run on separate connections.
"""

from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from config import Settings
from database.connection import build_engine, build_session_factory
from database.init_statement_db import create_tables


def make_snapshot(
    transactions: Optional[List[Dict[str, Any]]] = None,
    checks: Optional[List[Dict[str, Any]]] = None,
    **account_info: Any
) -> Dict[str, Any]:
    """A statement snapshot as the extraction step hands it over (camelCase)."""
    info = {
        "bankName": "First Test Bank",
        "accountHolder": "Jane Doe",
        "accountNumber": "000123456789",
        "statementPeriod": {"from": "2024-01-01", "to": "2024-01-31"},
        "balances": {"beginning": "1000.00", "ending": "1725.00"},
        "monthReference": "2024-01",
    }
    info.update(account_info)
    return {
        "accountInfo": info,
        "transactions": transactions if transactions is not None else [],
        "checks": checks or [],
    }


SCENARIO_ROWS = [
    {"date": "2024-01-05", "description": "PAYROLL DEPOSIT ACME", "amount": "1000.00", "type": "credit"},
    {"date": "2024-01-09", "description": "GROCERY STORE PURCHASE", "amount": "-200.00", "type": "debit"},
    {"date": "2024-01-12", "description": "CHECK #1042", "amount": "-75.00", "type": "check"},
]


@pytest.fixture
def settings():
    return Settings(ENVIRONMENT="test", LOCK_TIMEOUT_SECONDS=5)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'statements.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    engine = build_engine(database_url, connect_args={"timeout": 5})
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
