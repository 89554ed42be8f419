"""
Statement Core - Unit of Work

Wraps one top-level operation in a single all-or-nothing transaction:
commit on success, rollback on any failure (cancellation included), and
store errors re-raised as classified core errors.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logging_config import set_operation_context, clear_operation_context
from sentry_integration import capture_exception
from services.errors import PersistenceError, translate_store_error

logger = logging.getLogger(__name__)


@asynccontextmanager
async def unit_of_work(session: AsyncSession, operation: str, **context: Any) -> AsyncIterator[AsyncSession]:
    """
    Run the enclosed block as one atomic unit against `session`.

    Nothing done inside is visible to other sessions until the block
    exits normally and the commit succeeds.
    """
    set_operation_context(operation, context.get("account_id"))
    try:
        yield session
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        error = translate_store_error(exc, operation, **context)
        logger.error(f"{operation} rolled back: {error.message}", extra=error.context)
        if isinstance(error, PersistenceError):
            capture_exception(exc, operation=operation, **context)
        raise error from exc
    except BaseException:
        # Classified errors, validation errors and cancellation alike
        await session.rollback()
        raise
    finally:
        clear_operation_context()
