"""
Statement Core - Error Taxonomy

Every failure leaving the reconciliation core is one of four kinds:

- not_found: account, transaction or client absent (never retried)
- validation_failure: malformed payload, or a value the store rejects (never retried)
- conflict_timeout: the statement lock was not acquired in time (retryable)
- persistence_failure: the underlying store failed (retryable)

Retrying is safe for the last two because a failed unit of work is always
rolled back in full.
"""

from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import DBAPIError, DataError, SQLAlchemyError, TimeoutError as PoolTimeoutError


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION_FAILURE = "validation_failure"
    CONFLICT_TIMEOUT = "conflict_timeout"
    PERSISTENCE_FAILURE = "persistence_failure"


class StatementCoreError(Exception):
    """Base class for classified core failures"""

    kind: ErrorKind = ErrorKind.PERSISTENCE_FAILURE
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            **self.context,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, {self.context!r})"


class NotFoundError(StatementCoreError):
    kind = ErrorKind.NOT_FOUND


class PayloadValidationError(StatementCoreError):
    kind = ErrorKind.VALIDATION_FAILURE


class LockTimeoutError(StatementCoreError):
    kind = ErrorKind.CONFLICT_TIMEOUT
    retryable = True


class PersistenceError(StatementCoreError):
    kind = ErrorKind.PERSISTENCE_FAILURE
    retryable = True


# PostgreSQL: lock_not_available, query_canceled (statement/lock timeout)
LOCK_TIMEOUT_SQLSTATES = {"55P03", "57014"}
LOCK_TIMEOUT_MESSAGES = ("lock timeout", "database is locked", "could not obtain lock")
# SQLSTATE class 22: data exception (e.g. 22001 string_data_right_truncation)
DATA_EXCEPTION_SQLSTATE_CLASS = "22"


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_lock_timeout(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, DBAPIError):
        if _sqlstate(exc) in LOCK_TIMEOUT_SQLSTATES:
            return True
        message = str(exc.orig).lower()
        return any(marker in message for marker in LOCK_TIMEOUT_MESSAGES)
    return False


def is_data_exception(exc: SQLAlchemyError) -> bool:
    """Value the store itself rejects, such as an over-long string"""
    if isinstance(exc, DataError):
        return True
    if isinstance(exc, DBAPIError):
        return (_sqlstate(exc) or "").startswith(DATA_EXCEPTION_SQLSTATE_CLASS)
    return False


def translate_store_error(exc: SQLAlchemyError, operation: str, **context: Any) -> StatementCoreError:
    """Classify a store-level failure for the caller"""
    if is_lock_timeout(exc):
        return LockTimeoutError(
            f"{operation}: statement lock not acquired in time",
            operation=operation, **context
        )
    if is_data_exception(exc):
        return PayloadValidationError(
            f"{operation}: value rejected by the store ({type(exc).__name__})",
            operation=operation, **context
        )
    return PersistenceError(
        f"{operation}: store failure ({type(exc).__name__})",
        operation=operation, **context
    )
