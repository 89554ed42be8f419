from .connection import (
    get_db, get_engine, get_session_factory, build_engine, build_session_factory,
    init_db, dispose_engine, Base
)

# Import statement models to ensure they are registered with Base
from .statement_models import (
    ClientDB, AccountStatementDB, StatementTransactionDB, StatementCheckDB,
    StatementSummaryDB, KnowledgeEntryDB, TransactionKind
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'build_engine', 'build_session_factory',
    'init_db', 'dispose_engine', 'Base',
    # Statement models
    'ClientDB', 'AccountStatementDB', 'StatementTransactionDB', 'StatementCheckDB',
    'StatementSummaryDB', 'KnowledgeEntryDB', 'TransactionKind',
]
