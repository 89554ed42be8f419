from .schemas import (
    StatementPeriod, Balances, TransactionDetails, TransactionInput, CheckInput,
    AccountInfoPatch, NewAccountInfo, SummaryTotals, StatementSnapshot, StatementUpdate,
    TransactionView, CheckView, AccountInfoView, StatementView, StatementListItem,
    ClassificationRow, ClassificationReport, KnowledgeEntryCreate, KnowledgeEntry,
    CorrectionResult
)

__all__ = [
    'StatementPeriod', 'Balances', 'TransactionDetails', 'TransactionInput', 'CheckInput',
    'AccountInfoPatch', 'NewAccountInfo', 'SummaryTotals', 'StatementSnapshot', 'StatementUpdate',
    'TransactionView', 'CheckView', 'AccountInfoView', 'StatementView', 'StatementListItem',
    'ClassificationRow', 'ClassificationReport', 'KnowledgeEntryCreate', 'KnowledgeEntry',
    'CorrectionResult',
]
