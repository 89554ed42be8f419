from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime, date as DateType
from decimal import Decimal
import re

from database.statement_models import (
    TransactionKind, LABEL_LENGTH, NUMBER_LENGTH, SHORT_LENGTH, KIND_LENGTH
)


ZERO = Decimal("0.00")
_AMOUNT = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_SUFFIX_SIGN = re.compile(r"^(?P<body>.*?)\s*(?P<sign>-|DR|CR)$", re.IGNORECASE)


def _coerce_amount(value):
    """
    Accept amounts the way statements print them.

    "$1,204.50", "(50.00)", "50.00-", "50.00 DR" and "50.00 CR" are all
    understood; anything else that is not a plain number is rejected.
    """
    if not isinstance(value, str):
        return value
    text = value.strip().replace("$", "").replace(",", "").replace(" ", "")
    negative = False

    if text.startswith("(") and text.endswith(")"):
        text = text[1:-1]
        negative = True
    else:
        suffix = _SUFFIX_SIGN.match(text)
        if suffix and suffix.group("body"):
            text = suffix.group("body")
            negative = suffix.group("sign").upper() != "CR"

    if not _AMOUNT.match(text):
        raise ValueError(f"{value!r} is not a monetary amount")
    if negative:
        if text[0] in "+-":
            raise ValueError(f"{value!r} carries two signs")
        text = "-" + text
    return text


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== STATEMENT INPUT ====================
class StatementPeriod(WireModel):
    from_date: DateType = Field(alias="from")
    to_date: DateType = Field(alias="to")

    @model_validator(mode="after")
    def _ordered(self):
        if self.from_date > self.to_date:
            raise ValueError("statement period ends before it starts")
        return self


class StatementPeriodPatch(WireModel):
    """Either end may be omitted; the stored date is kept for it"""
    from_date: Optional[DateType] = Field(default=None, alias="from")
    to_date: Optional[DateType] = Field(default=None, alias="to")

    @model_validator(mode="after")
    def _ordered(self):
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("statement period ends before it starts")
        return self


class Balances(WireModel):
    beginning: Optional[Decimal] = None
    ending: Optional[Decimal] = None


class RequiredBalances(WireModel):
    beginning: Decimal
    ending: Decimal


class TransactionDetails(WireModel):
    location: Optional[str] = Field(default=None, max_length=LABEL_LENGTH)
    reference_number: Optional[str] = Field(default=None, max_length=NUMBER_LENGTH)
    check_number: Optional[str] = Field(default=None, max_length=SHORT_LENGTH)
    classification: Optional[str] = Field(default=None, max_length=LABEL_LENGTH)


class TransactionInput(WireModel):
    """
    A ledger row as submitted by a caller.

    With an id it patches the existing row (only the provided fields);
    without one it is inserted and date/description/amount are required.
    """
    id: Optional[int] = None
    date: Optional[DateType] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    kind: Optional[TransactionKind] = Field(
        default=None,
        validation_alias=AliasChoices("kind", "type"),
    )
    details: Optional[TransactionDetails] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _clean_amount(cls, value):
        return _coerce_amount(value)

    @field_validator("kind", mode="before")
    @classmethod
    def _lower_kind(cls, value):
        if isinstance(value, str):
            return value.strip().lower() or None
        return value


class CheckInput(WireModel):
    check_number: str = Field(max_length=SHORT_LENGTH)
    date: DateType
    amount: Decimal

    @field_validator("amount", mode="before")
    @classmethod
    def _clean_amount(cls, value):
        return _coerce_amount(value)


class AccountInfoPatch(WireModel):
    """Partial statement metadata; None means "not provided"."""
    bank_name: Optional[str] = Field(default=None, max_length=LABEL_LENGTH)
    account_holder: Optional[str] = Field(default=None, max_length=LABEL_LENGTH)
    account_number: Optional[str] = Field(default=None, max_length=NUMBER_LENGTH)
    statement_period: Optional[StatementPeriodPatch] = None
    balances: Optional[Balances] = None
    month_reference: Optional[str] = Field(default=None, max_length=SHORT_LENGTH)


class NewAccountInfo(WireModel):
    bank_name: Optional[str] = Field(default=None, max_length=LABEL_LENGTH)
    account_holder: str = Field(max_length=LABEL_LENGTH)
    account_number: str = Field(max_length=NUMBER_LENGTH)
    statement_period: StatementPeriod
    balances: RequiredBalances
    month_reference: Optional[str] = Field(default=None, max_length=SHORT_LENGTH)
    pdf_url: Optional[str] = None
    pdf_file_name: Optional[str] = Field(default=None, max_length=LABEL_LENGTH)
    pdf_upload_date: Optional[datetime] = None
    pdf_file_size: Optional[int] = None


class SummaryTotals(WireModel):
    total_deposits: Decimal = ZERO
    total_withdrawals: Decimal = ZERO
    total_checks: Decimal = ZERO
    total_fees: Decimal = ZERO

    model_config = ConfigDict(from_attributes=True)


class StatementSnapshot(WireModel):
    """A full parsed statement as handed over by the extraction step"""
    account_info: NewAccountInfo
    transactions: List[TransactionInput] = Field(default_factory=list)
    checks: List[CheckInput] = Field(default_factory=list)
    summary: Optional[SummaryTotals] = None


class StatementUpdate(WireModel):
    account_info: Optional[AccountInfoPatch] = None
    transactions: Optional[List[TransactionInput]] = None


# ==================== STATEMENT VIEW ====================
class TransactionView(WireModel):
    id: int
    date: DateType
    description: str
    amount: Decimal
    kind: TransactionKind = Field(alias="type")
    details: TransactionDetails


class CheckView(WireModel):
    check_number: str
    date: DateType
    amount: Decimal


class AccountInfoView(WireModel):
    bank_name: Optional[str] = None
    account_holder: str
    account_number: str
    statement_period: StatementPeriod
    balances: Balances
    month_reference: Optional[str] = None
    pdf_url: Optional[str] = None
    pdf_file_name: Optional[str] = None
    pdf_upload_date: Optional[datetime] = None
    pdf_file_size: Optional[int] = None


class StatementView(WireModel):
    """The persisted statement; summary always matches transactions"""
    account_id: int
    client_id: Optional[int] = None
    status: Optional[str] = None
    account_info: AccountInfoView
    transactions: List[TransactionView] = Field(default_factory=list)
    checks: List[CheckView] = Field(default_factory=list)
    summary: SummaryTotals


class StatementListItem(WireModel):
    account_id: int
    client_id: Optional[int] = None
    status: Optional[str] = None
    bank_name: Optional[str] = None
    account_holder: str
    month_reference: Optional[str] = None
    created_at: Optional[datetime] = None


# ==================== CLASSIFICATION ====================
class ClassificationRow(WireModel):
    id: int
    description: str
    status: str  # "classified" | "unclassified"
    category: Optional[str] = None
    score: Optional[float] = None
    entry_id: Optional[int] = None


class ClassificationReport(WireModel):
    total_processed: int = 0
    classified: int = 0
    unclassified: int = 0
    results: List[ClassificationRow] = Field(default_factory=list)


class KnowledgeEntryCreate(WireModel):
    pattern: str = Field(min_length=1, max_length=LABEL_LENGTH)
    category: str = Field(min_length=1, max_length=LABEL_LENGTH)
    entry_type: Optional[str] = Field(default=None, max_length=KIND_LENGTH)
    name: Optional[str] = Field(default=None, max_length=LABEL_LENGTH)
    account: Optional[str] = Field(default=None, max_length=LABEL_LENGTH)
    debit: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    entry_date: Optional[DateType] = None


class KnowledgeEntry(KnowledgeEntryCreate):
    id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CorrectionResult(WireModel):
    transaction: TransactionView
    entry: KnowledgeEntry
