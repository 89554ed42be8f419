"""
Normalisation helpers for ledger rows arriving from statement extraction.

- Kind derivation (amount sign decides credit vs. debit)
- Detail extraction (location, reference number, check number) from the
  free-text description when the extractor did not supply them; values
  wider than their column are truncated (location) or dropped (numbers)
"""

import re
from decimal import Decimal
from typing import Optional

from database.statement_models import TransactionKind, LABEL_LENGTH, NUMBER_LENGTH, SHORT_LENGTH

LOCATION_PATTERN = re.compile(r"(?:\bat|\bin)\s+([A-Za-z\s]+?)(?:\s+\d|$)", re.IGNORECASE)
REFERENCE_PATTERN = re.compile(r"(?:ref|conf)[#:\s]+([A-Za-z0-9]+)", re.IGNORECASE)
CHECK_NUMBER_PATTERN = re.compile(r"check\s*#?\s*(\d+)", re.IGNORECASE)


def derive_kind(
    amount: Decimal,
    kind: Optional[TransactionKind] = None,
    check_number: Optional[str] = None,
) -> TransactionKind:
    """
    Resolve the kind stored for a row.

    check/fee are context the sign cannot express, so a caller-supplied
    value is kept. Otherwise the sign wins over whatever credit/debit the
    caller claimed.
    """
    if kind in (TransactionKind.CHECK, TransactionKind.FEE):
        return kind
    if kind is None and check_number:
        return TransactionKind.CHECK
    if amount > 0:
        return TransactionKind.CREDIT
    if amount < 0:
        return TransactionKind.DEBIT
    return kind or TransactionKind.CREDIT


def extract_location(description: str) -> Optional[str]:
    match = LOCATION_PATTERN.search(description)
    if not match:
        return None
    location = match.group(1).strip()[:LABEL_LENGTH].rstrip()
    return location or None


def _bounded(match, limit: int) -> Optional[str]:
    if not match or len(match.group(1)) > limit:
        return None
    return match.group(1)


def extract_reference_number(description: str) -> Optional[str]:
    return _bounded(REFERENCE_PATTERN.search(description), NUMBER_LENGTH)


def extract_check_number(description: str) -> Optional[str]:
    return _bounded(CHECK_NUMBER_PATTERN.search(description), SHORT_LENGTH)
