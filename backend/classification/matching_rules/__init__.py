"""
Matching Rules Module
"""

from .description_rules import (
    DescriptionMatchingRules,
    description_rules,
    MatchCandidate,
    MatchResult,
    SCORERS,
    DEFAULT_THRESHOLDS,
    normalize_text,
)

__all__ = [
    "DescriptionMatchingRules",
    "description_rules",
    "MatchCandidate",
    "MatchResult",
    "SCORERS",
    "DEFAULT_THRESHOLDS",
    "normalize_text",
]
