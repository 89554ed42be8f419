"""
Description Matching Rules

Ranks knowledge base entries against a transaction description.

Scorers (description, pattern) -> float in [0, 1]:
- containment: the pattern occurs literally in the description
  (case-insensitive); the score is the share of the description the
  pattern covers, so more specific patterns rank higher
- token_overlap: shared words / the larger word count
- sequence_ratio: difflib similarity of the two strings

Winner:
- Highest score strictly above the threshold
- Ties keep the entry met first (knowledge base insertion order)
- Nothing above the threshold: no match, the row stays unclassified
"""

import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Callable, Dict, List, Optional, Sequence

_WHITESPACE = re.compile(r"\s+")


def normalize_text(value: Optional[str]) -> str:
    """Lowercase, trim and collapse runs of whitespace."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip().lower()


def containment_score(description: str, pattern: str) -> float:
    description = normalize_text(description)
    pattern = normalize_text(pattern)
    if not description or not pattern or pattern not in description:
        return 0.0
    return len(pattern) / len(description)


def token_overlap_score(description: str, pattern: str) -> float:
    words1 = normalize_text(description).split(" ")
    words2 = normalize_text(pattern).split(" ")
    if not words1[0] or not words2[0]:
        return 0.0
    common = [word for word in words1 if word in words2]
    return len(common) / max(len(words1), len(words2))


def sequence_ratio_score(description: str, pattern: str) -> float:
    description = normalize_text(description)
    pattern = normalize_text(pattern)
    if not description or not pattern:
        return 0.0
    return SequenceMatcher(None, description, pattern).ratio()


Scorer = Callable[[str, str], float]

SCORERS: Dict[str, Scorer] = {
    "containment": containment_score,
    "token_overlap": token_overlap_score,
    "sequence_ratio": sequence_ratio_score,
}

# Any containment is a match; the fuzzy scorers need real resemblance
DEFAULT_THRESHOLDS: Dict[str, float] = {
    "containment": 0.0,
    "token_overlap": 0.5,
    "sequence_ratio": 0.6,
}


@dataclass
class MatchCandidate:
    """
    A knowledge base entry that scored above the threshold.
    """
    entry_id: Optional[int]
    pattern: str
    category: str
    score: float
    position: int


@dataclass
class MatchResult:
    """
    Result of matching one description.
    """
    description: str
    candidates: List[MatchCandidate] = field(default_factory=list)
    best_match: Optional[MatchCandidate] = None

    @property
    def matched(self) -> bool:
        return self.best_match is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "candidates_count": len(self.candidates),
            "candidates": [
                {
                    "entry_id": c.entry_id,
                    "pattern": c.pattern,
                    "category": c.category,
                    "score": round(c.score, 4)
                }
                for c in self.candidates
            ],
            "best_match": {
                "entry_id": self.best_match.entry_id,
                "category": self.best_match.category,
                "score": round(self.best_match.score, 4)
            } if self.best_match else None,
        }


class DescriptionMatchingRules:
    """
    Ranked-candidate matcher over knowledge base entries.

    Deterministic for a fixed entry list, scorer and threshold.
    """

    def __init__(self, scorer: str = "containment", threshold: Optional[float] = None):
        if scorer not in SCORERS:
            raise ValueError(f"Unknown scorer {scorer!r}; expected one of {sorted(SCORERS)}")
        self.scorer_name = scorer
        self.scorer = SCORERS[scorer]
        self.threshold = DEFAULT_THRESHOLDS[scorer] if threshold is None else threshold

    @classmethod
    def from_settings(cls, settings) -> "DescriptionMatchingRules":
        return cls(settings.CLASSIFICATION_SCORER, settings.CLASSIFICATION_THRESHOLD)

    def find_matches(self, description: str, entries: Sequence[Any]) -> MatchResult:
        """
        Score every entry against the description.

        Args:
            description: Transaction description
            entries: Objects with `id`, `pattern` and `category`, in
                knowledge base order

        Returns:
            MatchResult with candidates ranked best first
        """
        candidates = []

        for position, entry in enumerate(entries):
            if not entry.pattern or not entry.category:
                continue
            score = self.scorer(description, entry.pattern)
            if score > self.threshold:
                candidates.append(MatchCandidate(
                    entry_id=getattr(entry, "id", None),
                    pattern=entry.pattern,
                    category=entry.category,
                    score=score,
                    position=position
                ))

        # Stable sort keeps insertion order among equal scores
        candidates.sort(key=lambda c: c.score, reverse=True)

        return MatchResult(
            description=description,
            candidates=candidates,
            best_match=candidates[0] if candidates else None
        )


# Instantiate default rules engine
description_rules = DescriptionMatchingRules()
