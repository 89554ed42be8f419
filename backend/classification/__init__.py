"""
Transaction Classification Module

Assigns splits (accounting categories) to statement transactions:
- Ranked matching of descriptions against a knowledge base
- Pluggable description scorers with a configurable threshold
- Batch classification per statement or across all statements
- Manual correction that grows the knowledge base
- Audit trail for all operations
"""

from classification.matching_rules.description_rules import (
    DescriptionMatchingRules,
    MatchCandidate,
    MatchResult,
    SCORERS,
    description_rules
)
from classification.knowledge_base import KnowledgeBase
from classification.services.classification_service import ClassificationService

__all__ = [
    # Matching Rules
    'DescriptionMatchingRules',
    'MatchCandidate',
    'MatchResult',
    'SCORERS',
    'description_rules',
    # Knowledge Base
    'KnowledgeBase',
    # Service
    'ClassificationService',
]
