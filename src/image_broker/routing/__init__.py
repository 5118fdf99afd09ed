"""
Backend selection.

Example:
    >>> from image_broker.routing import SelectionEngine, SelectionPolicy
    >>>
    >>> engine = SelectionEngine(SelectionPolicy.from_yaml("policy.yaml"))
    >>> engine.classify("quick draft sketch").category
    'quick-draft'
    >>> engine.candidates("quick draft sketch", ["openai", "fal", "bfl"])
    ['fal', 'openai']
"""

from image_broker.routing.engine import (
    Recommendations,
    SelectionEngine,
    SelectionScore,
    keyword_matches,
)
from image_broker.routing.policy import (
    DEFAULT_CATEGORIES,
    DEFAULT_CHAIN,
    Category,
    MatchMode,
    SelectionPolicy,
)

__all__ = [
    "DEFAULT_CATEGORIES",
    "DEFAULT_CHAIN",
    "Category",
    "MatchMode",
    "Recommendations",
    "SelectionEngine",
    "SelectionPolicy",
    "SelectionScore",
    "keyword_matches",
]
