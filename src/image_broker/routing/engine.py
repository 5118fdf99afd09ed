"""
Selection engine: prompt classification and candidate ordering.

Scoring is a pure function of (prompt, policy):
- score = sum of the lengths of the category's matched keywords
- confidence = base_confidence * (0.5 + 0.5 * matched / total_keywords)
- highest raw score wins; ties go to the category declared first
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from image_broker.routing.policy import MatchMode, SelectionPolicy
from image_broker.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from image_broker.routing.policy import Category

logger = get_logger(__name__)


@lru_cache(maxsize=512)
def _word_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(r"(?<![a-z0-9])" + re.escape(keyword))


def keyword_matches(prompt: str, keyword: str, mode: MatchMode = MatchMode.SUBSTRING) -> bool:
    """Whether ``keyword`` occurs in an already lower-cased prompt."""
    if mode == MatchMode.SUBSTRING:
        return keyword in prompt
    return _word_pattern(keyword).search(prompt) is not None


@dataclass(frozen=True)
class SelectionScore:
    """Outcome of matching one category against a prompt.

    Attributes:
        category: Category name
        score: Sum of matched keyword lengths
        confidence: Adjusted confidence in [0, 1]
        matched_keywords: Keywords found in the prompt
        backend: Head preferred backend of the category, if any
    """

    category: str
    score: int
    confidence: float
    matched_keywords: tuple[str, ...] = ()
    backend: str | None = None


@dataclass
class Recommendations:
    """Backend recommendations for a prompt."""

    primary: list[str] = field(default_factory=list)
    secondary: list[str] = field(default_factory=list)
    reason: str = ""
    category: str | None = None
    confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary": self.primary,
            "secondary": self.secondary,
            "reason": self.reason,
        }


def _dedupe(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered


class SelectionEngine:
    """Decides which backends to try for a request, and in what order.

    The output is always an ordered candidate list; the orchestrator treats
    it as a priority queue for fallback.

    Example:
        >>> engine = SelectionEngine()
        >>> engine.candidates("logo with text 'Acme'", ["openai", "ideogram"])
        ['ideogram', 'openai']
    """

    def __init__(self, policy: SelectionPolicy | None = None) -> None:
        """Initialize selection engine.

        Args:
            policy: Category table and heuristics (defaults to the built-in table)
        """
        self._policy = policy or SelectionPolicy()

    @property
    def policy(self) -> SelectionPolicy:
        return self._policy

    def score_category(self, prompt: str, category: Category) -> SelectionScore | None:
        """Score one category; None when no keyword matches."""
        lower = prompt.lower()
        matched = tuple(
            kw for kw in category.keywords if keyword_matches(lower, kw, self._policy.match_mode)
        )
        if not matched:
            return None
        ratio = len(matched) / len(category.keywords)
        return SelectionScore(
            category=category.name,
            score=sum(len(kw) for kw in matched),
            confidence=category.base_confidence * (0.5 + 0.5 * ratio),
            matched_keywords=matched,
            backend=category.preferred[0] if category.preferred else None,
        )

    def score_all(self, prompt: str) -> list[SelectionScore]:
        """Every matching category, in declaration order."""
        scores = []
        for category in self._policy.categories:
            score = self.score_category(prompt, category)
            if score is not None:
                scores.append(score)
        return scores

    def classify(self, prompt: str) -> SelectionScore | None:
        """The winning category for a prompt, or None if nothing matches."""
        best: SelectionScore | None = None
        for score in self.score_all(prompt):
            # Strict comparison keeps the earlier category on ties
            if best is None or score.score > best.score:
                best = score
        return best

    def _heuristic_backends(self, prompt: str) -> list[str]:
        lower = prompt.lower()
        mode = self._policy.match_mode
        backends: list[str] = []
        if any(keyword_matches(lower, kw, mode) for kw in self._policy.quality_keywords):
            backends.extend(self._policy.quality_backends)
        if any(keyword_matches(lower, kw, mode) for kw in self._policy.speed_keywords):
            backends.extend(self._policy.speed_backends)
        return backends

    def automatic_order(
        self,
        prompt: str,
        available: Sequence[str],
        default_backend: str | None = None,
    ) -> list[str]:
        """Order ``available`` for a prompt without an explicit choice.

        A matched category yields only its preferred then fallback backends.
        When nothing matches, or none of the category's backends is
        available, the quality and speed heuristics come first, then the
        configured default backend, then the static default chain, then any
        remaining available backend.
        """
        available_set = {name.lower() for name in available}

        match = self.classify(prompt)
        category = self._policy.category(match.category) if match is not None else None
        if match is not None and category is not None:
            from_category = [
                name
                for name in _dedupe([*category.preferred, *category.fallback])
                if name in available_set
            ]
            logger.debug(
                "Classified prompt",
                category=match.category,
                score=match.score,
                confidence=round(match.confidence, 2),
                candidates=from_category,
            )
            if from_category:
                return from_category

        ordered = self._heuristic_backends(prompt) if match is None else []
        if default_backend:
            ordered.append(default_backend.lower())
        ordered.extend(self._policy.default_chain)
        ordered.extend(name.lower() for name in available)
        return [name for name in _dedupe(ordered) if name in available_set]

    def candidates(
        self,
        prompt: str,
        available: Sequence[str],
        explicit: str | None = None,
        default_backend: str | None = None,
    ) -> list[str]:
        """Ordered, de-duplicated candidate backends for a request.

        Args:
            prompt: Request prompt
            available: Configured backends able to serve the request
            explicit: Caller-chosen backend (None or 'auto' for automatic)
            default_backend: Backend preferred when the prompt matches no category

        Returns:
            Candidate names; with an available explicit choice it comes first
        """
        auto = self.automatic_order(prompt, available, default_backend)
        if explicit and explicit.lower() != "auto":
            name = explicit.lower()
            if name in {a.lower() for a in available}:
                return [name, *[b for b in auto if b != name]]
            logger.warning(
                "Requested backend not available, using automatic selection",
                requested=name,
            )
        return auto

    def recommendations(self, prompt: str) -> Recommendations:
        """Recommended backends for a prompt, independent of configuration."""
        match = self.classify(prompt)
        category = self._policy.category(match.category) if match is not None else None
        if match is not None and category is not None:
            return Recommendations(
                primary=list(category.preferred),
                secondary=list(category.fallback),
                reason=f"Detected {match.category} use case with {match.confidence * 100:.0f}% confidence",
                category=match.category,
                confidence=match.confidence,
            )
        return Recommendations(
            primary=list(self._policy.primary),
            secondary=list(self._policy.secondary),
            reason="No specific use case detected - using general-purpose backends",
        )
