"""Suggestion prioritization and the severity-bucketed fallback pool."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from reviewrelay_core.models import SEVERITY_TIERS, CodeSuggestion, CommentResult, PriorityStatus

logger = logging.getLogger(__name__)

_SEVERITY_RANK = {tier: rank for rank, tier in enumerate(SEVERITY_TIERS)}


def _severity_rank(suggestion: CodeSuggestion) -> int:
    return _SEVERITY_RANK.get(suggestion.severity_tier, len(SEVERITY_TIERS))


@dataclass
class PrioritizationResult:
    kept: list[CodeSuggestion] = field(default_factory=list)
    all_discarded: list[CodeSuggestion] = field(default_factory=list)

    @property
    def discarded_by_quantity(self) -> list[CodeSuggestion]:
        return [s for s in self.all_discarded if s.priority_status == PriorityStatus.DISCARDED_BY_QUANTITY]


def sort_and_prioritize(
    suggestions: Iterable[CodeSuggestion],
    discarded: Iterable[CodeSuggestion] = (),
    max_suggestions: int | None = None,
) -> PrioritizationResult:
    """Rank suggestions by severity and cap them to ``max_suggestions``.

    Duplicated ids keep their first occurrence. Ordering within one severity
    follows the input order. Suggestions beyond the cap become
    DISCARDED_BY_QUANTITY and are the only ones eligible as fallbacks later;
    anything passed in ``discarded`` was rejected for correctness and keeps
    (or is given) DISCARDED_BY_SAFEGUARD.
    """
    seen: set[str] = set()
    unique: list[CodeSuggestion] = []
    for suggestion in suggestions:
        if suggestion.id in seen:
            logger.debug("Dropping duplicated suggestion %s", suggestion.id)
            continue
        seen.add(suggestion.id)
        unique.append(suggestion)

    # sorted() is stable, so equal severities keep their input order.
    ranked = sorted(unique, key=_severity_rank)
    limit = max_suggestions if max_suggestions and max_suggestions > 0 else len(ranked)

    kept = ranked[:limit]
    overflow = ranked[limit:]
    for suggestion in kept:
        suggestion.priority_status = PriorityStatus.PRIORITIZED
    for suggestion in overflow:
        suggestion.priority_status = PriorityStatus.DISCARDED_BY_QUANTITY

    all_discarded: list[CodeSuggestion] = []
    for suggestion in discarded:
        if suggestion.priority_status is None:
            suggestion.priority_status = PriorityStatus.DISCARDED_BY_SAFEGUARD
        all_discarded.append(suggestion)
    all_discarded.extend(overflow)

    if overflow:
        logger.info("Kept %d suggestion(s), %d over the limit of %s", len(kept), len(overflow), max_suggestions)
    return PrioritizationResult(kept=kept, all_discarded=all_discarded)


class FallbackPool:
    """Severity tier -> ordered DISCARDED_BY_QUANTITY suggestions.

    The order inside a tier is the substitution priority. Suggestions are
    marked REPRIORIZED when handed out for an attempt and are never handed
    out again, even across different failing originals.
    """

    def __init__(self):
        self._tiers: dict[str, list[CodeSuggestion]] = {tier: [] for tier in SEVERITY_TIERS}
        self._ids: set[str] = set()

    @classmethod
    def from_discarded(cls, discarded: Iterable[CodeSuggestion]) -> FallbackPool:
        pool = cls()
        for suggestion in discarded:
            pool.add(suggestion)
        return pool

    def add(self, suggestion: CodeSuggestion) -> bool:
        """Add an eligible suggestion. Returns False when it was not added."""
        if suggestion.priority_status != PriorityStatus.DISCARDED_BY_QUANTITY:
            return False
        tier = suggestion.severity_tier
        if tier is None or suggestion.id in self._ids:
            return False
        self._tiers[tier].append(suggestion)
        self._ids.add(suggestion.id)
        return True

    def tier(self, severity: str | None) -> list[CodeSuggestion]:
        return list(self._tiers.get((severity or "").lower(), []))

    def candidates(self, severity: str | None) -> list[CodeSuggestion]:
        return [s for s in self.tier(severity) if s.priority_status != PriorityStatus.REPRIORIZED]

    def next_candidate(self, severity: str | None) -> CodeSuggestion | None:
        remaining = self.candidates(severity)
        return remaining[0] if remaining else None

    @staticmethod
    def mark_repriorized(suggestion: CodeSuggestion) -> None:
        suggestion.priority_status = PriorityStatus.REPRIORIZED

    def __contains__(self, suggestion_id: str) -> bool:
        return suggestion_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


def extract_repriorized(
    comment_results: Iterable[CommentResult],
    discarded: Iterable[CodeSuggestion],
) -> tuple[list[CodeSuggestion], list[CodeSuggestion]]:
    """Split delivered fallbacks off the discarded list.

    Returns ``(delivered_fallbacks, still_discarded)``. A fallback that was
    attempted but failed stays in the discarded list with REPRIORIZED status.
    """
    delivered_ids = {
        r.suggestion.id
        for r in comment_results
        if r.suggestion.priority_status == PriorityStatus.REPRIORIZED and r.delivery_status == "sent"
    }
    delivered: list[CodeSuggestion] = []
    remaining: list[CodeSuggestion] = []
    for suggestion in discarded:
        (delivered if suggestion.id in delivered_ids else remaining).append(suggestion)
    return delivered, remaining
