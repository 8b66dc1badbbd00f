"""
Deterministic relevance scoring of verified terms.
"""

import logging
import re
from typing import Iterable, List, Sequence

from pydantic import BaseModel, Field
from rapidfuzz import fuzz, process

from .LinkingTypes import RelevanceSignals, ScoredTerm

logger = logging.getLogger(__name__)


class ScoringWeights(BaseModel):
    """Bonuses and penalties of the scoring function."""

    base_score: float = Field(default=0.3, description="Score of any verified article")
    outgoing_link_bonus: float = Field(default=0.5, description="Term is already linked from the article")
    related_entity_bonus: float = Field(default=0.4, description="Term names an entity related to the article")
    signal_cap: float = Field(default=1.0, description="Cap of the summed signal bonuses")
    occurrence_bonus: float = Field(default=0.05, description="Bonus per occurrence beyond the first")
    occurrence_cap: float = Field(default=0.2, description="Cap of the occurrence bonus")
    stoplist_penalty: float = Field(default=1.0, description="Penalty for stoplist-like or numeric terms")


def score(signals: RelevanceSignals, weights: ScoringWeights = ScoringWeights()) -> float:
    """
    Score a term from its signals.

    Args:
        signals: Contextual signals of the term
        weights: Bonus and penalty configuration

    Returns:
        Score in [0, 1]; identical inputs always give the identical score
    """
    bonus = weights.base_score
    if signals.in_outgoing_link_set:
        bonus += weights.outgoing_link_bonus
    if signals.is_related_entity:
        bonus += weights.related_entity_bonus
    total = min(bonus, weights.signal_cap)

    extra = max(0, signals.occurrence_count - 1)
    total += min(extra * weights.occurrence_bonus, weights.occurrence_cap)

    if signals.is_stoplist_like:
        total -= weights.stoplist_penalty

    return round(max(0.0, min(1.0, total)), 6)


class RelevanceScorer:
    """Ranks verified terms and drops those below the threshold."""

    NUMERIC_PATTERN = re.compile(r"^[\d\s.,/:-]+$|^\d{1,2}(st|nd|rd|th)$", re.IGNORECASE)

    def __init__(
        self,
        threshold: float = 0.3,
        outgoing_links: Iterable[str] = (),
        related_entities: Iterable[str] = (),
        stoplist: Iterable[str] = (),
        related_entity_similarity: float = 90.0,
        weights: ScoringWeights = ScoringWeights(),
    ):
        self._threshold = threshold
        self._outgoing = frozenset(" ".join(t.replace("_", " ").split()).casefold() for t in outgoing_links)
        self._related: List[str] = sorted({" ".join(e.split()).casefold() for e in related_entities if e.strip()})
        self._stoplist = frozenset(t.casefold() for t in stoplist)
        self._similarity = related_entity_similarity
        self._weights = weights

    def is_related_entity(self, key: str, canonical_title: str) -> bool:
        if not self._related:
            return False
        for label in (key, canonical_title.casefold()):
            best = process.extractOne(label, self._related, scorer=fuzz.ratio, score_cutoff=self._similarity)
            if best is not None:
                return True
        return False

    def signals_for(self, key: str, canonical_title: str, occurrence_count: int) -> RelevanceSignals:
        return RelevanceSignals(
            in_outgoing_link_set=key in self._outgoing or canonical_title.casefold() in self._outgoing,
            occurrence_count=occurrence_count,
            is_related_entity=self.is_related_entity(key, canonical_title),
            is_stoplist_like=key in self._stoplist or bool(self.NUMERIC_PATTERN.match(key)),
        )

    def rank(self, terms: Sequence[ScoredTerm]) -> List[ScoredTerm]:
        """
        Score terms and keep those reaching the threshold.

        Returns:
            Kept terms, highest score first, ties broken by key
        """
        kept: List[ScoredTerm] = []
        for term in terms:
            signals = self.signals_for(term.key, term.canonical_title, term.occurrence_count)
            value = score(signals, self._weights)
            if value < self._threshold:
                logger.debug(f"Dropped '{term.surface_form}' with score {value:.2f} < {self._threshold}")
                continue
            kept.append(term.model_copy(update={"score": value}))

        kept.sort(key=lambda t: (-t.score, t.key))
        logger.info(f"Scoring kept {len(kept)} of {len(terms)} terms (threshold {self._threshold})")
        return kept
