"""
Exclusion rules applied to candidates before any registry call is made.
"""

import logging
from typing import Iterable, Iterator, List, Optional

from pydantic import BaseModel, Field

from .LinkingTypes import DEFAULT_STOPLIST, Candidate, ExclusionReason

logger = logging.getLogger(__name__)


class ExclusionContext(BaseModel):
    """Document-level facts the exclusion rules depend on."""

    self_title: str = Field(default="", description="Title of the document being annotated")
    already_linked_surface_forms: List[str] = Field(
        default_factory=list, description="Texts of links already present in the document"
    )
    stoplist: List[str] = Field(default_factory=lambda: list(DEFAULT_STOPLIST))


class ExclusionFilter:
    """
    Drops candidates that must not be verified.

    Rules are applied in order, case-insensitively; the first matching rule
    excludes the candidate:

    1. the candidate and the document's own title contain one another
    2. the candidate is in the stoplist
    3. the candidate's surface text is already linked somewhere in the document
    """

    def __init__(self, context: ExclusionContext):
        self._self_title = " ".join(context.self_title.split()).casefold()
        self._stoplist = frozenset(term.strip().casefold() for term in context.stoplist if term.strip())
        self._linked = frozenset(
            " ".join(text.split()).casefold() for text in context.already_linked_surface_forms if text.strip()
        )
        self.excluded_count = 0

    def exclusion_reason(self, candidate: Candidate) -> Optional[ExclusionReason]:
        key = candidate.normalized_key
        if self._self_title and (key in self._self_title or self._self_title in key):
            return ExclusionReason.SELF_REFERENCE
        if key in self._stoplist:
            return ExclusionReason.STOPLIST
        if " ".join(candidate.surface_form.split()).casefold() in self._linked:
            return ExclusionReason.ALREADY_LINKED
        return None

    def filter(self, candidates: Iterable[Candidate]) -> Iterator[Candidate]:
        """Lazily yield the candidates no rule excludes."""
        for candidate in candidates:
            reason = self.exclusion_reason(candidate)
            if reason is None:
                yield candidate
                continue
            self.excluded_count += 1
            logger.debug(f"Excluded '{candidate.surface_form}' ({reason.value})")
