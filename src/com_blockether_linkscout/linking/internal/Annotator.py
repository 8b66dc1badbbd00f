"""
Overlap-safe, idempotent decoration of approved terms in document regions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .LinkingErrors import AnnotationConflictError
from .LinkingTypes import AnnotationSegment, Match
from .PatternMatcher import PatternMatcher, RegexPatternMatcher

if TYPE_CHECKING:
    from ...document.HostDocument import HostDocument, TextRegion

logger = logging.getLogger(__name__)


class Annotator:
    """
    Computes non-overlapping matches and rewrites regions atomically.

    Approved terms are matched case-insensitively with one alternation, longest
    first. Matches are accepted left to right; a match overlapping an accepted
    one is dropped. Regions without accepted matches are never touched.

    GUARANTEES:
    - No two accepted matches of a region overlap
    - A region is replaced in one mutation or not at all
    - Protected regions (inside decorations, links, citations, excluded containers)
      are never rewritten, even if they were handed in
    """

    def __init__(
        self,
        approved_terms: Mapping[str, str],
        highlight_each_term_once: bool = False,
        max_decorations: Optional[int] = None,
        matcher: Optional[PatternMatcher] = None,
        already_decorated: Iterable[str] = (),
        surface_forms: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            approved_terms: Normalized key -> canonical title
            highlight_each_term_once: Decorate only the first occurrence of each term per document
            max_decorations: Optional cap on decorations per document
            matcher: Pattern matching strategy
            already_decorated: Keys decorated before this run (count as used in once mode)
            surface_forms: Normalized key -> spelling seen in the document, matched alongside the key
        """
        self._terms: Dict[str, str] = {key.casefold(): title for key, title in approved_terms.items()}
        self._once = highlight_each_term_once
        self._max_decorations = max_decorations
        self._matcher = matcher or RegexPatternMatcher()
        self._used: Set[str] = {key.casefold() for key in already_decorated}
        # Lowercased spelling -> key, so terms whose case folding rewrites letters ("ß" -> "ss") still match
        self._spellings: Dict[str, str] = {key: key for key in self._terms}
        for key, surface in (surface_forms or {}).items():
            key = key.casefold()
            if key in self._terms:
                self._spellings[" ".join(surface.split()).lower()] = key
        self.total_decorations = 0

    @property
    def used_terms(self) -> Set[str]:
        return set(self._used)

    def _budget_left(self) -> bool:
        return self._max_decorations is None or self.total_decorations < self._max_decorations

    def find_matches(self, text: str) -> List[Match]:
        """
        Accepted matches of a region text, left to right.

        Marks the matched terms as used, so in once mode later regions skip them.
        """
        if not self._terms or not text:
            return []

        hits = sorted(
            self._matcher.find_all(text, self._spellings.keys()),
            key=lambda h: (h.start, -(h.end - h.start)),
        )
        accepted: List[Match] = []
        for hit in hits:
            spelling = " ".join(hit.text.split()).lower()
            key = self._spellings.get(spelling, spelling.casefold())
            title = self._terms.get(key)
            if title is None:
                continue
            if self._once and key in self._used:
                continue
            if not self._budget_left():
                break

            candidate = Match(start=hit.start, end=hit.end, canonical_title=title, origin_candidate=key)
            conflict = next((m for m in accepted if m.overlaps(candidate)), None)
            if conflict is not None:
                error = AnnotationConflictError(candidate.start, candidate.end, conflict.start, conflict.end)
                logger.debug(f"Dropping conflicting match '{hit.text}': {error}")
                continue

            accepted.append(candidate)
            self._used.add(key)
            self.total_decorations += 1
        return accepted

    @staticmethod
    def build_segments(text: str, matches: Sequence[Match]) -> List[AnnotationSegment]:
        """Alternate plain segments and decorated spans; empty plain segments are omitted."""
        segments: List[AnnotationSegment] = []
        cursor = 0
        for match in sorted(matches, key=lambda m: m.start):
            if match.start > cursor:
                segments.append(AnnotationSegment(text=text[cursor : match.start]))
            segments.append(
                AnnotationSegment(
                    text=text[match.start : match.end],
                    canonical_title=match.canonical_title,
                    term_key=match.origin_candidate,
                )
            )
            cursor = match.end
        if cursor < len(text):
            segments.append(AnnotationSegment(text=text[cursor:]))
        return segments

    def annotate_regions(
        self,
        document: "HostDocument",
        regions: Sequence["TextRegion"],
        exclude_tags: Iterable[str],
        exclude_classes: Iterable[str],
    ) -> int:
        """
        Decorate approved terms in a snapshot of regions.

        Args:
            document: Host document owning the regions
            regions: Snapshot taken before any replacement
            exclude_tags: Tags checked again in the ancestry of each region
            exclude_classes: Classes checked again in the ancestry of each region

        Returns:
            Number of regions that were replaced
        """
        exclude_tags = list(exclude_tags)
        exclude_classes = list(exclude_classes)
        replaced = 0
        for region in regions:
            if not self._budget_left():
                break
            if document.is_protected(region, exclude_tags, exclude_classes):
                logger.debug(f"Skipping protected region {region!r}")
                continue

            text = region.text
            matches = self.find_matches(text)
            if not matches:
                continue
            document.replace(region, self.build_segments(text, matches))
            replaced += 1

        logger.info(f"Annotated {replaced} regions with {self.total_decorations} decorations")
        return replaced
