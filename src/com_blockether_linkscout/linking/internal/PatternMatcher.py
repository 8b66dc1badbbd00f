"""
Pattern matching seam of the annotator.

Callers hand over a text and a set of literal terms and get back hits. The
regex implementation compiles one alternation per term set; another strategy
(e.g. an Aho-Corasick automaton) can be plugged in without touching callers.
"""

import re
from typing import Dict, Iterable, List, NamedTuple, Protocol, Tuple, runtime_checkable


class PatternHit(NamedTuple):
    start: int
    end: int
    text: str


@runtime_checkable
class PatternMatcher(Protocol):
    def find_all(self, text: str, terms: Iterable[str]) -> List[PatternHit]:
        """
        Find occurrences of any term in text, case-insensitively.

        Hits are ordered by start offset. At a given offset the longest term
        wins; a term never matches inside a longer word.
        """
        ...


class RegexPatternMatcher:
    """Single alternation regex, longest terms first, compiled per term set."""

    def __init__(self, max_cached_patterns: int = 32):
        self._max_cached_patterns = max_cached_patterns
        self._patterns: Dict[Tuple[str, ...], "re.Pattern[str]"] = {}

    @staticmethod
    def order_terms(terms: Iterable[str]) -> Tuple[str, ...]:
        """
        Deduplicate case-insensitively and sort longest first, then alphabetically.

        Terms are compared lowercased, not case-folded: folding rewrites letters
        such as "ß" to "ss", which IGNORECASE matching never treats as equal.
        """
        unique: Dict[str, str] = {}
        for term in terms:
            if term and term.lower() not in unique:
                unique[term.lower()] = term
        return tuple(sorted(unique.values(), key=lambda t: (-len(t), t.lower())))

    def compile(self, terms: Iterable[str]) -> "re.Pattern[str]":
        ordered = self.order_terms(terms)
        pattern = self._patterns.get(ordered)
        if pattern is None:
            alternation = "|".join(re.escape(term) for term in ordered)
            pattern = re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)
            if len(self._patterns) >= self._max_cached_patterns:
                self._patterns.pop(next(iter(self._patterns)))
            self._patterns[ordered] = pattern
        return pattern

    def find_all(self, text: str, terms: Iterable[str]) -> List[PatternHit]:
        ordered = self.order_terms(terms)
        if not ordered or not text:
            return []
        pattern = self.compile(ordered)
        return [PatternHit(m.start(), m.end(), m.group(0)) for m in pattern.finditer(text)]
