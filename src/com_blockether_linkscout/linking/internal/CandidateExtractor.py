"""
Candidate extraction: scans region text for word and phrase spans that may name
a topic with its own article.
"""

import logging
import re
from typing import Iterable, Iterator, List, NamedTuple, Optional, Sequence

from .LinkingErrors import ExtractionError
from .LinkingTypes import Candidate, ExtractionSettings

logger = logging.getLogger(__name__)

# Punctuation trimmed from both ends of a whitespace token.
LEADING_PUNCTUATION = "([{\"'“‘«‹¿¡"
TRAILING_PUNCTUATION = ")]}\"'”’»›.,;:!?…"


class _Word(NamedTuple):
    text: str
    offset: int
    qualifies: bool
    opens_phrase_only: bool
    closes_phrase: bool


class CandidateExtractor:
    """
    Emits Candidate spans from region texts.

    A word qualifies when, after punctuation trimming, it fully matches the
    configured character class, is at least min_word_length long and is not
    made of digits only. Phrases of up to max_phrase_words qualifying words are
    formed greedily: from each position the longest phrase is emitted and the
    scan resumes after it.
    """

    TOKEN_PATTERN = re.compile(r"\S+")
    CITATION_PATTERN = re.compile(r"^\[\d+\]$|^\[[a-z]\]$|^\[citation needed\]$", re.IGNORECASE)
    CITATION_SUFFIX_PATTERN = re.compile(r"(?:\[\d+\])+\W*$")

    def __init__(self, settings: Optional[ExtractionSettings] = None):
        self._settings = settings or ExtractionSettings()

        if self._settings.max_phrase_words < 1:
            raise ExtractionError(f"max_phrase_words must be >= 1, got {self._settings.max_phrase_words}")
        if self._settings.min_word_length < 1:
            raise ExtractionError(f"min_word_length must be >= 1, got {self._settings.min_word_length}")
        try:
            self._word_pattern = re.compile(self._settings.character_class)
        except re.error as e:
            raise ExtractionError(f"Invalid character_class {self._settings.character_class!r}: {e}") from e

    @property
    def settings(self) -> ExtractionSettings:
        return self._settings

    def extract(self, texts: Sequence[str]) -> Iterator[Candidate]:
        """
        Lazily extract candidates from region texts.

        Args:
            texts: Region texts; the index of each text becomes Candidate.source_region

        Yields:
            Candidates in region order, then offset order
        """
        for region_index, text in enumerate(texts):
            yield from self.extract_region(text, region_index)

    def extract_region(self, text: str, region_index: int) -> Iterator[Candidate]:
        """Extract candidates from a single region's text."""
        words = self._split_words(text)
        max_words = self._settings.max_phrase_words
        i = 0
        emitted = 0
        while i < len(words):
            if not words[i].qualifies:
                i += 1
                continue

            end = i
            while (
                end + 1 < len(words)
                and end + 1 - i < max_words
                and not words[end].closes_phrase
                and words[end + 1].qualifies
                and not words[end + 1].opens_phrase_only
            ):
                end += 1

            first, last = words[i], words[end]
            surface = text[first.offset : last.offset + len(last.text)]
            yield Candidate(
                surface_form=surface,
                normalized_key=self.normalize(surface),
                source_region=region_index,
                offset=first.offset,
                length=len(surface),
            )
            i = end + 1
            emitted += 1

        logger.debug(f"Region {region_index}: {emitted} candidates from {len(words)} words")

    @staticmethod
    def normalize(surface: str) -> str:
        """Case-fold and collapse inner whitespace."""
        return " ".join(surface.split()).casefold()

    def _split_words(self, text: str) -> List[_Word]:
        words: List[_Word] = []
        for token in self.TOKEN_PATTERN.finditer(text):
            raw = token.group(0)
            if self.CITATION_PATTERN.match(raw):
                words.append(_Word(raw, token.start(), False, False, True))
                continue

            stripped_left = raw.lstrip(LEADING_PUNCTUATION)
            lead = len(raw) - len(stripped_left)

            # Citation markers glued to a word ("France[3]") end the phrase
            core = stripped_left
            citation = self.CITATION_SUFFIX_PATTERN.search(core)
            if citation:
                core = core[: citation.start()]
            trimmed = core.rstrip(TRAILING_PUNCTUATION)

            words.append(
                _Word(
                    text=trimmed,
                    offset=token.start() + lead,
                    qualifies=self._qualifies(trimmed),
                    opens_phrase_only=lead > 0,
                    closes_phrase=citation is not None or len(trimmed) < len(core),
                )
            )
        return words

    def _qualifies(self, word: str) -> bool:
        if len(word) < self._settings.min_word_length:
            return False
        if word.isdigit():
            return False
        return self._word_pattern.fullmatch(word) is not None


def unique_keys(candidates: Iterable[Candidate]) -> List[str]:
    """Distinct normalized keys in first-seen order."""
    seen = dict.fromkeys(c.normalized_key for c in candidates)
    return list(seen)
