from __future__ import annotations

import os
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

DEFAULT_STOPLIST: Sequence[str] = (
    # Calendar words
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
    # Function words that often start a sentence
    "the",
    "and",
    "but",
    "with",
    "from",
    "this",
    "that",
    "these",
    "those",
    "have",
    "been",
    "were",
    "their",
    "there",
    "where",
    "what",
    "when",
    "however",
    "although",
    "after",
    "before",
    "during",
    "since",
    "while",
)

DEFAULT_EXCLUDE_TAGS: Sequence[str] = (
    "a",
    "sup",
    "sub",
    "cite",
    "mark",
    "code",
    "pre",
    "script",
    "style",
    "table",
    "figure",
    "img",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
)

DEFAULT_EXCLUDE_CLASSES: Sequence[str] = (
    "reference",
    "reflist",
    "infobox",
    "navbox",
    "thumb",
    "metadata",
    "mw-editsection",
)

DEFAULT_DECORATION_CLASS = "linkscout-term"


class Candidate(BaseModel):
    """An unverified text span that might name a topic with its own article."""

    model_config = ConfigDict(frozen=True)

    surface_form: str = Field(description="Text exactly as it appears in the region (punctuation trimmed)")
    normalized_key: str = Field(description="Case-folded surface form, used as cache key")
    source_region: int = Field(description="Index of the region in the session's region snapshot", ge=0)
    offset: int = Field(description="Character offset of the span inside the region text", ge=0)
    length: int = Field(description="Length of the span in characters", ge=1)

    @property
    def end(self) -> int:
        return self.offset + self.length


class VerificationRecord(BaseModel):
    """Registry verdict for one normalized key."""

    key: str = Field(description="Case-folded key the record is stored under")
    exists: bool = Field(description="Whether the registry has a page for the key")
    canonical_title: Optional[str] = Field(
        default=None, description="Authoritative title, after redirect resolution"
    )
    is_ambiguous: bool = Field(default=False, description="Whether the page is a disambiguation page")
    timestamp: float = Field(description="Epoch seconds when the verdict was obtained")

    @model_validator(mode="after")
    def _exists_requires_title(self) -> "VerificationRecord":
        if self.exists and not self.canonical_title:
            raise ValueError(f"Record '{self.key}' exists but has no canonical title")
        return self

    @property
    def is_link_target(self) -> bool:
        """An existing, unambiguous page is the only valid decoration target."""
        return self.exists and not self.is_ambiguous


class Match(BaseModel):
    """An accepted occurrence of an approved term inside one region."""

    start: int = Field(ge=0)
    end: int = Field(ge=0)
    canonical_title: str
    origin_candidate: str = Field(description="Normalized key of the approved term that produced the match")

    def overlaps(self, other: "Match") -> bool:
        return not (self.end <= other.start or other.end <= self.start)


class RateWindow(BaseModel):
    """Snapshot of the rate limiter state."""

    count_in_window: int = Field(default=0, ge=0)
    window_start: Optional[float] = Field(default=None, description="Time of the oldest call still counted")


class AnnotationSegment(BaseModel):
    """One piece of a region replacement; decorated when it carries a title."""

    text: str
    canonical_title: Optional[str] = None
    term_key: Optional[str] = Field(default=None, description="Normalized key of the decorated term")

    @property
    def is_decoration(self) -> bool:
        return self.canonical_title is not None


class ExclusionReason(str, Enum):
    SELF_REFERENCE = "self_reference"
    STOPLIST = "stoplist"
    ALREADY_LINKED = "already_linked"


class ScoredTerm(BaseModel):
    """A verified term together with its relevance score."""

    key: str = Field(description="Normalized key of the term")
    surface_form: str = Field(description="First surface form seen in the document")
    canonical_title: str = Field(description="Registry title the decoration points to")
    score: float = Field(default=1.0, ge=0.0, le=1.0)
    occurrence_count: int = Field(default=1, ge=0)


class RelevanceSignals(BaseModel):
    """Inputs of the relevance scoring function."""

    model_config = ConfigDict(frozen=True)

    in_outgoing_link_set: bool = False
    occurrence_count: int = Field(default=1, ge=0)
    is_related_entity: bool = False
    is_stoplist_like: bool = False


class LinkingContext(BaseModel):
    """Article-level knowledge gathered before a run; every field may stay empty."""

    self_title: Optional[str] = Field(default=None, description="Overrides the title read from the document")
    outgoing_links: List[str] = Field(default_factory=list, description="Titles the article already links to")
    related_entities: List[str] = Field(default_factory=list, description="Labels of entities related to the article")


class VerificationOutcome(BaseModel):
    """Result of verifying a set of keys against the registry."""

    records: Dict[str, VerificationRecord] = Field(default_factory=dict)
    cache_hits: int = 0
    completed_batches: int = 0
    failed_batches: int = 0
    cancelled: bool = False


class LinkingReport(BaseModel):
    """Summary of one pipeline run over a document."""

    total_regions: int = 0
    total_candidates: int = 0
    excluded_candidates: int = 0
    unique_keys: int = 0
    cache_hits: int = 0
    verified_keys: int = 0
    failed_batches: int = 0
    annotated_regions: int = 0
    total_decorations: int = 0
    cancelled: bool = False
    terms: List[ScoredTerm] = Field(default_factory=list, description="Approved terms, highest score first")
    started_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_terms(self) -> int:
        return len(self.terms)


class PersistedCacheEntry(BaseModel):
    exists: bool
    canonical_title: Optional[str] = None
    is_disambiguation: bool = False
    timestamp: float


class PersistedCache(BaseModel):
    """Flat serializable form of the verification cache."""

    entries: Dict[str, PersistedCacheEntry] = Field(default_factory=dict)
    saved_at: float = Field(description="Epoch seconds when the cache was written")


class ExtractionSettings(BaseModel):
    """Candidate extraction parameters. Validated by CandidateExtractor, not here."""

    min_word_length: int = Field(default=3, description="Minimum length of every word of a candidate")
    max_phrase_words: int = Field(default=3, description="Maximum number of words in one candidate")
    character_class: str = Field(
        default=r"[A-ZÀ-Þ][\w'’\-]*",
        description="Regular expression every word of a candidate must fully match",
    )


class LinkingSettings(BaseModel):
    """All pipeline configuration; every field is optional."""

    # Extraction
    min_word_length: int = Field(default=3, description="Minimum length of every word of a candidate")
    max_phrase_words: int = Field(default=3, description="Maximum number of words in one candidate")
    character_class: str = Field(
        default=r"[A-ZÀ-Þ][\w'’\-]*",
        description="Regular expression every word of a candidate must fully match",
    )

    # Exclusion
    stoplist: List[str] = Field(default_factory=lambda: list(DEFAULT_STOPLIST))
    exclude_tags: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_TAGS))
    exclude_classes: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_CLASSES))

    # Verification
    language: str = Field(default="en", description="Registry language; selects the remote wiki")
    batch_size: int = Field(default=15, description="Maximum titles per registry request", ge=1, le=50)
    rate_limit: int = Field(default=100, description="Maximum registry calls per window", ge=1)
    rate_window_seconds: float = Field(default=60.0, description="Length of the rate window", gt=0)
    inter_batch_delay_seconds: float = Field(default=0.25, description="Fixed pause between batches", ge=0)
    request_timeout_seconds: float = Field(default=10.0, description="Timeout of one registry call", gt=0)
    max_concurrent_batches: int = Field(default=1, description="Parallel verification workers", ge=1)
    want_disambiguation_flag: bool = Field(default=True)
    follow_redirects: bool = Field(default=True)
    cache_ttl_seconds: float = Field(default=7 * 24 * 60 * 60, description="Verification cache TTL", gt=0)

    # Scoring
    scoring_enabled: bool = Field(default=True)
    score_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    related_entity_similarity: float = Field(
        default=90.0,
        description="Minimum rapidfuzz ratio (0-100) for a term to count as a related entity",
        ge=0.0,
        le=100.0,
    )

    # Annotation
    highlight_each_term_once: bool = Field(default=False)
    match_title_containment: bool = Field(
        default=False,
        description="Approve unverified candidates contained in (or containing) a known title",
    )
    max_decorations: Optional[int] = Field(default=None, description="Cap on decorations per document", ge=1)
    decoration_class: str = Field(default=DEFAULT_DECORATION_CLASS)

    @property
    def extraction(self) -> ExtractionSettings:
        return ExtractionSettings(
            min_word_length=self.min_word_length,
            max_phrase_words=self.max_phrase_words,
            character_class=self.character_class,
        )

    @classmethod
    def from_env(cls, prefix: str = "LINKSCOUT_", **overrides: Any) -> "LinkingSettings":
        """
        Build settings from environment variables.

        Every scalar field can be set as PREFIX + FIELD_NAME in upper case, list
        fields as comma separated values. Keyword overrides win over the
        environment.

        Args:
            prefix: Environment variable prefix
            **overrides: Explicit field values

        Returns:
            Validated settings
        """
        values: Dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            if field.annotation in (List[str], "List[str]"):
                values[name] = [item.strip() for item in raw.split(",") if item.strip()]
            else:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)
