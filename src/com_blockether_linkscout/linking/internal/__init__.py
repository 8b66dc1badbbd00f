"""Pipeline stages of unlinked term discovery."""

from .Annotator import Annotator
from .BatchVerifier import BatchVerifier
from .CandidateExtractor import CandidateExtractor, unique_keys
from .ExclusionFilter import ExclusionContext, ExclusionFilter
from .LinkingErrors import (
    AnnotationConflictError,
    CacheCorruptionError,
    ExtractionError,
    LinkingError,
    VerificationTransportError,
)
from .LinkingTypes import (
    AnnotationSegment,
    Candidate,
    ExclusionReason,
    ExtractionSettings,
    LinkingContext,
    LinkingReport,
    LinkingSettings,
    Match,
    PersistedCache,
    RateWindow,
    RelevanceSignals,
    ScoredTerm,
    VerificationOutcome,
    VerificationRecord,
)
from .PatternMatcher import PatternHit, PatternMatcher, RegexPatternMatcher
from .RateLimiter import RateLimiter
from .RelevanceScorer import RelevanceScorer, ScoringWeights, score
from .VerificationCache import VerificationCache

__all__ = [
    # Stages
    "CandidateExtractor",
    "ExclusionFilter",
    "VerificationCache",
    "RateLimiter",
    "BatchVerifier",
    "RelevanceScorer",
    "Annotator",
    "RegexPatternMatcher",
    "PatternMatcher",
    "PatternHit",
    "unique_keys",
    "score",
    # Types
    "AnnotationSegment",
    "Candidate",
    "ExclusionContext",
    "ExclusionReason",
    "ExtractionSettings",
    "LinkingContext",
    "LinkingReport",
    "LinkingSettings",
    "Match",
    "PersistedCache",
    "RateWindow",
    "RelevanceSignals",
    "ScoredTerm",
    "ScoringWeights",
    "VerificationOutcome",
    "VerificationRecord",
    # Errors
    "LinkingError",
    "ExtractionError",
    "VerificationTransportError",
    "CacheCorruptionError",
    "AnnotationConflictError",
]
