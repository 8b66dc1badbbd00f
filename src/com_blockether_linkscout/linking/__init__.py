"""
Unlinked term discovery.

Finds capitalized words and phrases in a host document that name a topic
with its own article in a title registry (a MediaWiki wiki), and decorates
the confirmed, non-overlapping occurrences.

Main entry points:
- LinkingCore: the pipeline (prepare_context, discover, run)
- LinkingSession: per-document cache, rate limiter and cancellation
- LinkingSettings: configuration, also readable from LINKSCOUT_* variables
"""

from .internal.LinkingErrors import (
    AnnotationConflictError,
    CacheCorruptionError,
    ExtractionError,
    LinkingError,
    VerificationTransportError,
)
from .internal.LinkingTypes import (
    LinkingContext,
    LinkingReport,
    LinkingSettings,
    ScoredTerm,
    VerificationRecord,
)
from .LinkingCore import LinkingCore, LinkingSession

__all__ = [
    # Main Components
    "LinkingCore",
    "LinkingSession",
    # Configuration and results
    "LinkingSettings",
    "LinkingContext",
    "LinkingReport",
    "ScoredTerm",
    "VerificationRecord",
    # Errors
    "LinkingError",
    "ExtractionError",
    "VerificationTransportError",
    "CacheCorruptionError",
    "AnnotationConflictError",
]
