"""
Exception hierarchy for the linking pipeline.

Only ExtractionError is fatal. The other errors describe recoverable
conditions: the stage that detects them logs and continues.
"""

from typing import Optional, Sequence


class LinkingError(Exception):
    """Base class for all linking pipeline errors."""


class ExtractionError(LinkingError, ValueError):
    """Invalid extraction configuration; raised at construction time."""


class VerificationTransportError(LinkingError):
    """A registry call for one batch failed (network, timeout or parse error)."""

    def __init__(self, message: str, titles: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.titles = list(titles or [])


class CacheCorruptionError(LinkingError):
    """A persisted verification cache could not be parsed."""


class AnnotationConflictError(LinkingError):
    """Two matches in the same region overlap."""

    def __init__(self, start: int, end: int, accepted_start: int, accepted_end: int):
        super().__init__(
            f"Match [{start}, {end}) overlaps accepted match [{accepted_start}, {accepted_end})"
        )
        self.start = start
        self.end = end
        self.accepted_start = accepted_start
        self.accepted_end = accepted_end
