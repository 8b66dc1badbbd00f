"""
Host document model the pipeline reads regions from and writes decorations to.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Protocol, Sequence, Set, runtime_checkable

from ..linking.internal.LinkingTypes import AnnotationSegment


@runtime_checkable
class TextRegion(Protocol):
    """Opaque handle to a contiguous run of document text."""

    @property
    def text(self) -> str:
        ...


class HostDocument(ABC):
    """
    Document owning the text regions.

    Regions are read once and replaced as a whole; a replacement is a single
    atomic mutation of the document.
    """

    @abstractmethod
    def list_regions(
        self,
        exclude_tags: Iterable[str],
        exclude_classes: Iterable[str],
        root: Optional[object] = None,
    ) -> List[TextRegion]:
        """
        Snapshot the annotatable regions in document order.

        Args:
            exclude_tags: Containers whose text is never annotated (links, citations, ...)
            exclude_classes: CSS classes whose text is never annotated
            root: Subtree to scan; the whole document when omitted

        Returns:
            Regions outside every excluded container
        """

    @abstractmethod
    def replace(self, region: TextRegion, segments: Sequence[AnnotationSegment]) -> None:
        """Replace a region by plain and decorated segments in one mutation."""

    @abstractmethod
    def is_protected(self, region: TextRegion, exclude_tags: Iterable[str], exclude_classes: Iterable[str]) -> bool:
        """Whether the region sits inside a decoration or an excluded container."""

    @abstractmethod
    def decorated_terms(self) -> Set[str]:
        """Normalized keys of the terms already decorated in the document."""

    @abstractmethod
    def decoration_count(self) -> int:
        """Number of decorations currently in the document."""

    @abstractmethod
    def linked_texts(self) -> List[str]:
        """Texts of the links already present in the document."""

    @property
    @abstractmethod
    def title(self) -> str:
        """Title of the document, used for self-reference exclusion."""
