"""Host document model."""

from .HostDocument import HostDocument, TextRegion
from .HTMLDocument import ElementNode, HTMLDocument, TextNode

__all__ = [
    "HostDocument",
    "TextRegion",
    "HTMLDocument",
    "ElementNode",
    "TextNode",
]
