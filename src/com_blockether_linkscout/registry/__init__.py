"""Title registries: the protocol, the MediaWiki client and a fixed-table registry."""

from .MediaWikiTitleRegistry import MediaWikiTitleRegistry
from .MockTitleRegistry import MockTitleRegistry
from .TitleRegistry import (
    RegistryRequest,
    RegistryResponse,
    RegistryTitleResult,
    RelatedEntitySource,
    TitleRegistry,
)
from .WikidataRelatedEntities import WikidataRelatedEntities

__all__ = [
    "TitleRegistry",
    "RelatedEntitySource",
    "RegistryRequest",
    "RegistryResponse",
    "RegistryTitleResult",
    "MediaWikiTitleRegistry",
    "WikidataRelatedEntities",
    "MockTitleRegistry",
]
