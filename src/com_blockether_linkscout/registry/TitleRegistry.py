"""
Title Registry Protocol - logical interface of the remote title-existence registry.

The pipeline depends only on this shape, never on a wire format. Implementations
raise VerificationTransportError for network, timeout and parse failures.
"""

from abc import abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field, field_validator

# Awaited before every remote request, typically a rate limiter's acquire
RequestGate = Callable[[], Awaitable[None]]


class RegistryRequest(BaseModel):
    """One existence query covering a batch of titles."""

    titles: List[str] = Field(description="Titles to look up, in their original casing", min_length=1)
    want_disambiguation_flag: bool = Field(default=True, description="Ask the registry to flag disambiguation pages")
    follow_redirects: bool = Field(default=True, description="Resolve redirects to their target title")

    @field_validator("titles")
    @classmethod
    def _no_blank_titles(cls, titles: List[str]) -> List[str]:
        if any(not title.strip() for title in titles):
            raise ValueError("titles must not contain blank entries")
        return titles


class RegistryTitleResult(BaseModel):
    """Registry verdict for one requested title."""

    exists: bool
    canonical_title: Optional[str] = Field(default=None, description="Resolved page title when the page exists")
    is_disambiguation: bool = False
    redirected_from: Optional[str] = Field(default=None, description="Title the redirect started from")


class RegistryResponse(BaseModel):
    """Verdicts keyed by the title exactly as it was requested."""

    results: Dict[str, RegistryTitleResult] = Field(default_factory=dict)


@runtime_checkable
class TitleRegistry(Protocol):
    """
    Protocol for registries that can tell whether articles exist.

    Implementations may back it with MediaWiki, a local dump or a fixture.
    """

    @property
    def max_titles_per_request(self) -> int:
        """Largest batch the registry accepts in one request."""
        ...

    @abstractmethod
    async def query(self, request: RegistryRequest) -> RegistryResponse:
        """
        Look up every title of the request.

        Args:
            request: Batch of titles and lookup options

        Returns:
            Verdicts keyed by requested title

        Raises:
            VerificationTransportError: the batch could not be resolved
        """
        ...

    async def outgoing_links(self, title: str, gate: Optional[RequestGate] = None) -> List[str]:
        """Titles the given article already links to; gate is awaited before each request."""
        ...


@runtime_checkable
class RelatedEntitySource(Protocol):
    """Source of entity labels related to an article (e.g. a knowledge graph)."""

    async def related_entities(self, title: str, gate: Optional[RequestGate] = None) -> Sequence[str]:
        ...
