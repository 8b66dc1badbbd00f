"""
In-memory registry for tests and offline runs.

Behaves like a MediaWiki registry built from fixed tables: known pages,
redirects and disambiguation pages. Individual calls can be made to fail or
to stall, to exercise transport failures and timeouts.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Set

import anyio

from ..linking.internal.LinkingErrors import VerificationTransportError
from .TitleRegistry import RegistryRequest, RegistryResponse, RegistryTitleResult, RequestGate


class MockTitleRegistry:
    """
    Fixed-table implementation of the TitleRegistry protocol.

    Lookups are case-insensitive on the first character only, like MediaWiki.
    """

    def __init__(
        self,
        pages: Iterable[str] = (),
        redirects: Optional[Mapping[str, str]] = None,
        disambiguation_pages: Iterable[str] = (),
        outgoing: Optional[Mapping[str, Iterable[str]]] = None,
        fail_calls: Iterable[int] = (),
        stall_calls: Iterable[int] = (),
        stall_seconds: float = 5.0,
        max_titles_per_request: int = 50,
    ):
        """
        Args:
            pages: Existing page titles
            redirects: Redirect source -> target title
            disambiguation_pages: Existing titles flagged as disambiguation pages
            outgoing: Article title -> titles it links to
            fail_calls: 1-based query numbers that raise VerificationTransportError
            stall_calls: 1-based query numbers that sleep for stall_seconds before answering
            stall_seconds: Real seconds a stalled call waits
            max_titles_per_request: Batch limit reported to the verifier
        """
        self._pages: Set[str] = set(pages) | set(disambiguation_pages)
        self._redirects: Dict[str, str] = dict(redirects or {})
        self._disambiguation: Set[str] = set(disambiguation_pages)
        self._outgoing = {title: list(links) for title, links in (outgoing or {}).items()}
        self._fail_calls = set(fail_calls)
        self._stall_calls = set(stall_calls)
        self._stall_seconds = stall_seconds
        self._max_titles = max_titles_per_request
        self.requests: List[RegistryRequest] = []

    @property
    def max_titles_per_request(self) -> int:
        return self._max_titles

    @property
    def call_count(self) -> int:
        return len(self.requests)

    @staticmethod
    def _normalize(title: str) -> str:
        title = " ".join(title.replace("_", " ").split())
        return title[:1].upper() + title[1:]

    async def query(self, request: RegistryRequest) -> RegistryResponse:
        self.requests.append(request)
        call_number = len(self.requests)

        if call_number in self._stall_calls:
            await anyio.sleep(self._stall_seconds)
        if call_number in self._fail_calls:
            raise VerificationTransportError(f"Simulated failure of call {call_number}", request.titles)

        response = RegistryResponse()
        for requested in request.titles:
            title = self._normalize(requested)
            redirected_from = None
            if request.follow_redirects and title in self._redirects:
                redirected_from = title
                title = self._redirects[title]

            if title not in self._pages:
                response.results[requested] = RegistryTitleResult(exists=False)
                continue
            response.results[requested] = RegistryTitleResult(
                exists=True,
                canonical_title=title,
                is_disambiguation=request.want_disambiguation_flag and title in self._disambiguation,
                redirected_from=redirected_from,
            )
        return response

    async def outgoing_links(self, title: str, gate: Optional[RequestGate] = None) -> List[str]:
        if gate is not None:
            await gate()
        return list(self._outgoing.get(title, []))

    def reset(self) -> None:
        self.requests.clear()
