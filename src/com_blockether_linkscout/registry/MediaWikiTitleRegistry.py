"""
MediaWiki Action API implementation of the TitleRegistry protocol.
"""

import logging
from types import TracebackType
from typing import Any, Dict, List, Mapping, Optional, Type

import httpx

from ..linking.internal.LinkingErrors import VerificationTransportError
from .TitleRegistry import RegistryRequest, RegistryResponse, RegistryTitleResult, RequestGate

logger = logging.getLogger(__name__)

USER_AGENT = "com_blockether_linkscout/0.1 (unlinked term discovery; https://github.com/blockether)"


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    params: Mapping[str, Any],
    headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    GET a JSON document.

    Raises:
        VerificationTransportError: on transport errors, non-2xx status or invalid JSON
    """
    try:
        response = await client.get(url, params=params, headers=headers)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPError as e:
        raise VerificationTransportError(f"Request to {url} failed: {e}") from e
    except ValueError as e:
        raise VerificationTransportError(f"Invalid JSON from {url}: {e}") from e

    if not isinstance(payload, dict):
        raise VerificationTransportError(f"Unexpected payload type from {url}: {type(payload).__name__}")
    return payload


class MediaWikiTitleRegistry:
    """
    Checks article existence through action=query.

    One request resolves a whole batch: title normalization, redirects and the
    disambiguation page property are all reported by the same query.
    """

    MAX_TITLES_PER_REQUEST = 50
    MAX_REDIRECT_HOPS = 5
    MAX_LINK_PAGES = 20

    def __init__(
        self,
        language: str = "en",
        api_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize the registry client.

        Args:
            language: Wiki language code; selects https://{language}.wikipedia.org
            api_url: Explicit api.php URL, overrides language
            client: Shared HTTP client; one is created (and owned) when omitted
            timeout: Per-request timeout of an owned client, in seconds
        """
        self.language = language
        self.api_url = api_url or f"https://{language}.wikipedia.org/w/api.php"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, timeout=timeout)

    @property
    def max_titles_per_request(self) -> int:
        return self.MAX_TITLES_PER_REQUEST

    async def __aenter__(self) -> "MediaWikiTitleRegistry":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _api(self, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = await request_json(self._client, self.api_url, {"action": "query", "format": "json", **params})
        if "error" in payload:
            error = payload["error"]
            raise VerificationTransportError(f"MediaWiki error {error.get('code')}: {error.get('info')}")
        return payload

    async def query(self, request: RegistryRequest) -> RegistryResponse:
        if len(request.titles) > self.MAX_TITLES_PER_REQUEST:
            raise ValueError(f"At most {self.MAX_TITLES_PER_REQUEST} titles per request, got {len(request.titles)}")

        params: Dict[str, Any] = {
            "formatversion": 2,
            "titles": "|".join(request.titles),
        }
        if request.follow_redirects:
            params["redirects"] = 1
        if request.want_disambiguation_flag:
            params["prop"] = "pageprops"
            params["ppprop"] = "disambiguation"

        payload = await self._api(params)
        try:
            return self.parse_query(request.titles, payload.get("query") or {})
        except (KeyError, TypeError, AttributeError) as e:
            raise VerificationTransportError(f"Malformed MediaWiki response: {e}", request.titles) from e

    @classmethod
    def parse_query(cls, titles: List[str], query: Dict[str, Any]) -> RegistryResponse:
        """
        Map a formatversion=2 query block back to the requested titles.

        Args:
            titles: Titles exactly as requested
            query: The "query" member of the API response

        Returns:
            One verdict per requested title
        """
        normalized = {item["from"]: item["to"] for item in query.get("normalized", [])}
        redirects = {item["from"]: item["to"] for item in query.get("redirects", [])}
        pages = {page["title"]: page for page in query.get("pages", []) if "title" in page}

        response = RegistryResponse()
        for requested in titles:
            title = normalized.get(requested, requested)
            redirected_from: Optional[str] = None
            hops = 0
            while title in redirects and hops < cls.MAX_REDIRECT_HOPS:
                redirected_from = redirected_from or title
                title = redirects[title]
                hops += 1

            page = pages.get(title)
            if page is None or page.get("missing") or page.get("invalid"):
                response.results[requested] = RegistryTitleResult(exists=False)
                continue

            pageprops = page.get("pageprops") or {}
            response.results[requested] = RegistryTitleResult(
                exists=True,
                canonical_title=page["title"],
                is_disambiguation="disambiguation" in pageprops,
                redirected_from=redirected_from,
            )
        return response

    async def outgoing_links(self, title: str, gate: Optional[RequestGate] = None) -> List[str]:
        """
        Article-namespace titles linked from the given article, following continuation.

        The gate, when given, is awaited before every page of results.
        """
        params: Dict[str, Any] = {
            "formatversion": 2,
            "titles": title,
            "prop": "links",
            "plnamespace": 0,
            "pllimit": "max",
            "redirects": 1,
        }
        links: Dict[str, None] = {}
        for _ in range(self.MAX_LINK_PAGES):
            if gate is not None:
                await gate()
            payload = await self._api(params)
            for page in (payload.get("query") or {}).get("pages", []):
                for link in page.get("links", []):
                    link_title = link.get("title", "")
                    if link_title and ":" not in link_title:
                        links[link_title] = None
            continuation = payload.get("continue")
            if not continuation:
                break
            params = {**params, **continuation}
        else:
            logger.warning(f"Stopped following link continuation for '{title}' after {self.MAX_LINK_PAGES} pages")

        logger.info(f"'{title}' links to {len(links)} articles")
        return list(links)

    async def wikidata_item(self, title: str, gate: Optional[RequestGate] = None) -> Optional[str]:
        """Wikidata item id (e.g. Q90) of the article, if any."""
        if gate is not None:
            await gate()
        payload = await self._api(
            {"formatversion": 2, "titles": title, "prop": "pageprops", "ppprop": "wikibase_item", "redirects": 1}
        )
        for page in (payload.get("query") or {}).get("pages", []):
            item = (page.get("pageprops") or {}).get("wikibase_item")
            if item:
                return str(item)
        return None
