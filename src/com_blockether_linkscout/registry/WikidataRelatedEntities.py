"""
Related entity labels from the Wikidata Query Service.
"""

import logging
import re
from typing import List, Optional

import httpx

from ..linking.internal.LinkingErrors import VerificationTransportError
from .MediaWikiTitleRegistry import USER_AGENT, MediaWikiTitleRegistry, request_json
from .TitleRegistry import RequestGate

logger = logging.getLogger(__name__)

SPARQL_ENDPOINT = "https://query.wikidata.org/sparql"

RELATED_ENTITIES_QUERY = """
SELECT DISTINCT ?item ?itemLabel WHERE {{
  {{
    wd:{qid} ?p ?item .
    ?item wikibase:sitelinks ?sitelinks .
    FILTER(?sitelinks > {min_sitelinks})
  }} UNION {{
    ?item ?p wd:{qid} .
    ?item wikibase:sitelinks ?sitelinks .
    FILTER(?sitelinks > {min_sitelinks})
  }}
  FILTER(STRSTARTS(STR(?item), "http://www.wikidata.org/entity/Q"))
  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "{language}". }}
}}
LIMIT {limit}
"""


class WikidataRelatedEntities:
    """
    Labels of items linked to or from the article's Wikidata item.

    Only items with more than `min_sitelinks` sitelinks are returned, which
    keeps obscure statements (identifiers, minor qualifiers) out.
    """

    QID_PATTERN = re.compile(r"^Q\d+$")

    def __init__(
        self,
        registry: MediaWikiTitleRegistry,
        client: Optional[httpx.AsyncClient] = None,
        limit: int = 100,
        min_sitelinks: int = 5,
        endpoint: str = SPARQL_ENDPOINT,
    ):
        self._registry = registry
        self._client = client or httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, timeout=10.0)
        self._owns_client = client is None
        self._limit = limit
        self._min_sitelinks = min_sitelinks
        self._endpoint = endpoint

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def related_entities(self, title: str, gate: Optional[RequestGate] = None) -> List[str]:
        """Labels of related items; the gate is awaited before the item lookup and before the query."""
        qid = await self._registry.wikidata_item(title, gate=gate)
        if qid is None:
            logger.info(f"'{title}' has no Wikidata item")
            return []
        if not self.QID_PATTERN.match(qid):
            raise VerificationTransportError(f"Unexpected Wikidata item id {qid!r}")

        query = RELATED_ENTITIES_QUERY.format(
            qid=qid,
            language=self._registry.language,
            limit=self._limit,
            min_sitelinks=self._min_sitelinks,
        )
        if gate is not None:
            await gate()
        payload = await request_json(
            self._client,
            self._endpoint,
            {"query": query, "format": "json"},
            headers={"Accept": "application/sparql-results+json"},
        )
        try:
            bindings = payload["results"]["bindings"]
            labels = [binding["itemLabel"]["value"] for binding in bindings if "itemLabel" in binding]
        except (KeyError, TypeError) as e:
            raise VerificationTransportError(f"Malformed SPARQL response: {e}") from e

        # Unlabelled items come back as their bare QID
        labels = list(dict.fromkeys(label for label in labels if not self.QID_PATTERN.match(label)))
        logger.info(f"Fetched {len(labels)} related entities for {qid}")
        return labels
