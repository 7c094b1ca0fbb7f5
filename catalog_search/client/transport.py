from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

import httpx

from catalog_search.core.config import settings
from catalog_search.schemas.filters import Combinator

_LOG = logging.getLogger("catalog_search.facets")


class TransportError(Exception):
    pass


@dataclass(frozen=True)
class FacetDefinition:
    name: str
    endpoint: str
    search_fields: Tuple[str, ...] = ("name", "description")
    combinator: Combinator = Combinator.OR
    sort: Optional[str] = "name,asc"


@dataclass(frozen=True)
class SearchRequest:
    endpoint: str
    params: Dict[str, Any] = field(default_factory=dict)
    facet: Optional[str] = None


DEFAULT_FACETS: Dict[str, FacetDefinition] = {
    definition.name: definition
    for definition in (
        FacetDefinition("brand", "brands"),
        FacetDefinition("material", "materials"),
        FacetDefinition("lens_class", "lens-classes"),
        FacetDefinition("treatment", "treatments"),
        FacetDefinition("photochromic", "photochromics"),
        FacetDefinition("supplier", "suppliers"),
        FacetDefinition("lens_type", "lens-types"),
    )
}


def build_search_request(definition: FacetDefinition, query: str) -> SearchRequest:
    params: Dict[str, Any] = {}
    if query:
        params["s_f"] = json.dumps(list(definition.search_fields))
        params["s_v"] = json.dumps([query] * len(definition.search_fields))
        params["s_o"] = definition.combinator.value
        params["per_page"] = settings.FACET_SEARCH_PER_PAGE
    else:
        params["per_page"] = settings.FACET_INITIAL_PER_PAGE
    if definition.sort:
        params["sort"] = definition.sort
    return SearchRequest(endpoint=definition.endpoint, params=params, facet=definition.name)


class Transport(Protocol):
    async def search(self, request: SearchRequest) -> Any:
        ...


class HttpxTransport:
    def __init__(
        self,
        base_url: Optional[str] = None,
        prefix: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.prefix = (prefix if prefix is not None else settings.FACET_API_PREFIX).rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.FACET_API_BASE_URL,
            timeout=timeout if timeout is not None else settings.FACET_HTTP_TIMEOUT_SECONDS,
        )

    def url_for(self, request: SearchRequest) -> str:
        return f"{self.prefix}/{request.endpoint.strip('/')}"

    async def search(self, request: SearchRequest) -> Any:
        url = self.url_for(request)
        try:
            response = await self.client.get(url, params=request.params)
        except httpx.HTTPError as exc:
            raise TransportError(f"{url}: {exc.__class__.__name__}") from exc
        if response.status_code >= 400:
            raise TransportError(f"{url}: HTTP {response.status_code}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{url}: response is not JSON") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
