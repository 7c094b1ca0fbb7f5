from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from catalog_search.client.transport import SearchRequest, Transport, TransportError
from catalog_search.schemas.filters import DIRECT_EQUALS_COLUMNS, Combinator


@dataclass(frozen=True)
class RecordQuery:
    fields: Sequence[str] = ()
    values: Sequence[Any] = ()
    combinator: Combinator = Combinator.AND
    direct_equals: Mapping[str, Any] = field(default_factory=dict)
    sort: Optional[str] = None
    page: int = 1
    per_page: Optional[int] = None

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": self.page}
        if self.fields:
            params["s_f"] = json.dumps(list(self.fields))
            params["s_v"] = json.dumps(list(self.values))
            params["s_o"] = self.combinator.value
        for column, value in self.direct_equals.items():
            if column in DIRECT_EQUALS_COLUMNS and value not in (None, ""):
                params[column] = value
        if self.sort:
            params["sort"] = self.sort
        if self.per_page is not None:
            params["per_page"] = self.per_page
        return params


@dataclass(frozen=True)
class RecordPage:
    items: List[Dict[str, Any]]
    total: int
    page: int
    per_page: int
    last_page: int


async def search_records(transport: Transport, endpoint: str, query: RecordQuery) -> RecordPage:
    """Run the primary record search.

    Unlike facet loads, failures here reach the caller as ``TransportError`` so
    the screen can show them.
    """
    payload = await transport.search(SearchRequest(endpoint=endpoint, params=query.to_params()))
    if isinstance(payload, list):
        items = [row for row in payload if isinstance(row, dict)]
        return RecordPage(items=items, total=len(items), page=1, per_page=len(items), last_page=1)
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise TransportError(f"{endpoint}: unexpected record payload")
    items = [row for row in payload["data"] if isinstance(row, dict)]
    return RecordPage(
        items=items,
        total=int(payload.get("total") or len(items)),
        page=int(payload.get("current_page") or query.page),
        per_page=int(payload.get("per_page") or len(items)),
        last_page=int(payload.get("last_page") or 1),
    )
