"""Coerce facet-option payloads of any known shape into ``FacetOption`` lists.

Lookup endpoints answer with a bare list, a paginator envelope
(``{"data": [...]}``), an object keyed by resource name, or an ``{id: name}``
map. ``normalize_options`` tries one shape matcher after another and returns
the first match; anything unrecognised becomes an empty list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence
from urllib.parse import urlsplit

_LOG = logging.getLogger("catalog_search.facets")


@dataclass(frozen=True)
class FacetOption:
    id: int
    label: str


ShapeMatcher = Callable[[Any, Optional[str]], Optional[List[FacetOption]]]


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _option_from_entry(entry: Any) -> Optional[FacetOption]:
    if isinstance(entry, FacetOption):
        return entry
    if not isinstance(entry, Mapping):
        return None
    option_id = entry.get("id")
    if not isinstance(option_id, int) or isinstance(option_id, bool):
        return None
    label = entry.get("label", entry.get("name"))
    if not isinstance(label, str):
        return None
    return FacetOption(id=option_id, label=label)


def _options_from_sequence(items: Sequence[Any]) -> List[FacetOption]:
    options = []
    for entry in items:
        option = _option_from_entry(entry)
        if option is not None:
            options.append(option)
    return options


def _match_sequence(payload: Any, url: Optional[str]) -> Optional[List[FacetOption]]:
    if _is_sequence(payload):
        return _options_from_sequence(payload)
    return None


def _match_data_envelope(payload: Any, url: Optional[str]) -> Optional[List[FacetOption]]:
    if isinstance(payload, Mapping) and _is_sequence(payload.get("data")):
        return _options_from_sequence(payload["data"])
    return None


def _match_first_list_value(payload: Any, url: Optional[str]) -> Optional[List[FacetOption]]:
    if not isinstance(payload, Mapping):
        return None
    for value in payload.values():
        if _is_sequence(value):
            return _options_from_sequence(value)
    return None


def _endpoint_name(url: Optional[str]) -> str:
    if not url:
        return ""
    path = urlsplit(str(url)).path.rstrip("/")
    return path.rsplit("/", 1)[-1]


def _match_endpoint_key(payload: Any, url: Optional[str]) -> Optional[List[FacetOption]]:
    if not isinstance(payload, Mapping):
        return None
    endpoint = _endpoint_name(url)
    if endpoint and _is_sequence(payload.get(endpoint)):
        return _options_from_sequence(payload[endpoint])
    return None


def _match_id_label_map(payload: Any, url: Optional[str]) -> Optional[List[FacetOption]]:
    if not isinstance(payload, Mapping) or not payload:
        return None
    options = []
    for raw_id, raw_label in payload.items():
        try:
            option_id = int(str(raw_id).strip())
        except ValueError:
            continue
        if raw_label is None or isinstance(raw_label, (Mapping, list, tuple)):
            continue
        options.append(FacetOption(id=option_id, label=str(raw_label)))
    return options or None


SHAPE_MATCHERS: tuple[tuple[str, ShapeMatcher], ...] = (
    ("sequence", _match_sequence),
    ("data_envelope", _match_data_envelope),
    ("first_list_value", _match_first_list_value),
    ("endpoint_key", _match_endpoint_key),
    ("id_label_map", _match_id_label_map),
)


def normalize_options(payload: Any, url: Optional[str] = None) -> List[FacetOption]:
    for name, matcher in SHAPE_MATCHERS:
        try:
            options = matcher(payload, url)
        except Exception:
            _LOG.debug("shape matcher %s failed", name, exc_info=True)
            continue
        if options is not None:
            return options
    if payload is not None:
        _LOG.debug("unrecognised facet payload type=%s url=%s", type(payload).__name__, url or "-")
    return []
