from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

DIRECT_EQUALS_COLUMNS = (
    "brand_id",
    "material_id",
    "lens_class_id",
    "treatment_id",
    "photochromic_id",
    "supplier_id",
    "type_id",
    "status",
)


class Combinator(str, Enum):
    AND = "and"
    OR = "or"

    @classmethod
    def parse(cls, raw: Any) -> "Combinator":
        if isinstance(raw, Combinator):
            return raw
        text = str(raw or "").strip().lower()
        return cls.OR if text == "or" else cls.AND


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, raw: Any) -> "SortDirection":
        text = str(raw or "").strip().lower()
        return cls.DESC if text == "desc" else cls.ASC


class SortSpec(BaseModel):
    column: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def parse(cls, raw: Any) -> Optional["SortSpec"]:
        """Parse ``"column,direction"``; the direction defaults to ascending."""
        text = str(raw or "").strip()
        if not text:
            return None
        column, _, direction = text.partition(",")
        column = column.strip()
        if not column:
            return None
        return cls(column=column, direction=SortDirection.parse(direction))


class FilterRequest(BaseModel):
    fields: Any = Field(default_factory=list)
    values: Any = Field(default_factory=list)
    combinator: Combinator = Combinator.AND
    direct_equals: Dict[str, Any] = Field(default_factory=dict)
    sort: Optional[SortSpec] = None
    page: Any = 1
    per_page: Any = None

    @classmethod
    def from_query_params(cls, params: Mapping[str, Any]) -> "FilterRequest":
        """Build a request from raw query parameters.

        ``s_f``/``s_v`` are kept as received (JSON text or list); decoding and
        validation happen in the compiler, which degrades instead of raising.
        Repeated parameters (``s_f[]=a&s_f[]=b``) arrive here as lists.
        """
        direct_equals = {}
        for column in DIRECT_EQUALS_COLUMNS:
            value = _single(params.get(column))
            if value is None or value == "":
                continue
            direct_equals[column] = value
        return cls(
            fields=_vocabulary_param(params, "s_f"),
            values=_vocabulary_param(params, "s_v"),
            combinator=Combinator.parse(_single(params.get("s_o"))),
            direct_equals=direct_equals,
            sort=SortSpec.parse(_single(params.get("sort"))),
            page=_single(params.get("page")) or 1,
            per_page=_single(params.get("per_page")),
        )


def _single(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[-1] if value else None
    return value


def _vocabulary_param(params: Mapping[str, Any], name: str) -> Any:
    bracketed = params.get(f"{name}[]")
    if bracketed is not None:
        return list(bracketed) if isinstance(bracketed, (list, tuple)) else [bracketed]
    raw = params.get(name)
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        if len(raw) == 1:
            return raw[0]
        return list(raw)
    return raw

