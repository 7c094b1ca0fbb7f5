"""Compile the ``s_f`` / ``s_v`` / ``s_o`` filter vocabulary into a predicate tree.

The tree is deliberately flat: one group, one combinator. The first member
is the anchor and carries no join; every later member is joined to what
precedes it with the request combinator, mirroring a ``where`` followed by
``where``/``orWhere`` calls inside a single parenthesised group.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Union

from catalog_search.schemas.filters import Combinator

_LOG = logging.getLogger("catalog_search.filters")

RELATION_SEPARATOR = "."
IDENTIFIER_SUFFIX = "_id"

INTEGER_MIN = -(2 ** 63)
INTEGER_MAX = 2 ** 63 - 1
# Digits kept after the decimal point; longer fractions are not treated as numbers.
MAX_SCALE = 18


class MatchOperator(str, Enum):
    EXACT = "exact"
    CONTAINS = "contains"


@dataclass(frozen=True)
class PredicateLeaf:
    path: str
    operator: MatchOperator
    value: Any


@dataclass(frozen=True)
class RelationExists:
    relation: str
    inner: PredicateLeaf


PredicateNode = Union[PredicateLeaf, RelationExists]


@dataclass(frozen=True)
class GroupMember:
    node: PredicateNode
    join: Optional[Combinator]


@dataclass(frozen=True)
class PredicateGroup:
    members: tuple[GroupMember, ...]
    combinator: Combinator

    @property
    def nodes(self) -> tuple[PredicateNode, ...]:
        return tuple(member.node for member in self.members)

    def __len__(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class RelationPath:
    is_relation: bool
    relation_name: Optional[str] = None
    inner_field: Optional[str] = None
    local_column: Optional[str] = None


def _bounded_decimal(value: Any) -> Optional[Decimal]:
    """Parse ``value`` as a decimal a bigint/numeric column can hold, else ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value) if INTEGER_MIN <= value <= INTEGER_MAX else None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (float, str)):
        text = str(value).strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    if not number.is_finite():
        return None
    if not INTEGER_MIN <= number <= INTEGER_MAX or number.as_tuple().exponent < -MAX_SCALE:
        return None
    return number


def is_numeric(value: Any) -> bool:
    return _bounded_decimal(value) is not None


def coerce_number(value: Any) -> Union[int, Decimal, Any]:
    """Turn a numeric literal into ``int`` (or ``Decimal`` for fractions).

    Values outside the signed 64-bit range come back unchanged.
    """
    number = _bounded_decimal(value)
    if number is None:
        return value
    if number == number.to_integral_value():
        return int(number)
    return number


def select_operator(field_path: str, value: Any) -> MatchOperator:
    column = str(field_path).rsplit(RELATION_SEPARATOR, 1)[-1]
    if column.endswith(IDENTIFIER_SUFFIX) and is_numeric(value):
        return MatchOperator.EXACT
    return MatchOperator.CONTAINS


def resolve_relation(field_path: str) -> RelationPath:
    path = str(field_path)
    if RELATION_SEPARATOR not in path:
        return RelationPath(is_relation=False, local_column=path)
    relation_name, inner_field = path.split(RELATION_SEPARATOR, 1)
    return RelationPath(is_relation=True, relation_name=relation_name, inner_field=inner_field)


def build_node(field_path: str, value: Any) -> PredicateNode:
    resolved = resolve_relation(field_path)
    if resolved.is_relation:
        # Related collections are always fuzzy-matched, whatever the inner field looks like.
        inner = PredicateLeaf(path=resolved.inner_field, operator=MatchOperator.CONTAINS, value=value)
        return RelationExists(relation=resolved.relation_name, inner=inner)
    operator = select_operator(field_path, value)
    if operator is MatchOperator.EXACT:
        value = coerce_number(value)
    return PredicateLeaf(path=resolved.local_column, operator=operator, value=value)


def decode_vocabulary(raw: Any) -> Optional[list]:
    """Accept a JSON-encoded array or an already decoded sequence; ``None`` if neither."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if isinstance(raw, (list, tuple)):
        return list(raw)
    return None


def compile_filter(fields: Any, values: Any, combinator: Any = Combinator.AND) -> Optional[PredicateGroup]:
    decoded_fields = decode_vocabulary(fields)
    decoded_values = decode_vocabulary(values)
    if decoded_fields is None or decoded_values is None:
        _LOG.debug("filter skipped: undecodable input fields=%r values=%r", fields, values)
        return None
    if not decoded_fields:
        return None
    if len(decoded_fields) != len(decoded_values):
        _LOG.debug(
            "filter skipped: %s fields vs %s values",
            len(decoded_fields),
            len(decoded_values),
        )
        return None
    if not all(isinstance(field, str) and field.strip() for field in decoded_fields):
        _LOG.debug("filter skipped: non-string field path in %r", decoded_fields)
        return None

    combinator = Combinator.parse(combinator)
    members = []
    for index, (field, value) in enumerate(zip(decoded_fields, decoded_values)):
        node = build_node(field.strip(), value)
        members.append(GroupMember(node=node, join=None if index == 0 else combinator))
    return PredicateGroup(members=tuple(members), combinator=combinator)

