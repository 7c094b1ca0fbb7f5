from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Protocol

from sqlalchemy import String, and_, asc, cast, desc, false, or_
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query

from catalog_search.core.config import settings
from catalog_search.core.request_context import current_request_id
from catalog_search.schemas.filters import DIRECT_EQUALS_COLUMNS, Combinator, FilterRequest, SortDirection, SortSpec
from catalog_search.services.predicates import (
    MatchOperator,
    PredicateGroup,
    PredicateLeaf,
    INTEGER_MAX,
    PredicateNode,
    RelationExists,
    coerce_number,
    compile_filter,
    is_numeric,
)

_LOG = logging.getLogger("catalog_search.filters")

LIKE_ESCAPE = "\\"
PLACEHOLDER = "?"


class StorageError(Exception):
    pass


@dataclass(frozen=True)
class QueryDiagnostics:
    predicate_description: str
    bound_values: tuple
    # Text between placeholders, so field names containing "?" keep their place.
    segments: tuple = field(default=(), compare=False)

    def render(self) -> str:
        """Inline the bound values: numbers stay bare, everything else is quoted."""
        parts = list(self.segments) or self.predicate_description.split(PLACEHOLDER)
        rendered = [parts[0]]
        for index, part in enumerate(parts[1:]):
            rendered.append(_literal(self.bound_values[index]) if index < len(self.bound_values) else PLACEHOLDER)
            rendered.append(part)
        return "".join(rendered)


@dataclass
class Page:
    items: list
    total: int
    page: int
    per_page: int
    diagnostics: Optional[QueryDiagnostics] = field(default=None, compare=False)

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page)) if self.per_page else 1

    @property
    def first_item(self) -> Optional[int]:
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + 1

    @property
    def last_item(self) -> Optional[int]:
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + len(self.items)


DiagnosticsHook = Callable[[QueryDiagnostics], None]


def log_diagnostics(diagnostics: QueryDiagnostics) -> None:
    if not settings.FILTER_DIAGNOSTICS_ENABLED:
        return
    _LOG.debug(
        "filter query predicate=%s bindings=%r sql=%s request_id=%s",
        diagnostics.predicate_description,
        list(diagnostics.bound_values),
        diagnostics.render(),
        current_request_id(),
    )


def _literal(value: Any) -> str:
    if is_numeric(value):
        return str(value).strip()
    return "'" + str(value) + "'"


def _contains_pattern(value: Any) -> str:
    text = "" if value is None else str(value)
    for char in (LIKE_ESCAPE, "%", "_"):
        text = text.replace(char, LIKE_ESCAPE + char)
    return f"%{text}%"


class DataAccessor(Protocol):
    def apply_group(self, group: PredicateGroup) -> None:
        ...

    def apply_equals(self, column: str, value: Any) -> None:
        ...

    def apply_exists(self, relation: str, inner: PredicateLeaf) -> Any:
        ...

    def apply_sort(self, column: str, direction: SortDirection) -> None:
        ...

    def paginate(self, page: int, per_page: int) -> Page:
        ...


def _column_python_type(column):
    try:
        return column.property.columns[0].type.python_type
    except Exception:
        return None


class SqlAlchemyAccessor:
    """Applies predicate trees to an ORM ``Query`` for ``model``.

    Only mapped columns and relationships are addressable; anything else in a
    field path is ignored rather than interpolated into SQL.
    """

    def __init__(self, query: Query, model):
        self.query = query
        self.model = model

    @staticmethod
    def _column(model, name: str):
        mapper = sa_inspect(model)
        if name not in mapper.column_attrs:
            return None
        return getattr(model, name)

    @staticmethod
    def _relationship(model, name: str):
        mapper = sa_inspect(model)
        if name not in mapper.relationships:
            return None
        return mapper.relationships[name]

    def _leaf_condition(self, model, leaf: PredicateLeaf):
        col = self._column(model, leaf.path)
        if col is None:
            _LOG.debug("filter leaf ignored: %s has no column %r", model.__name__, leaf.path)
            return None
        if leaf.operator is MatchOperator.EXACT:
            return col == leaf.value
        target = col if _column_python_type(col) is str else cast(col, String)
        return target.ilike(_contains_pattern(leaf.value), escape=LIKE_ESCAPE)

    def _node_condition(self, node: PredicateNode):
        if isinstance(node, RelationExists):
            return self.apply_exists(node.relation, node.inner)
        return self._leaf_condition(self.model, node)

    def apply_exists(self, relation: str, inner: PredicateLeaf):
        rel = self._relationship(self.model, relation)
        if rel is None:
            _LOG.debug("filter leaf ignored: %s has no relation %r", self.model.__name__, relation)
            return None
        inner_condition = self._leaf_condition(rel.mapper.class_, inner)
        if inner_condition is None:
            return None
        attr = getattr(self.model, relation)
        return attr.any(inner_condition) if rel.uselist else attr.has(inner_condition)

    def apply_group(self, group: PredicateGroup) -> None:
        conditions = [c for c in (self._node_condition(node) for node in group.nodes) if c is not None]
        if not conditions:
            return
        joined = or_(*conditions) if group.combinator is Combinator.OR else and_(*conditions)
        self.query = self.query.filter(joined)

    def apply_equals(self, column: str, value: Any) -> None:
        col = self._column(self.model, column)
        if col is None:
            _LOG.debug("direct filter ignored: %s has no column %r", self.model.__name__, column)
            return
        if _column_python_type(col) in (int, float, Decimal):
            if not is_numeric(value):
                _LOG.debug("direct filter %s=%r is not a storable number, matching nothing", column, value)
                self.query = self.query.filter(false())
                return
            value = coerce_number(value)
        self.query = self.query.filter(col == value)

    def apply_sort(self, column: str, direction: SortDirection) -> None:
        col = self._column(self.model, column)
        if col is None:
            _LOG.debug("sort ignored: %s has no column %r", self.model.__name__, column)
            return
        self.query = self.query.order_by(desc(col) if direction is SortDirection.DESC else asc(col))

    def paginate(self, page: int, per_page: int) -> Page:
        try:
            total = self.query.order_by(None).count()
            items = self.query.offset((page - 1) * per_page).limit(per_page).all()
        except SQLAlchemyError as exc:
            raise StorageError(f"{self.model.__name__} query failed: {exc.__class__.__name__}") from exc
        return Page(items=items, total=total, page=page, per_page=per_page)


def _positive_int(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def normalize_pagination(page: Any, per_page: Any) -> tuple[int, int]:
    page_value = _positive_int(page) or 1
    size = min(_positive_int(per_page) or settings.FILTER_DEFAULT_PER_PAGE, settings.FILTER_MAX_PER_PAGE)
    # The row offset has to fit a signed 64-bit integer.
    return min(page_value, INTEGER_MAX // size), size


class _Description:
    def __init__(self):
        self.segments = [""]
        self.bound: list = []

    def text(self, value: str) -> None:
        self.segments[-1] += value

    def bind(self, value: Any) -> None:
        self.bound.append(value)
        self.segments.append("")

    def build(self) -> QueryDiagnostics:
        return QueryDiagnostics(
            predicate_description=PLACEHOLDER.join(self.segments),
            bound_values=tuple(self.bound),
            segments=tuple(self.segments),
        )


def _describe_node(node: PredicateNode, out: _Description) -> None:
    if isinstance(node, RelationExists):
        out.text(f"exists {node.relation} (")
        _describe_node(node.inner, out)
        out.text(")")
    elif node.operator is MatchOperator.EXACT:
        out.text(f"{node.path} = ")
        out.bind(node.value)
    else:
        out.text(f"{node.path} like ")
        out.bind(_contains_pattern(node.value))


def describe_query(
    predicate: Optional[PredicateGroup],
    direct_equals: Mapping[str, Any],
    sort: Optional[SortSpec],
    page: int,
    per_page: int,
) -> QueryDiagnostics:
    out = _Description()
    filtered = False
    if predicate is not None:
        out.text("(")
        for member in predicate.members:
            if member.join is not None:
                out.text(f" {member.join.value} ")
            _describe_node(member.node, out)
        out.text(")")
        filtered = True
    for column, value in direct_equals.items():
        out.text(f" and {column} = " if filtered else f"{column} = ")
        out.bind(value)
        filtered = True
    if not filtered:
        out.text("true")
    if sort is not None:
        out.text(f" order by {sort.column} {sort.direction.value}")
    out.text(f" limit {per_page} offset {(page - 1) * per_page}")
    return out.build()


def execute_filter(
    accessor: DataAccessor,
    predicate: Optional[PredicateGroup],
    direct_equals: Optional[Mapping[str, Any]] = None,
    sort: Optional[SortSpec] = None,
    page: Any = 1,
    per_page: Any = None,
    diagnostics_hook: Optional[DiagnosticsHook] = log_diagnostics,
) -> Page:
    direct_equals = {k: v for k, v in (direct_equals or {}).items() if k in DIRECT_EQUALS_COLUMNS}
    page_value, size = normalize_pagination(page, per_page)

    if predicate is not None:
        accessor.apply_group(predicate)
    for column, value in direct_equals.items():
        accessor.apply_equals(column, value)
    if sort is not None:
        accessor.apply_sort(sort.column, sort.direction)

    diagnostics = describe_query(predicate, direct_equals, sort, page_value, size)
    if diagnostics_hook is not None:
        diagnostics_hook(diagnostics)

    result = accessor.paginate(page_value, size)
    result.diagnostics = diagnostics
    return result


def apply_filter_request(
    query: Query,
    model,
    request: FilterRequest,
    diagnostics_hook: Optional[DiagnosticsHook] = log_diagnostics,
) -> Page:
    predicate = compile_filter(request.fields, request.values, request.combinator)
    return execute_filter(
        SqlAlchemyAccessor(query, model),
        predicate,
        direct_equals=request.direct_equals,
        sort=request.sort,
        page=request.page,
        per_page=request.per_page,
        diagnostics_hook=diagnostics_hook,
    )
