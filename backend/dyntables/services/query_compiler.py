"""Compile query requests into parameterised SQLAlchemy statements.

Identifiers only ever come from catalog metadata (the ``Table`` built from a
schema row); request values are always bound parameters.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import sqlalchemy as sa
from sqlalchemy.sql import Select

from ..catalog import is_text_type
from ..errors import ValidationError
from ..schemas import QUERY_DEFAULT_LIMIT, ColumnDefinition, SortSpec
from .column_parser import JSON_PATH, RELATION, STANDARD, ParsedColumn, parse_column
from .tables import TableResolver, column_data_type
from .values import coerce_scalar

logger = logging.getLogger(__name__)

# purpose: build SELECT/COUNT statements with JSON-path and relation columns
# inputs: Table, parsed columns, filters, search, sort, paging
# outputs: CompiledQuery
# status: active

RELATION_STRATEGY = os.getenv("RELATION_STRATEGY", "auto")
RELATION_SUBQUERY_MAX_ROWS = int(os.getenv("RELATION_SUBQUERY_MAX_ROWS", "200"))

SUBQUERY = "subquery"
BATCH = "batch"

_LIKE_ESCAPE = "/"


def choose_relation_strategy(limit: int, strategy: str | None = None) -> str:
    """Pick how dotted relation columns are joined for a page of ``limit`` rows.

    Small pages use a correlated subquery per row; larger pages defer to one
    batched ``IN`` lookup per relation.
    """

    strategy = strategy or RELATION_STRATEGY
    if strategy in (SUBQUERY, BATCH):
        return strategy
    return BATCH if limit > RELATION_SUBQUERY_MAX_ROWS else SUBQUERY


def hidden_key_label(alias: str) -> str:
    return f"__key__{alias}"


@dataclass
class CompiledQuery:
    select: Select
    count: Select
    deferred_relations: list[ParsedColumn] = field(default_factory=list)


def _escape_like(term: str) -> str:
    return (
        term.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def _json_element(expression, value: Any):
    if isinstance(value, bool):
        return expression.as_boolean()
    if isinstance(value, int):
        return expression.as_integer()
    if isinstance(value, float):
        return expression.as_float()
    return expression.as_string()


class QueryCompiler:
    """Render parsed columns and request clauses against one tenant table."""

    def __init__(
        self,
        table: sa.Table,
        columns: list[ColumnDefinition],
        tables: TableResolver | None = None,
    ):
        self.table = table
        self.columns = columns
        self.tables = tables

    # -- expressions -----------------------------------------------------

    def _relation_expression(self, local, relation_info, depth: int = 0):
        if self.tables is None:
            raise ValidationError("Relation columns are not available here")
        if depth > 5:
            raise ValidationError("Relation path is too deep")
        resolved = self.tables.resolve(relation_info.target_table)
        target = resolved.table.alias()
        if relation_info.target_field not in target.c:
            raise ValidationError(
                f"Unknown column '{relation_info.target_field}' on table '{relation_info.target_table}'"
            )
        head, *rest = relation_info.display_path
        if head not in target.c:
            raise ValidationError(f"Unknown column '{head}' on table '{relation_info.target_table}'")
        display = target.c[head]
        if rest:
            nested = parse_column(".".join([head, *rest]), resolved.columns)
            if nested.kind == RELATION:
                display = QueryCompiler(target, resolved.columns, self.tables)._relation_expression(
                    display, nested.relation, depth + 1
                )
            else:
                display = sa.type_coerce(display, sa.JSON())[nested.json_path]
        return (
            sa.select(display)
            .where(target.c[relation_info.target_field] == local)
            .limit(1)
            .scalar_subquery()
        )

    def expression(self, parsed: ParsedColumn):
        """Return the SQL expression for a parsed column (unlabelled)."""

        local = self.table.c[parsed.column]
        if parsed.kind == JSON_PATH:
            return sa.type_coerce(local, sa.JSON())[parsed.json_path]
        if parsed.kind == RELATION:
            return self._relation_expression(local, parsed.relation)
        return local

    def field(self, name: str):
        """Expression for a column name used in a filter or sort key."""

        return self.expression(parse_column(name, self.columns))

    # -- clauses ---------------------------------------------------------

    def where_clauses(self, filters: Mapping[str, Any] | None, search: str | None) -> list:
        clauses = []
        for name, value in (filters or {}).items():
            if value is None:
                continue
            parsed = parse_column(name, self.columns)
            expression = self.expression(parsed)
            if parsed.kind == JSON_PATH:
                expression = _json_element(expression, value)
                if not isinstance(value, (bool, int, float)):
                    value = str(value)
            elif parsed.kind == STANDARD:
                value = coerce_scalar(column_data_type(name, self.columns), value)
            clauses.append(expression == value)

        if search:
            text_columns = [c.name for c in self.columns if is_text_type(c.data_type)]
            if text_columns:
                term = sa.bindparam("search_term", f"%{_escape_like(search)}%")
                clauses.append(
                    sa.or_(*(self.table.c[name].ilike(term, escape=_LIKE_ESCAPE) for name in text_columns))
                )
        return clauses

    def order_by(self, sort: Sequence[SortSpec] | None) -> list:
        if not sort:
            return [self.table.c.created_at.desc()]
        keys = []
        for spec in sort:
            expression = self.field(spec.field)
            keys.append(expression.desc() if spec.direction == "DESC" else expression.asc())
        return keys

    # -- statements ------------------------------------------------------

    def select_list(self, parsed_columns: list[ParsedColumn], strategy: str = SUBQUERY):
        selected = []
        deferred = []
        for parsed in parsed_columns:
            if parsed.kind == RELATION and strategy == BATCH and len(parsed.relation.display_path) == 1:
                selected.append(self.table.c[parsed.column].label(hidden_key_label(parsed.alias)))
                deferred.append(parsed)
            elif parsed.kind == STANDARD:
                selected.append(self.table.c[parsed.column])
            else:
                selected.append(self.expression(parsed).label(parsed.alias))
        return selected, deferred

    def compile(
        self,
        parsed_columns: list[ParsedColumn],
        *,
        filters: Mapping[str, Any] | None = None,
        search: str | None = None,
        sort: Sequence[SortSpec] | None = None,
        limit: int = QUERY_DEFAULT_LIMIT,
        offset: int = 0,
        strategy: str = SUBQUERY,
    ) -> CompiledQuery:
        selected, deferred = self.select_list(parsed_columns, strategy)
        clauses = self.where_clauses(filters, search)
        statement = (
            sa.select(*selected)
            .select_from(self.table)
            .where(*clauses)
            .order_by(*self.order_by(sort))
            .limit(limit)
            .offset(offset)
        )
        count = sa.select(sa.func.count()).select_from(self.table).where(*clauses)
        logger.debug("Compiled query: %s", statement)
        return CompiledQuery(statement, count, deferred)


def compile_select(table, parsed_columns, columns, tables=None, **request) -> CompiledQuery:
    return QueryCompiler(table, columns, tables).compile(parsed_columns, **request)


def compile_where(table, columns, filters=None, search=None) -> list:
    return QueryCompiler(table, columns).where_clauses(filters, search)


def compile_count(table, columns, filters=None, search=None) -> Select:
    clauses = compile_where(table, columns, filters, search)
    return sa.select(sa.func.count()).select_from(table).where(*clauses)
