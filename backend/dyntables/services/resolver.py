"""Batched relation and aggregate lookups for a page of records.

Each lookup is planned on the request thread (catalog access, key
collection), executed as a single ``IN (...)`` query on any connection, and
attached back onto the records by label. Splitting the three steps lets the
query service run the lookups of one page concurrently.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

import sqlalchemy as sa
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Select

from ..errors import ValidationError
from ..schemas import AggColumnSpec, RelationColumnSpec
from .column_parser import ParsedColumn
from .query_compiler import hidden_key_label
from .tables import ResolvedTable, TableResolver, column_data_type
from .values import coerce_scalar

logger = logging.getLogger(__name__)

# purpose: resolve relationColumns, aggColumns and batched dotted relations
# status: active

_KEY = "__key__"
_VALUE = "__value__"
_MISSING = object()

RELATION = "relation"
AGGREGATE = "aggregate"
DOTTED = "dotted"


@dataclass
class LookupPlan:
    label: str
    kind: str
    local_key: str
    statement: Select | None
    identity: Any = None
    grouped: bool = False
    decode_json: bool = False
    pop_local_key: bool = False


def _normalise(key: Any) -> str:
    return str(key)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def _foreign_keys(records: list[dict], local_key: str, resolved: ResolvedTable, foreign_key: str) -> list:
    data_type = column_data_type(foreign_key, resolved.columns)
    keys = {}
    for record in records:
        value = record.get(local_key)
        if value is None:
            continue
        try:
            coerced = coerce_scalar(data_type, value)
        except ValidationError:
            # a key that cannot be the foreign column's type never matches
            continue
        keys.setdefault(_normalise(coerced), coerced)
    return list(keys.values())


def _equality_filters(tables: TableResolver, slug: str, filters: Mapping[str, Any]) -> list:
    resolved = tables.resolve(slug)
    clauses = []
    for name, value in (filters or {}).items():
        column = tables.require_column(slug, name)
        if value is not None:
            clauses.append(column == coerce_scalar(column_data_type(name, resolved.columns), value))
    return clauses


def plan_relation(records: list[dict], spec: RelationColumnSpec, tables: TableResolver) -> LookupPlan:
    """Plan one relationColumns entry: foreign rows keyed by ``foreign_key``."""

    resolved = tables.resolve(spec.foreign_table)
    foreign_key = tables.require_column(spec.foreign_table, spec.foreign_key)
    names = list(dict.fromkeys([spec.foreign_key, *spec.display_columns]))
    projected = [tables.require_column(spec.foreign_table, name) for name in names]
    keys = _foreign_keys(records, spec.local_key, resolved, spec.foreign_key)
    statement = None
    if keys:
        statement = sa.select(foreign_key.label(_KEY), *projected).where(
            foreign_key.in_(keys), *_equality_filters(tables, spec.foreign_table, spec.filters)
        )
    return LookupPlan(spec.label, RELATION, spec.local_key, statement)


def _aggregate_expression(spec: AggColumnSpec, tables: TableResolver, dialect_name: str):
    target = tables.require_column(spec.foreign_table, spec.function_field) if spec.function_field else None
    function = spec.function
    if function == "string_agg":
        raise ValidationError("string_agg aggregation is not supported")
    if function == "count":
        return (sa.func.count(target) if target is not None else sa.func.count()), False
    if function == "array_agg":
        column = target if target is not None else tables.require_column(spec.foreign_table, "id")
        if dialect_name == "postgresql":
            return sa.func.array_agg(column), False
        return sa.func.json_group_array(column), True
    if target is None:
        raise ValidationError(f"{function} aggregation requires a function_field")
    return getattr(sa.func, function)(target), False


def plan_aggregate(
    records: list[dict],
    spec: AggColumnSpec,
    tables: TableResolver,
    dialect_name: str,
) -> LookupPlan:
    """Plan one aggColumns entry: an aggregate per local key, optionally grouped."""

    resolved = tables.resolve(spec.foreign_table)
    foreign_key = tables.require_column(spec.foreign_table, spec.foreign_key)
    value, decode_json = _aggregate_expression(spec, tables, dialect_name)
    group_columns = [tables.require_column(spec.foreign_table, name) for name in spec.group_by or []]
    grouped = bool(group_columns)
    identity: Any = [] if grouped else (0 if spec.function == "count" else None)
    keys = _foreign_keys(records, spec.local_key, resolved, spec.foreign_key)
    statement = None
    if keys:
        statement = (
            sa.select(foreign_key.label(_KEY), *group_columns, value.label(_VALUE))
            .where(foreign_key.in_(keys), *_equality_filters(tables, spec.foreign_table, spec.filters))
            .group_by(foreign_key, *group_columns)
        )
    return LookupPlan(spec.label, AGGREGATE, spec.local_key, statement, identity, grouped, decode_json)


def plan_dotted(records: list[dict], parsed: ParsedColumn, tables: TableResolver) -> LookupPlan:
    """Plan a dotted relation column deferred by the batch join strategy."""

    relation = parsed.relation
    local_key = hidden_key_label(parsed.alias)
    resolved = tables.resolve(relation.target_table)
    target_field = tables.require_column(relation.target_table, relation.target_field)
    display = tables.require_column(relation.target_table, relation.display_path[0])
    keys = _foreign_keys(records, local_key, resolved, relation.target_field)
    statement = None
    if keys:
        statement = sa.select(target_field.label(_KEY), display.label(_VALUE)).where(target_field.in_(keys))
    return LookupPlan(parsed.alias, DOTTED, local_key, statement, pop_local_key=True)


def run_plan(conn: Connection, plan: LookupPlan) -> dict[str, Any]:
    """Execute a plan; returns values keyed by normalised local key."""

    if plan.statement is None:
        return {}
    mapping: dict[str, Any] = {}
    for row in conn.execute(plan.statement).mappings():
        key = _normalise(row[_KEY])
        if plan.kind == RELATION:
            mapping.setdefault(key, {name: value for name, value in row.items() if name != _KEY})
            continue
        value = row[_VALUE]
        if plan.decode_json and isinstance(value, str):
            value = json.loads(value)
        value = _plain(value)
        if plan.grouped:
            group = {name: item for name, item in row.items() if name not in (_KEY, _VALUE)}
            mapping.setdefault(key, []).append({**group, "value": value})
        else:
            mapping[key] = value
    return mapping


def attach(records: list[dict], plan: LookupPlan, mapping: Mapping[str, Any]) -> None:
    """Set ``plan.label`` on every record, falling back to the identity value."""

    for record in records:
        key = record.pop(plan.local_key, None) if plan.pop_local_key else record.get(plan.local_key)
        value = mapping.get(_normalise(key), _MISSING) if key is not None else _MISSING
        record[plan.label] = copy.deepcopy(plan.identity) if value is _MISSING else value


def attach_relations(conn: Connection, records: list[dict], specs, tables: TableResolver) -> list[dict]:
    for spec in specs:
        plan = plan_relation(records, spec, tables)
        attach(records, plan, run_plan(conn, plan))
    return records


def attach_aggregates(conn: Connection, records: list[dict], specs, tables: TableResolver) -> list[dict]:
    for spec in specs:
        plan = plan_aggregate(records, spec, tables, conn.dialect.name)
        attach(records, plan, run_plan(conn, plan))
    return records


def attach_dotted_relations(conn: Connection, records: list[dict], parsed_columns, tables: TableResolver) -> list[dict]:
    for parsed in parsed_columns:
        plan = plan_dotted(records, parsed, tables)
        attach(records, plan, run_plan(conn, plan))
    return records
