"""Query orchestration for table, view and statistics requests.

Every request follows the same path: resolve the schema (404 when missing or
not viewable), compile and run the main page query plus its filtered count,
then fan the relation lookups, aggregate lookups and facets out over a small
thread pool, each on its own connection, and merge the results by label.
"""

from __future__ import annotations

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from functools import partial
from typing import Any, Callable, Hashable, Mapping, Sequence

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from .. import models
from ..errors import ValidationError
from ..schemas import (
    QUERY_DEFAULT_LIMIT,
    AggregationRequest,
    ChartDataRequest,
    ColumnDefinition,
    DropdownQueryRequest,
    GanttQueryRequest,
    KanbanQueryRequest,
    QueryRequest,
    SortSpec,
    TreeQueryRequest,
)
from . import ddl, facets, resolver, schema_registry, views
from .column_parser import parse_column, parse_columns
from .query_compiler import QueryCompiler, choose_relation_strategy
from .tables import TableResolver, load_columns, physical_ref

logger = logging.getLogger(__name__)

# purpose: run the enrichment pipeline behind every query endpoint
# inputs: session, tenant id, slug, acting user id, pydantic query requests
# outputs: plain dicts shaped like the response models in schemas.py
# status: active

QUERY_FANOUT_WORKERS = int(os.getenv("QUERY_FANOUT_WORKERS", "4"))

_ALIAS_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")


@dataclass
class TableContext:
    db: Session
    conn: Connection
    tenant_id: str
    user_id: str
    schema: models.TableSchema
    columns: list[ColumnDefinition]
    table: sa.Table
    tables: TableResolver

    def compiler(self) -> QueryCompiler:
        return QueryCompiler(self.table, self.columns, self.tables)


def open_table(db: Session, tenant_id: str, slug: str, user_id: str, relation: str = "viewer") -> TableContext:
    """Resolve a tenant table the user may access with ``relation``."""

    schema = schema_registry.require_schema(db, tenant_id, slug, user_id, relation)
    conn = db.connection()
    columns = load_columns(schema)
    table = ddl.build_table(physical_ref(conn, tenant_id, slug), columns, conn.dialect.name)

    def lookup(other: str) -> models.TableSchema | None:
        if other == slug:
            return schema
        return schema_registry.get_schema(db, tenant_id, other, user_id)

    return TableContext(db, conn, tenant_id, user_id, schema, columns, table, TableResolver(conn, tenant_id, lookup))


def _private_database(bind: Engine) -> bool:
    return bind.dialect.name == "sqlite" and bind.url.database in (None, "", ":memory:")


def fan_out(
    bind: Engine,
    jobs: Mapping[Hashable, Callable[[Connection], Any]],
    current: Connection | None = None,
) -> dict:
    """Run independent read jobs concurrently, each on its own connection.

    An in-memory SQLite database is private to the connection that opened it,
    so there the jobs run one after another on ``current`` instead.
    """

    if not jobs:
        return {}
    if current is not None and _private_database(bind):
        return {key: job(current) for key, job in jobs.items()}

    def run(job: Callable[[Connection], Any]) -> Any:
        with bind.connect() as conn:
            return job(conn)

    if QUERY_FANOUT_WORKERS <= 1 or len(jobs) == 1:
        return {key: run(job) for key, job in jobs.items()}
    with ThreadPoolExecutor(max_workers=min(QUERY_FANOUT_WORKERS, len(jobs))) as pool:
        futures = {key: pool.submit(run, job) for key, job in jobs.items()}
        return {key: future.result() for key, future in futures.items()}


def _plain(value: Any) -> Any:
    return float(value) if isinstance(value, Decimal) else value


def run_query(
    ctx: TableContext,
    *,
    columns: Sequence[str] = ("*",),
    filters: Mapping[str, Any] | None = None,
    search: str | None = None,
    sort: Sequence[SortSpec] | None = None,
    limit: int = QUERY_DEFAULT_LIMIT,
    offset: int = 0,
    relation_columns: Sequence = (),
    agg_columns: Sequence = (),
    aggregation_filter: Sequence[str] = (),
    mandatory: Sequence[str] = (),
) -> dict:
    """Compile, execute and enrich one page of records."""

    required = [
        *mandatory,
        *(spec.local_key for spec in relation_columns),
        *(spec.local_key for spec in agg_columns),
    ]
    parsed = parse_columns(list(columns), ctx.columns, required)
    strategy = choose_relation_strategy(limit)
    compiled = ctx.compiler().compile(
        parsed,
        filters=filters,
        search=search,
        sort=sort,
        limit=limit,
        offset=offset,
        strategy=strategy,
    )
    records = [dict(row._mapping) for row in ctx.conn.execute(compiled.select)]
    total = ctx.conn.execute(compiled.count).scalar_one()

    dialect_name = ctx.conn.dialect.name
    plans = [resolver.plan_dotted(records, column, ctx.tables) for column in compiled.deferred_relations]
    plans += [resolver.plan_relation(records, spec, ctx.tables) for spec in relation_columns]
    plans += [resolver.plan_aggregate(records, spec, ctx.tables, dialect_name) for spec in agg_columns]
    facet_jobs = facets.facet_jobs(ctx.table, list(aggregation_filter), ctx.columns, ctx.tables)

    jobs: dict[Hashable, Callable[[Connection], Any]] = {
        ("lookup", index): partial(resolver.run_plan, plan=plan) for index, plan in enumerate(plans)
    }
    jobs.update({("facet", name): job for name, job in facet_jobs.items()})
    results = fan_out(ctx.db.get_bind(), jobs, ctx.conn)

    for index, plan in enumerate(plans):
        resolver.attach(records, plan, results[("lookup", index)])
    aggregation = None
    if aggregation_filter:
        aggregation = {name: results[("facet", name)] for name in facet_jobs}

    logger.debug("Query on %s returned %s of %s rows", ctx.schema.slug, len(records), total)
    return {"records": records, "total": total, "limit": limit, "offset": offset, "aggregation": aggregation}


def _enrichment(request) -> dict:
    return {
        "filters": request.filters,
        "search": request.search,
        "relation_columns": request.relation_columns,
        "agg_columns": request.agg_columns,
        "aggregation_filter": request.aggregation_filter,
    }


def execute_query(db: Session, tenant_id: str, slug: str, user_id: str, request: QueryRequest) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    return run_query(
        ctx,
        columns=request.columns,
        sort=request.sort,
        limit=request.limit,
        offset=request.offset,
        **_enrichment(request),
    )


def query_kanban(db: Session, tenant_id: str, slug: str, user_id: str, request: KanbanQueryRequest) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    result = run_query(
        ctx,
        columns=request.columns,
        limit=request.limit,
        mandatory=[request.status_column],
        **_enrichment(request),
    )
    return {
        "boards": views.build_kanban(result["records"], request.status_column),
        "aggregation": result["aggregation"],
    }


def query_tree(db: Session, tenant_id: str, slug: str, user_id: str, request: TreeQueryRequest) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    result = run_query(
        ctx,
        columns=request.columns,
        limit=request.limit,
        mandatory=[request.parent_column, request.label_column],
        **_enrichment(request),
    )
    tree = views.build_tree(
        result["records"],
        request.parent_column,
        request.label_column,
        root_value=request.root_value,
        max_depth=request.max_depth,
    )
    return {"tree": tree, "aggregation": result["aggregation"]}


def query_gantt(db: Session, tenant_id: str, slug: str, user_id: str, request: GanttQueryRequest) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    named = [
        request.task_name_column,
        request.start_date_column,
        request.end_date_column,
        request.progress_column,
        request.dependency_column,
        request.category_column,
        request.assignee_column,
        request.status_column,
    ]
    mandatory = [name for name in named if name]
    for name in mandatory:
        parse_column(name, ctx.columns)
    result = run_query(
        ctx,
        columns=request.columns or ["*"],
        sort=[SortSpec(field=request.start_date_column, direction="ASC")],
        limit=request.limit,
        mandatory=mandatory,
        **_enrichment(request),
    )
    date_range = (request.date_range.start, request.date_range.end) if request.date_range else None
    gantt = views.build_gantt(
        result["records"],
        task_name_column=request.task_name_column,
        start_date_column=request.start_date_column,
        end_date_column=request.end_date_column,
        progress_column=request.progress_column,
        dependency_column=request.dependency_column,
        category_column=request.category_column,
        assignee_column=request.assignee_column,
        status_column=request.status_column,
        date_range=date_range,
    )
    return {**gantt, "aggregation": result["aggregation"]}


def query_dropdown(db: Session, tenant_id: str, slug: str, user_id: str, request: DropdownQueryRequest) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    wanted = [name for name in (request.label, request.value, request.group_by) if name]
    result = run_query(
        ctx,
        columns=wanted,
        filters=request.filters,
        search=request.search,
        sort=request.sort or [SortSpec(field=request.label, direction="ASC")],
        limit=request.limit + 1,
    )
    return views.build_dropdown(
        result["records"],
        request.label,
        request.value,
        group_by=request.group_by,
        include_empty=request.include_empty,
        distinct=request.distinct,
        limit=request.limit,
        order_by_label=not request.sort,
    )


def query_chart(db: Session, tenant_id: str, slug: str, user_id: str, request: ChartDataRequest) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    compiler = ctx.compiler()
    x_axis = compiler.field(request.x_axis)
    if request.aggregation == "COUNT":
        value = sa.func.count(compiler.field(request.y_axis)) if request.y_axis else sa.func.count()
    else:
        if not request.y_axis:
            raise ValidationError(f"{request.aggregation} charts require a y axis")
        value = getattr(sa.func, request.aggregation.lower())(compiler.field(request.y_axis))
    selected = [x_axis.label("x_value")]
    grouping = [x_axis]
    if request.group_by:
        series = compiler.field(request.group_by)
        selected.append(series.label("series"))
        grouping.append(series)
    statement = (
        sa.select(*selected, value.label("y_value"))
        .select_from(ctx.table)
        .where(*compiler.where_clauses(request.filters, None))
        .group_by(*grouping)
        .order_by(*grouping)
        .limit(request.limit)
    )
    rows = [dict(row._mapping) for row in ctx.conn.execute(statement)]
    y_label = f"{request.aggregation.lower()} of {request.y_axis or 'records'}"
    return {
        "chart_data": views.build_chart_series(
            rows, request.chart_type, y_label, grouped=bool(request.group_by)
        )
    }


def query_aggregate(db: Session, tenant_id: str, slug: str, user_id: str, request: AggregationRequest) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    compiler = ctx.compiler()
    groups = {name: compiler.field(name) for name in dict.fromkeys(request.group_by)}
    aggregates: dict[str, Any] = {}
    for spec in request.aggregations:
        alias = spec.alias or f"{spec.function.lower()}_{'all' if spec.column == '*' else spec.column.replace('.', '_')}"
        if not _ALIAS_PATTERN.match(alias):
            raise ValidationError(f"Invalid aggregation alias '{alias}'")
        if alias in aggregates or alias in groups:
            raise ValidationError(f"Duplicate aggregation alias '{alias}'")
        if spec.column == "*":
            if spec.function != "COUNT":
                raise ValidationError(f"{spec.function} requires a column")
            aggregates[alias] = sa.func.count()
        else:
            aggregates[alias] = getattr(sa.func, spec.function.lower())(compiler.field(spec.column))

    having = []
    for name, expected in request.having.items():
        if name in aggregates:
            having.append(aggregates[name] == expected)
        elif name in groups:
            having.append(groups[name] == expected)
        else:
            raise ValidationError(f"Unknown having key '{name}'")

    statement = (
        sa.select(
            *(expression.label(name) for name, expression in groups.items()),
            *(expression.label(name) for name, expression in aggregates.items()),
        )
        .select_from(ctx.table)
        .where(*compiler.where_clauses(request.filters, None))
    )
    if groups:
        statement = statement.group_by(*groups.values()).order_by(*groups.values())
    if having:
        statement = statement.having(*having)
    rows = [
        {name: _plain(value) for name, value in row._mapping.items()}
        for row in ctx.conn.execute(statement)
    ]
    return {"aggregations": rows}
