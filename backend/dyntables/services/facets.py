"""Per-column summaries that drive filter widgets.

Facets are computed over the whole table, independently of the page being
returned, so a filter UI can show the full value space.
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from functools import partial
from typing import Any, Callable

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from ..catalog import facet_kind
from ..schemas import ColumnDefinition
from .tables import SYSTEM_COLUMN_TYPES, TableResolver

logger = logging.getLogger(__name__)

# purpose: text/number/boolean/date/relation facet queries
# inputs: Table, requested column names, declared columns
# outputs: dict of facet payloads keyed by column name
# status: active

FACET_TOP_VALUES = int(os.getenv("FACET_TOP_VALUES", "50"))


def _float(value: Any) -> float | None:
    return None if value is None else float(value)


def _iso(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def text_facet(conn: Connection, table: sa.Table, name: str) -> dict:
    column = table.c[name]
    frequency = sa.func.count().label("frequency")
    rows = conn.execute(
        sa.select(column, frequency)
        .where(column.is_not(None))
        .group_by(column)
        .order_by(frequency.desc(), column.asc())
        .limit(FACET_TOP_VALUES)
    ).all()
    values = [str(value) for value, _ in rows]
    return {"type": "text", "values": values, "count": {str(value): total for value, total in rows}}


def number_facet(conn: Connection, table: sa.Table, name: str) -> dict:
    column = table.c[name]
    row = conn.execute(
        sa.select(
            sa.func.min(column),
            sa.func.max(column),
            sa.func.avg(column),
            sa.func.count(column),
        )
    ).one()
    minimum, maximum, average, total = row
    return {
        "type": "number",
        "min": _float(minimum),
        "max": _float(maximum),
        "avg": _float(average),
        "count": int(total or 0),
    }


def boolean_facet(conn: Connection, table: sa.Table, name: str) -> dict:
    column = table.c[name]
    row = conn.execute(
        sa.select(
            sa.func.coalesce(sa.func.sum(sa.case((column == sa.true(), 1), else_=0)), 0),
            sa.func.coalesce(sa.func.sum(sa.case((column == sa.false(), 1), else_=0)), 0),
            sa.func.coalesce(sa.func.sum(sa.case((column.is_(None), 1), else_=0)), 0),
        )
    ).one()
    return {
        "type": "boolean",
        "true_count": int(row[0]),
        "false_count": int(row[1]),
        "null_count": int(row[2]),
    }


def date_facet(conn: Connection, table: sa.Table, name: str) -> dict:
    column = table.c[name]
    minimum, maximum = conn.execute(sa.select(sa.func.min(column), sa.func.max(column))).one()
    return {"type": "date", "min_date": _iso(minimum), "max_date": _iso(maximum)}


def relation_facet(
    conn: Connection,
    table: sa.Table,
    name: str,
    target: sa.Table,
    target_column: str,
    display_column: str,
) -> dict:
    column = table.c[name]
    frequency = sa.func.count().label("frequency")
    rows = conn.execute(
        sa.select(column, frequency)
        .where(column.is_not(None))
        .group_by(column)
        .order_by(frequency.desc())
        .limit(FACET_TOP_VALUES)
    ).all()
    keys = [value for value, _ in rows]
    displays: dict[str, Any] = {}
    if keys:
        lookup = sa.select(target.c[target_column], target.c[display_column]).where(
            target.c[target_column].in_(keys)
        )
        displays = {str(key): display for key, display in conn.execute(lookup)}
    return {
        "type": "relation",
        "values": [
            {
                "id": str(value),
                "display": None if displays.get(str(value)) is None else str(displays[str(value)]),
                "count": total,
            }
            for value, total in rows
        ],
    }


_BUILDERS = {
    "text": text_facet,
    "number": number_facet,
    "boolean": boolean_facet,
    "date": date_facet,
}


def facet_jobs(
    table: sa.Table,
    names: list[str],
    columns: list[ColumnDefinition],
    tables: TableResolver | None = None,
) -> dict[str, Callable[[Connection], dict]]:
    """Return one independent callable per facet-able column.

    Unknown columns and columns whose type has no facet family are skipped.
    """

    declared = {column.name: column for column in columns}
    jobs: dict[str, Callable[[Connection], dict]] = {}
    for name in dict.fromkeys(names):
        column = declared.get(name)
        if column is not None and column.is_relation and column.relation_setting and tables is not None:
            setting = column.relation_setting
            target = tables.resolve(setting.target_table).table
            tables.require_column(setting.target_table, setting.target_column)
            tables.require_column(setting.target_table, setting.display_column)
            jobs[name] = partial(
                relation_facet,
                table=table,
                name=name,
                target=target,
                target_column=setting.target_column,
                display_column=setting.display_column,
            )
            continue
        data_type = column.data_type if column is not None else SYSTEM_COLUMN_TYPES.get(name)
        kind = facet_kind(data_type) if data_type else None
        if kind is None:
            logger.debug("No facet for column %s", name)
            continue
        jobs[name] = partial(_BUILDERS[kind], table=table, name=name)
    return jobs


def generate_facets(
    conn: Connection,
    table: sa.Table,
    names: list[str],
    columns: list[ColumnDefinition],
    tables: TableResolver | None = None,
) -> dict[str, dict]:
    """Compute the facets for ``names`` sequentially on one connection."""

    return {name: job(conn) for name, job in facet_jobs(table, names, columns, tables).items()}
