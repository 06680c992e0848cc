"""DDL synthesis for tenant tables.

Tables are described with SQLAlchemy ``Table`` objects and created through
them; structural changes go through alembic ``Operations`` in batch mode so
the same plan runs as native ``ALTER TABLE`` on PostgreSQL and as
copy-and-move on SQLite.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Connection
from sqlalchemy.schema import CreateSchema

from ..catalog import TEMPORAL_TYPES, TEXT_TYPES, migration_targets
from ..errors import ValidationError
from ..schemas import ColumnDefinition, DataTypeOptions
from .tables import TableRef
from .values import coerce_scalar

logger = logging.getLogger(__name__)

# purpose: turn column definitions into CREATE/ALTER/DROP against the tenant store
# inputs: TableRef, list[ColumnDefinition], an open Connection inside a unit
# status: active

_TYPE_FACTORIES = {
    "text": lambda o: sa.Text(),
    "varchar": lambda o: sa.String(o.length or 255),
    "char": lambda o: sa.CHAR(o.length or 1),
    "int": lambda o: sa.Integer(),
    "bigint": lambda o: sa.BigInteger(),
    "decimal": lambda o: sa.Numeric(o.precision or 10, 2 if o.scale is None else o.scale),
    "float": lambda o: sa.REAL(),
    "double": lambda o: sa.Double(),
    "boolean": lambda o: sa.Boolean(),
    "date": lambda o: sa.Date(),
    "time": lambda o: sa.Time(),
    "timestamp": lambda o: sa.DateTime(),
    "timestamptz": lambda o: sa.DateTime(timezone=True),
    "json": lambda o: sa.JSON(),
    "jsonb": lambda o: sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
    "uuid": lambda o: sa.Uuid(),
}

_TRIGGER_FUNCTION = "update_updated_at_column"


def sql_type_for(column: ColumnDefinition) -> sa.types.TypeEngine:
    """Return the SQLAlchemy type a logical column is stored as."""

    factory = _TYPE_FACTORIES.get(column.data_type)
    if factory is None:
        raise ValidationError(f"Unsupported data type: {column.data_type}")
    return factory(column.data_type_options or DataTypeOptions())


def _quote_literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def format_default(value: Any, data_type: str, dialect_name: str) -> str:
    """Render ``value`` as a SQL literal usable in a column DEFAULT clause."""

    if value is None:
        return "NULL"
    coerced = coerce_scalar(data_type, value)
    if data_type in TEXT_TYPES or data_type == "uuid":
        return _quote_literal(str(coerced))
    if data_type in TEMPORAL_TYPES or data_type == "time":
        if data_type in ("timestamp", "timestamptz"):
            return _quote_literal(coerced.isoformat(sep=" "))
        return _quote_literal(coerced.isoformat())
    if data_type == "boolean":
        if dialect_name == "postgresql":
            return "TRUE" if coerced else "FALSE"
        return "1" if coerced else "0"
    if data_type in ("int", "bigint", "decimal"):
        return str(coerced)
    if data_type in ("float", "double"):
        return repr(coerced)
    if data_type in ("json", "jsonb"):
        return _quote_literal(json.dumps(coerced))
    raise ValidationError(f"Unsupported data type: {data_type}")


def _server_default(column: ColumnDefinition, dialect_name: str):
    if column.default is None:
        return None
    return sa.text(format_default(column.default, column.data_type, dialect_name))


def _declared_column(column: ColumnDefinition, dialect_name: str) -> sa.Column:
    return sa.Column(
        column.name,
        sql_type_for(column),
        nullable=column.nullable,
        server_default=_server_default(column, dialect_name),
    )


def build_table(
    ref: TableRef,
    columns: list[ColumnDefinition],
    dialect_name: str,
    metadata: sa.MetaData | None = None,
) -> sa.Table:
    """Describe a tenant table: system columns first, then declared columns."""

    return sa.Table(
        ref.name,
        metadata if metadata is not None else sa.MetaData(),
        sa.Column("id", sa.Uuid(), primary_key=True, default=uuid.uuid4),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        *(_declared_column(column, dialect_name) for column in columns),
        schema=ref.schema,
    )


def install_update_trigger(conn: Connection, ref: TableRef) -> None:
    """(Re)install the trigger that refreshes ``updated_at`` on every update."""

    preparer = conn.dialect.identifier_preparer
    table_name = preparer.quote(ref.name)
    qualified = f"{preparer.quote_schema(ref.schema)}.{table_name}" if ref.schema else table_name
    trigger = preparer.quote(f"update_{ref.name}_updated_at")
    dialect_name = conn.dialect.name

    if dialect_name == "postgresql":
        function = f"{preparer.quote_schema(ref.schema)}.{_TRIGGER_FUNCTION}" if ref.schema else _TRIGGER_FUNCTION
        conn.exec_driver_sql(
            f"CREATE OR REPLACE FUNCTION {function}() RETURNS TRIGGER AS $$ "
            "BEGIN NEW.updated_at = NOW(); RETURN NEW; END; $$ LANGUAGE plpgsql"
        )
        conn.exec_driver_sql(f"DROP TRIGGER IF EXISTS {trigger} ON {qualified}")
        conn.exec_driver_sql(
            f"CREATE TRIGGER {trigger} BEFORE UPDATE ON {qualified} "
            f"FOR EACH ROW EXECUTE FUNCTION {function}()"
        )
    elif dialect_name == "sqlite":
        conn.exec_driver_sql(f"DROP TRIGGER IF EXISTS {trigger}")
        conn.exec_driver_sql(
            f"CREATE TRIGGER {trigger} AFTER UPDATE ON {qualified} FOR EACH ROW "
            "WHEN NEW.updated_at IS OLD.updated_at BEGIN "
            f"UPDATE {qualified} SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id; END"
        )
    else:
        logger.warning("No updated_at trigger available for dialect %s", dialect_name)


def create_table(conn: Connection, ref: TableRef, columns: list[ColumnDefinition]) -> sa.Table:
    """Create the tenant table (and its namespace) plus its update trigger."""

    if ref.schema:
        conn.execute(CreateSchema(ref.schema, if_not_exists=True))
    table = build_table(ref, columns, conn.dialect.name)
    table.create(conn)
    install_update_trigger(conn, ref)
    logger.info("Created table %s", ref.name if not ref.schema else f"{ref.schema}.{ref.name}")
    return table


def drop_table(conn: Connection, ref: TableRef) -> None:
    sa.Table(ref.name, sa.MetaData(), schema=ref.schema).drop(conn, checkfirst=True)


@dataclass
class AlterationPlan:
    """Column-level difference between two definitions of one table."""

    added: list[ColumnDefinition] = field(default_factory=list)
    dropped: list[ColumnDefinition] = field(default_factory=list)
    retyped: list[tuple[ColumnDefinition, ColumnDefinition]] = field(default_factory=list)
    skipped_retypes: list[tuple[ColumnDefinition, ColumnDefinition]] = field(default_factory=list)
    constrained: list[tuple[ColumnDefinition, ColumnDefinition]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.dropped or self.retyped or self.constrained)

    @property
    def statement_count(self) -> int:
        return len(self.added) + len(self.dropped) + len(self.retyped) + len(self.constrained)

    def describe(self) -> dict:
        return {
            "added": [column.name for column in self.added],
            "dropped": [column.name for column in self.dropped],
            "retyped": [
                {"column": new.name, "from": old.data_type, "to": new.data_type}
                for old, new in self.retyped
            ],
            "skipped_retypes": [
                {"column": new.name, "from": old.data_type, "to": new.data_type}
                for old, new in self.skipped_retypes
            ],
            "constrained": [
                {"column": new.name, "nullable": new.nullable, "default": new.default}
                for _, new in self.constrained
            ],
        }


def _options(column: ColumnDefinition) -> DataTypeOptions:
    return column.data_type_options or DataTypeOptions()


def _constraints_changed(previous: ColumnDefinition, column: ColumnDefinition) -> bool:
    return previous.nullable != column.nullable or previous.default != column.default


def _constraint_changes(previous: ColumnDefinition, column: ColumnDefinition, dialect_name: str) -> dict:
    changes: dict = {"existing_nullable": previous.nullable}
    if previous.nullable != column.nullable:
        changes["nullable"] = column.nullable
    if previous.default != column.default:
        changes["server_default"] = _server_default(column, dialect_name)
        changes["existing_server_default"] = _server_default(previous, dialect_name)
    return changes


def plan_alteration(old: list[ColumnDefinition], new: list[ColumnDefinition]) -> AlterationPlan:
    """Diff two column lists by name.

    A type change is planned only when the old type lists the new one as a
    migration target; any other type change is recorded as skipped and the
    physical column is left as it is. Nullability and default changes ride
    along with a retype, or are planned on their own when the type is kept.
    """

    old_by_name = {column.name: column for column in old}
    new_by_name = {column.name: column for column in new}
    plan = AlterationPlan()
    for column in new:
        previous = old_by_name.get(column.name)
        if previous is None:
            plan.added.append(column)
        elif previous.data_type != column.data_type:
            if column.data_type in migration_targets(previous.data_type):
                plan.retyped.append((previous, column))
            else:
                plan.skipped_retypes.append((previous, column))
        elif _options(previous) != _options(column):
            plan.retyped.append((previous, column))
        elif _constraints_changed(previous, column):
            plan.constrained.append((previous, column))
    plan.dropped = [column for column in old if column.name not in new_by_name]
    return plan


def apply_alteration(
    conn: Connection,
    ref: TableRef,
    plan: AlterationPlan,
) -> int:
    """Execute ``plan`` against the physical table; returns the number of column operations."""

    for previous, column in plan.skipped_retypes:
        logger.warning(
            "Skipping retype of %s from %s to %s: not a supported migration",
            column.name,
            previous.data_type,
            column.data_type,
        )
    if plan.is_empty:
        return 0

    dialect_name = conn.dialect.name
    operations = Operations(MigrationContext.configure(conn))
    with operations.batch_alter_table(ref.name, schema=ref.schema, recreate="auto") as batch:
        for column in plan.added:
            batch.add_column(_declared_column(column, dialect_name))
        for column in plan.dropped:
            batch.drop_column(column.name)
        for previous, column in plan.retyped:
            new_type = sql_type_for(column)
            extra = {}
            if dialect_name == "postgresql":
                quoted = conn.dialect.identifier_preparer.quote(column.name)
                extra["postgresql_using"] = f"{quoted}::{new_type.compile(dialect=conn.dialect)}"
            batch.alter_column(
                column.name,
                type_=new_type,
                existing_type=sql_type_for(previous),
                **_constraint_changes(previous, column, dialect_name),
                **extra,
            )
        for previous, column in plan.constrained:
            batch.alter_column(
                column.name,
                existing_type=sql_type_for(previous),
                **_constraint_changes(previous, column, dialect_name),
            )
    install_update_trigger(conn, ref)
    logger.info("Altered table %s: %s", ref.name, plan.describe())
    return plan.statement_count
