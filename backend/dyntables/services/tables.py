"""Physical placement of tenant tables and per-request table resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from .. import models
from ..catalog import SYSTEM_COLUMNS
from ..database import supports_namespaces, tenant_namespace
from ..errors import ValidationError
from ..schemas import ColumnDefinition

# purpose: map (tenant, slug) to a physical table and build Table objects from catalog rows
# status: active

SYSTEM_COLUMN_TYPES: dict[str, str] = {
    "id": "uuid",
    "created_at": "timestamp",
    "updated_at": "timestamp",
    "created_by": "uuid",
}


@dataclass(frozen=True)
class TableRef:
    schema: str | None
    name: str


def physical_ref(bind, tenant_id: str, slug: str) -> TableRef:
    """Return where a tenant's table lives on the connected store."""

    namespace = tenant_namespace(tenant_id)
    if supports_namespaces(bind):
        return TableRef(namespace, slug)
    return TableRef(None, f"{namespace}__{slug}")


def load_columns(schema: models.TableSchema) -> list[ColumnDefinition]:
    return [ColumnDefinition.model_validate(column) for column in (schema.columns or [])]


def dump_columns(columns: list[ColumnDefinition]) -> list[dict]:
    return [column.model_dump(mode="json", exclude_none=True) for column in columns]


def column_data_type(name: str, columns: list[ColumnDefinition]) -> str | None:
    """Return the logical type of a declared or system column."""

    if name in SYSTEM_COLUMN_TYPES:
        return SYSTEM_COLUMN_TYPES[name]
    for column in columns:
        if column.name == name:
            return column.data_type
    return None


def known_columns(columns: list[ColumnDefinition]) -> list[str]:
    return [*SYSTEM_COLUMNS, *(column.name for column in columns)]


@dataclass
class ResolvedTable:
    schema: models.TableSchema
    columns: list[ColumnDefinition]
    table: sa.Table

    def column(self, name: str) -> ColumnDefinition | None:
        return next((c for c in self.columns if c.name == name), None)


@dataclass
class TableResolver:
    """Resolve sibling tables of the same tenant while compiling one request."""

    bind: Connection
    tenant_id: str
    lookup: Callable[[str], models.TableSchema | None]
    _cache: dict[str, ResolvedTable] = field(default_factory=dict)

    def resolve(self, slug: str) -> ResolvedTable:
        if slug in self._cache:
            return self._cache[slug]
        schema = self.lookup(slug)
        if schema is None:
            raise ValidationError(f"Unknown table '{slug}'")
        from .ddl import build_table

        columns = load_columns(schema)
        ref = physical_ref(self.bind, self.tenant_id, slug)
        resolved = ResolvedTable(schema, columns, build_table(ref, columns, self.bind.dialect.name))
        self._cache[slug] = resolved
        return resolved

    def table(self, slug: str) -> sa.Table:
        return self.resolve(slug).table

    def require_column(self, slug: str, name: str) -> sa.Column:
        resolved = self.resolve(slug)
        if name not in resolved.table.c:
            raise ValidationError(f"Unknown column '{name}' on table '{slug}'")
        return resolved.table.c[name]
