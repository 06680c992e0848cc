"""Tenant schema catalog: lifecycle of dynamic table definitions.

Every mutation runs as one unit of work that touches the catalog row, the
migration log and the physical table together, so a failed DDL statement
leaves no half-registered schema behind.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import audit, models, permissions, tasks
from ..catalog import SYSTEM_COLUMNS, validate_column_triple
from ..database import unit_of_work
from ..errors import ConflictError, NotFoundOrDenied, PermissionDenied, ValidationError
from ..schemas import ColumnDefinition, SchemaCreate, SchemaUpdate
from . import ddl
from .tables import dump_columns, known_columns, load_columns, physical_ref

logger = logging.getLogger(__name__)

# purpose: create, alter, drop and look up tenant table schemas
# inputs: session, tenant id, acting user id, SchemaCreate/SchemaUpdate payloads
# outputs: models.TableSchema rows and SchemaMigration log entries
# status: active

IDENTIFIER_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 63


def _validate_identifier(name: str, kind: str) -> None:
    if not IDENTIFIER_PATTERN.match(name or "") or len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(
            f"Invalid {kind} '{name}': use lowercase letters, digits and underscores, starting with a letter"
        )


def _lookup(db: Session, tenant_id: str, slug: str) -> models.TableSchema | None:
    return (
        db.query(models.TableSchema)
        .filter(models.TableSchema.tenant_id == tenant_id, models.TableSchema.slug == slug)
        .first()
    )


def validate_columns(
    db: Session,
    tenant_id: str,
    slug: str,
    columns: list[ColumnDefinition],
    *,
    pending: list[ColumnDefinition] | None = None,
) -> None:
    """Check names, catalog compatibility and relation targets of a column list."""

    if not columns:
        raise ValidationError("At least one column is required")
    seen: set[str] = set()
    for column in columns:
        _validate_identifier(column.name, "column name")
        if column.name in SYSTEM_COLUMNS:
            raise ValidationError(f"Column name '{column.name}' is reserved for system use")
        if column.name in seen:
            raise ValidationError(f"Duplicate column name '{column.name}'")
        seen.add(column.name)
        validate_column_triple(column.data_type, column.view_type, column.view_editor)
        options = column.data_type_options
        if options is not None:
            if options.length is not None and options.length < 1:
                raise ValidationError(f"Column '{column.name}' length must be positive")
            if options.precision is not None and options.precision < 1:
                raise ValidationError(f"Column '{column.name}' precision must be positive")
            if options.scale is not None and (
                options.scale < 0 or options.scale > (options.precision or 10)
            ):
                raise ValidationError(f"Column '{column.name}' scale must be between 0 and precision")
        if column.default is not None:
            ddl.format_default(column.default, column.data_type, "postgresql")
        if column.is_relation:
            _validate_relation(db, tenant_id, slug, column, pending if pending is not None else columns)


def _validate_relation(
    db: Session,
    tenant_id: str,
    slug: str,
    column: ColumnDefinition,
    own_columns: list[ColumnDefinition],
) -> None:
    setting = column.relation_setting
    if setting is None or not setting.target_table:
        raise ValidationError(f"Relation column '{column.name}' must name a target table")
    if setting.target_table == slug:
        target_columns = own_columns
    else:
        target = _lookup(db, tenant_id, setting.target_table)
        if target is None:
            raise ValidationError(f"Relation target table '{setting.target_table}' does not exist")
        target_columns = load_columns(target)
    available = set(known_columns(target_columns))
    for name in (setting.target_column, setting.display_column):
        if name not in available:
            raise ValidationError(
                f"Column '{name}' does not exist on relation target '{setting.target_table}'"
            )


def _next_version(db: Session, tenant_id: str, slug: str) -> int:
    current = (
        db.query(func.max(models.SchemaMigration.version))
        .filter(
            models.SchemaMigration.tenant_id == tenant_id,
            models.SchemaMigration.table_slug == slug,
        )
        .scalar()
    )
    return (current or 0) + 1


def _log_migration(db: Session, tenant_id: str, slug: str, user_id: str, operation: str, changes: dict):
    entry = models.SchemaMigration(
        tenant_id=tenant_id,
        table_slug=slug,
        version=_next_version(db, tenant_id, slug),
        operation=operation,
        changes=changes,
        applied_by=user_id,
    )
    db.add(entry)
    # flush now so a concurrent alteration of the same table fails on the version key
    db.flush()
    return entry


def list_schemas(db: Session, tenant_id: str, user_id: str) -> list[models.TableSchema]:
    rows = (
        db.query(models.TableSchema)
        .filter(models.TableSchema.tenant_id == tenant_id)
        .order_by(models.TableSchema.slug.asc())
        .all()
    )
    subject = permissions.user_subject(user_id)
    return [
        row
        for row in rows
        if permissions.check_permission(db, tenant_id, subject, "viewer", permissions.schema_object(row.id))
    ]


def get_schema(db: Session, tenant_id: str, slug: str, user_id: str) -> models.TableSchema | None:
    """Return the schema, or None when it is missing or the user cannot view it."""

    schema = _lookup(db, tenant_id, slug)
    if schema is None:
        return None
    if not permissions.check_permission(
        db, tenant_id, permissions.user_subject(user_id), "viewer", permissions.schema_object(schema.id)
    ):
        return None
    return schema


def require_schema(db: Session, tenant_id: str, slug: str, user_id: str, relation: str = "viewer") -> models.TableSchema:
    schema = get_schema(db, tenant_id, slug, user_id)
    if schema is None:
        raise NotFoundOrDenied(f"Table '{slug}' not found")
    if relation != "viewer" and not permissions.check_permission(
        db, tenant_id, permissions.user_subject(user_id), relation, permissions.schema_object(schema.id)
    ):
        raise PermissionDenied(f"Insufficient permissions on table '{slug}'")
    return schema


def create_schema(db: Session, tenant_id: str, user_id: str, payload: SchemaCreate) -> models.TableSchema:
    _validate_identifier(payload.slug, "slug")
    if not payload.label.strip():
        raise ValidationError("Label is required")
    if not payload.description.strip():
        raise ValidationError("Description is required")
    validate_columns(db, tenant_id, payload.slug, payload.columns)
    if _lookup(db, tenant_id, payload.slug) is not None:
        raise ConflictError(f"Table '{payload.slug}' already exists")

    with unit_of_work(db, "create schema") as conn:
        schema = models.TableSchema(
            tenant_id=tenant_id,
            slug=payload.slug,
            label=payload.label,
            description=payload.description,
            columns=dump_columns(payload.columns),
            is_system=payload.is_system,
            is_relation=payload.is_relation,
            created_by=user_id,
        )
        db.add(schema)
        db.flush()
        _log_migration(
            db,
            tenant_id,
            payload.slug,
            user_id,
            "create",
            {"added": [column.name for column in payload.columns]},
        )
        ddl.create_table(conn, physical_ref(conn, tenant_id, payload.slug), payload.columns)
        permissions.grant(
            db, tenant_id, permissions.user_subject(user_id), "owner", permissions.schema_object(schema.id)
        )
        audit.log_action(
            db, tenant_id, user_id, "create_schema", "table_schema", schema.id, {"slug": payload.slug}
        )
    db.refresh(schema)
    logger.info("Created schema %s for tenant %s", payload.slug, tenant_id)
    return schema


def _keep_skipped(new_columns: list[ColumnDefinition], plan: ddl.AlterationPlan) -> list[ColumnDefinition]:
    untouched = {new.name: old for old, new in plan.skipped_retypes}
    return [untouched.get(column.name, column) for column in new_columns]


def update_schema(
    db: Session, tenant_id: str, slug: str, user_id: str, payload: SchemaUpdate
) -> models.TableSchema:
    schema = require_schema(db, tenant_id, slug, user_id, "editor")
    if payload.label is None and payload.description is None and payload.columns is None:
        raise ValidationError("No fields to update")
    if payload.label is not None and not payload.label.strip():
        raise ValidationError("Label cannot be empty")
    if payload.columns is not None:
        validate_columns(db, tenant_id, slug, payload.columns)

    with unit_of_work(db, "update schema") as conn:
        changes: dict = {}
        if payload.label is not None:
            schema.label = payload.label
            changes["label"] = payload.label
        if payload.description is not None:
            schema.description = payload.description
            changes["description"] = payload.description
        if payload.columns is not None:
            plan = ddl.plan_alteration(load_columns(schema), payload.columns)
            if not plan.is_empty:
                _log_migration(db, tenant_id, slug, user_id, "alter", plan.describe())
            ddl.apply_alteration(conn, physical_ref(conn, tenant_id, slug), plan)
            schema.columns = dump_columns(_keep_skipped(payload.columns, plan))
            changes["columns"] = plan.describe()
        audit.log_action(db, tenant_id, user_id, "update_schema", "table_schema", schema.id, changes)
    db.refresh(schema)
    return schema


def delete_schema(db: Session, tenant_id: str, slug: str, user_id: str) -> None:
    schema = require_schema(db, tenant_id, slug, user_id)
    if schema.is_system:
        raise PermissionDenied("System tables cannot be deleted")
    if not permissions.check_permission(
        db, tenant_id, permissions.user_subject(user_id), "admin", permissions.schema_object(schema.id)
    ):
        raise PermissionDenied(f"Insufficient permissions on table '{slug}'")
    schema_id = schema.id

    with unit_of_work(db, "delete schema") as conn:
        ddl.drop_table(conn, physical_ref(conn, tenant_id, slug))
        _log_migration(db, tenant_id, slug, user_id, "drop", {"dropped": slug})
        db.delete(schema)
        audit.log_action(db, tenant_id, user_id, "delete_schema", "table_schema", schema_id, {"slug": slug})
    logger.info("Deleted schema %s for tenant %s", slug, tenant_id)

    tasks.enqueue_permission_cleanup(tenant_id, permissions.schema_object(schema_id))
    tasks.enqueue_permission_cleanup(tenant_id, permissions.record_prefix(schema_id), prefix=True)


def share_schema(
    db: Session, tenant_id: str, slug: str, user_id: str, subject_user: str, relation: str
) -> models.PermissionTuple:
    """Grant another user (or ``*`` for the whole tenant) a relation on a table."""

    schema = require_schema(db, tenant_id, slug, user_id, "admin")
    if not permissions.is_relation(relation) or relation == "owner":
        raise ValidationError(f"Cannot grant relation '{relation}'")
    subject = permissions.EVERYONE if subject_user == "*" else permissions.user_subject(subject_user)
    with unit_of_work(db, "share schema"):
        entry = permissions.grant(db, tenant_id, subject, relation, permissions.schema_object(schema.id))
        audit.log_action(
            db,
            tenant_id,
            user_id,
            "share_schema",
            "table_schema",
            schema.id,
            {"subject": subject, "relation": relation},
        )
    return entry


def migration_history(db: Session, tenant_id: str, slug: str, user_id: str) -> list[models.SchemaMigration]:
    require_schema(db, tenant_id, slug, user_id)
    return (
        db.query(models.SchemaMigration)
        .filter(
            models.SchemaMigration.tenant_id == tenant_id,
            models.SchemaMigration.table_slug == slug,
        )
        .order_by(models.SchemaMigration.version.asc())
        .all()
    )
