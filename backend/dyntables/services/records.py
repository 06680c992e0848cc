"""Record CRUD on tenant tables."""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import permissions, tasks
from ..database import unit_of_work
from ..errors import NotFoundOrDenied, PermissionDenied, ValidationError
from ..schemas import BreadcrumbRequest, SortSpec
from . import views
from .column_parser import STANDARD, parse_column
from .query_service import TableContext, open_table, run_query
from .values import build_payload, payload_row

logger = logging.getLogger(__name__)

# purpose: create, batch-insert, list, fetch, update and delete records
# inputs: session, tenant id, slug, acting user id, JSON payloads
# outputs: record dicts keyed by column name
# status: active

BATCH_INSERT_LIMIT = int(os.getenv("BATCH_INSERT_LIMIT", "1000"))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _record_id(record_id: Any) -> uuid.UUID:
    try:
        return record_id if isinstance(record_id, uuid.UUID) else uuid.UUID(str(record_id))
    except ValueError as exc:
        raise NotFoundOrDenied("Record not found") from exc


def _fetch(ctx: TableContext, record_id: uuid.UUID) -> dict | None:
    row = ctx.conn.execute(sa.select(ctx.table).where(ctx.table.c.id == record_id)).first()
    return dict(row._mapping) if row is not None else None


def _require_record_access(ctx: TableContext, record_id: uuid.UUID, relation: str) -> None:
    subject = permissions.user_subject(ctx.user_id)
    if permissions.check_permission(
        ctx.db, ctx.tenant_id, subject, relation, permissions.schema_object(ctx.schema.id)
    ):
        return
    if permissions.check_permission(
        ctx.db, ctx.tenant_id, subject, relation, permissions.record_object(ctx.schema.id, record_id)
    ):
        return
    raise PermissionDenied("Insufficient permissions on record")


def _insert_values(ctx: TableContext, data: Mapping[str, Any]) -> dict:
    now = _utcnow()
    return {
        **payload_row(build_payload(ctx.columns, data)),
        "id": uuid.uuid4(),
        "created_by": uuid.UUID(ctx.user_id),
        "created_at": now,
        "updated_at": now,
    }


def create_record(db: Session, tenant_id: str, slug: str, user_id: str, data: Mapping[str, Any]) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id, "editor")
    values = _insert_values(ctx, data)
    with unit_of_work(db, "create record") as conn:
        conn.execute(sa.insert(ctx.table).values(values))
        permissions.grant(
            db,
            tenant_id,
            permissions.user_subject(user_id),
            "owner",
            permissions.record_object(ctx.schema.id, values["id"]),
        )
        record = _fetch(ctx, values["id"])
    return record


def create_records_batch(
    db: Session, tenant_id: str, slug: str, user_id: str, items: list[Mapping[str, Any]]
) -> dict:
    """Insert many records; each failing item is reported and skipped."""

    if not items:
        raise ValidationError("No records provided")
    if len(items) > BATCH_INSERT_LIMIT:
        raise ValidationError(f"Batch insert limited to {BATCH_INSERT_LIMIT} records")
    ctx = open_table(db, tenant_id, slug, user_id, "editor")
    schema_id = ctx.schema.id
    subject = permissions.user_subject(user_id)

    inserted: list[dict] = []
    errors: list[dict] = []
    with unit_of_work(db, "insert records") as conn:
        for index, item in enumerate(items):
            try:
                values = _insert_values(ctx, item)
            except ValidationError as exc:
                errors.append({"index": index, "input": dict(item), "error": exc.message})
                continue
            try:
                with db.begin_nested():
                    conn.execute(sa.insert(ctx.table).values(values))
            except SQLAlchemyError as exc:
                errors.append({"index": index, "input": dict(item), "error": str(getattr(exc, "orig", exc))})
                continue
            permissions.grant(db, tenant_id, subject, "owner", permissions.record_object(schema_id, values["id"]))
            inserted.append(_fetch(ctx, values["id"]))
    logger.info("Batch insert into %s: %s inserted, %s failed", slug, len(inserted), len(errors))
    return {"records": inserted, "total": len(inserted), "errors": errors}


def list_records(
    db: Session,
    tenant_id: str,
    slug: str,
    user_id: str,
    *,
    limit: int,
    offset: int = 0,
    order_by: str | None = None,
    order_direction: str = "DESC",
    search: str | None = None,
    filters: Mapping[str, Any] | None = None,
) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    sort = [SortSpec(field=order_by, direction=order_direction)] if order_by else None
    result = run_query(
        ctx, filters=filters, search=search, sort=sort, limit=limit, offset=offset
    )
    return {"records": result["records"], "total": result["total"]}


def get_record(db: Session, tenant_id: str, slug: str, user_id: str, record_id: Any) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    record = _fetch(ctx, _record_id(record_id))
    if record is None:
        raise NotFoundOrDenied("Record not found")
    return record


def update_record(
    db: Session, tenant_id: str, slug: str, user_id: str, record_id: Any, data: Mapping[str, Any]
) -> dict:
    ctx = open_table(db, tenant_id, slug, user_id)
    identifier = _record_id(record_id)
    if _fetch(ctx, identifier) is None:
        raise NotFoundOrDenied("Record not found")
    _require_record_access(ctx, identifier, "editor")
    values = payload_row(build_payload(ctx.columns, data, partial=True))
    values["updated_at"] = _utcnow()
    with unit_of_work(db, "update record") as conn:
        conn.execute(sa.update(ctx.table).where(ctx.table.c.id == identifier).values(values))
        record = _fetch(ctx, identifier)
    return record


def delete_record(db: Session, tenant_id: str, slug: str, user_id: str, record_id: Any) -> None:
    ctx = open_table(db, tenant_id, slug, user_id)
    identifier = _record_id(record_id)
    if _fetch(ctx, identifier) is None:
        raise NotFoundOrDenied("Record not found")
    _require_record_access(ctx, identifier, "editor")
    obj = permissions.record_object(ctx.schema.id, identifier)
    with unit_of_work(db, "delete record") as conn:
        conn.execute(sa.delete(ctx.table).where(ctx.table.c.id == identifier))
    tasks.enqueue_permission_cleanup(tenant_id, obj)


def get_breadcrumb(db: Session, tenant_id: str, slug: str, user_id: str, request: BreadcrumbRequest) -> dict:
    """Walk a self-referencing parent column from one record towards the root."""

    ctx = open_table(db, tenant_id, slug, user_id)
    for name in (request.label_column, request.value_column, request.parent_column):
        if parse_column(name, ctx.columns).kind != STANDARD:
            raise ValidationError(f"Breadcrumb column '{name}' must be a plain column")
    table = ctx.table
    statement = sa.select(
        table.c[request.label_column],
        table.c[request.value_column],
        table.c[request.parent_column],
    )

    def fetch(current: Any) -> dict | None:
        try:
            identifier = _record_id(current)
        except NotFoundOrDenied:
            return None
        row = ctx.conn.execute(statement.where(table.c.id == identifier)).first()
        return dict(row._mapping) if row is not None else None

    if fetch(request.record_id) is None:
        raise NotFoundOrDenied("Record not found")
    return views.walk_breadcrumb(
        fetch,
        request.record_id,
        request.label_column,
        request.value_column,
        request.parent_column,
        max_depth=request.max_depth,
        direction=request.direction,
    )
