"""Policy oracle for dynamic tables and their records.

Grants are stored as ``(subject, relation, object)`` tuples scoped to a
tenant. Relations form a ladder, so holding a higher relation satisfies every
check for a lower one.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

# purpose: answer "may subject hold relation on object" for schema and record access
# status: active

_RELATION_LEVELS: dict[str, int] = {
    "viewer": 10,
    "editor": 20,
    "admin": 30,
    "owner": 40,
}

EVERYONE = "user:*"


def user_subject(user_id: str) -> str:
    return f"user:{user_id}"


def schema_object(schema_id) -> str:
    return f"table_schema:{schema_id}"


def record_object(schema_id, record_id) -> str:
    return f"record:{schema_id}:{record_id}"


def record_prefix(schema_id) -> str:
    return f"record:{schema_id}:"


def is_relation(relation: str) -> bool:
    return relation in _RELATION_LEVELS


def check_permission(db: Session, tenant_id: str, subject: str, relation: str, obj: str) -> bool:
    """Return True when ``subject`` (or everyone) holds ``relation`` or higher on ``obj``.

    Lookup failures deny access instead of raising.
    """

    required = _RELATION_LEVELS.get(relation)
    if required is None:
        return False
    try:
        held = (
            db.query(models.PermissionTuple.relation)
            .filter(
                models.PermissionTuple.tenant_id == tenant_id,
                models.PermissionTuple.subject.in_([subject, EVERYONE]),
                models.PermissionTuple.object == obj,
            )
            .all()
        )
    except SQLAlchemyError:
        logger.warning("Permission lookup failed for %s on %s", subject, obj, exc_info=True)
        return False
    return any(_RELATION_LEVELS.get(row.relation, 0) >= required for row in held)


def grant(db: Session, tenant_id: str, subject: str, relation: str, obj: str) -> models.PermissionTuple:
    """Stage a grant in the caller's unit; existing identical grants are reused."""

    existing = (
        db.query(models.PermissionTuple)
        .filter(
            models.PermissionTuple.tenant_id == tenant_id,
            models.PermissionTuple.subject == subject,
            models.PermissionTuple.relation == relation,
            models.PermissionTuple.object == obj,
        )
        .first()
    )
    if existing is not None:
        return existing
    entry = models.PermissionTuple(tenant_id=tenant_id, subject=subject, relation=relation, object=obj)
    db.add(entry)
    return entry


def revoke_object(db: Session, tenant_id: str, obj: str, *, prefix: bool = False) -> int:
    """Delete every grant on ``obj`` (or on objects starting with it)."""

    query = db.query(models.PermissionTuple).filter(models.PermissionTuple.tenant_id == tenant_id)
    if prefix:
        query = query.filter(models.PermissionTuple.object.startswith(obj, autoescape=True))
    else:
        query = query.filter(models.PermissionTuple.object == obj)
    return query.delete(synchronize_session=False)
