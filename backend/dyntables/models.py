import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime, timezone

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TableSchema(Base):
    """Catalog row describing one tenant's dynamic table."""

    __tablename__ = "table_schemas"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    slug = Column(String, nullable=False)
    label = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    columns = Column(JSON, nullable=False, default=list)
    is_system = Column(Boolean, default=False, nullable=False)
    is_relation = Column(Boolean, default=False, nullable=False)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (sa.UniqueConstraint("tenant_id", "slug"),)


class SchemaMigration(Base):
    """Versioned log of structural changes applied to a dynamic table."""

    # purpose: serialise and audit alterations per (tenant, table)
    # status: active
    __tablename__ = "schema_migrations"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False)
    table_slug = Column(String, nullable=False)
    version = Column(Integer, nullable=False)
    operation = Column(String, nullable=False)
    changes = Column(JSON, nullable=False, default=dict)
    applied_by = Column(String, nullable=False)
    applied_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (sa.UniqueConstraint("tenant_id", "table_slug", "version"),)


class PermissionTuple(Base):
    __tablename__ = "permission_tuples"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    subject = Column(String, nullable=False)
    relation = Column(String, nullable=False)
    object = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (sa.UniqueConstraint("tenant_id", "subject", "relation", "object"),)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(String)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
