from typing import List

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import SessionContext, get_current_user
from ..database import get_db
from ..services import schema_registry
from .. import schemas

router = APIRouter(prefix="/api/schemas", tags=["schemas"])


class ShareRequest(BaseModel):
    user_id: str
    relation: str = "viewer"


@router.get("", response_model=List[schemas.SchemaOut])
async def list_schemas(db: Session = Depends(get_db), session: SessionContext = Depends(get_current_user)):
    return schema_registry.list_schemas(db, session.tenant_id, session.user_id)


@router.post("", response_model=schemas.SchemaOut, status_code=201)
async def create_schema(
    payload: schemas.SchemaCreate,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return schema_registry.create_schema(db, session.tenant_id, session.user_id, payload)


@router.get("/{slug}", response_model=schemas.SchemaOut)
async def get_schema(slug: str, db: Session = Depends(get_db), session: SessionContext = Depends(get_current_user)):
    return schema_registry.require_schema(db, session.tenant_id, slug, session.user_id)


@router.put("/{slug}", response_model=schemas.SchemaOut)
async def update_schema(
    slug: str,
    payload: schemas.SchemaUpdate,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return schema_registry.update_schema(db, session.tenant_id, slug, session.user_id, payload)


@router.delete("/{slug}", status_code=204)
async def delete_schema(slug: str, db: Session = Depends(get_db), session: SessionContext = Depends(get_current_user)):
    schema_registry.delete_schema(db, session.tenant_id, slug, session.user_id)
    return Response(status_code=204)


@router.get("/{slug}/migrations", response_model=List[schemas.SchemaMigrationOut])
async def migration_history(
    slug: str, db: Session = Depends(get_db), session: SessionContext = Depends(get_current_user)
):
    return schema_registry.migration_history(db, session.tenant_id, slug, session.user_id)


@router.post("/{slug}/share")
async def share_schema(
    slug: str,
    payload: ShareRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    schema_registry.share_schema(db, session.tenant_id, slug, session.user_id, payload.user_id, payload.relation)
    return {"slug": slug, "user_id": payload.user_id, "relation": payload.relation}
