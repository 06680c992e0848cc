import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ..auth import SessionContext, get_current_user
from ..database import get_db
from ..services import query_service, records
from .. import schemas

router = APIRouter(prefix="/api/records", tags=["records"])


@router.post("/{slug}", status_code=201)
async def create_record(
    slug: str,
    data: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return records.create_record(db, session.tenant_id, slug, session.user_id, data)


@router.post("/{slug}/batch", response_model=schemas.BatchInsertResult, status_code=201)
async def create_records_batch(
    slug: str,
    payload: schemas.BatchInsertRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return records.create_records_batch(db, session.tenant_id, slug, session.user_id, payload.records)


@router.get("/{slug}", response_model=schemas.RecordListResponse)
async def list_records(
    slug: str,
    limit: int = Query(schemas.QUERY_DEFAULT_LIMIT, ge=1, le=schemas.QUERY_MAX_LIMIT),
    offset: int = Query(0, ge=0),
    order_by: Optional[str] = None,
    order_direction: str = Query("DESC", pattern="^(asc|desc|ASC|DESC)$"),
    search: Optional[str] = None,
    filters: Optional[str] = None,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    parsed_filters = None
    if filters:
        try:
            parsed_filters = json.loads(filters)
        except ValueError:
            raise HTTPException(status_code=400, detail="filters must be a JSON object")
        if not isinstance(parsed_filters, dict):
            raise HTTPException(status_code=400, detail="filters must be a JSON object")
    return records.list_records(
        db,
        session.tenant_id,
        slug,
        session.user_id,
        limit=limit,
        offset=offset,
        order_by=order_by,
        order_direction=order_direction.upper(),
        search=search,
        filters=parsed_filters,
    )


@router.post("/{slug}/query/table", response_model=schemas.QueryResponse)
async def query_table(
    slug: str,
    request: schemas.QueryRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return query_service.execute_query(db, session.tenant_id, slug, session.user_id, request)


@router.post("/{slug}/query/kanban", response_model=schemas.KanbanResponse)
async def query_kanban(
    slug: str,
    request: schemas.KanbanQueryRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return query_service.query_kanban(db, session.tenant_id, slug, session.user_id, request)


@router.post("/{slug}/query/tree", response_model=schemas.TreeResponse)
async def query_tree(
    slug: str,
    request: schemas.TreeQueryRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return query_service.query_tree(db, session.tenant_id, slug, session.user_id, request)


@router.post("/{slug}/query/gantt", response_model=schemas.GanttResponse)
async def query_gantt(
    slug: str,
    request: schemas.GanttQueryRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return query_service.query_gantt(db, session.tenant_id, slug, session.user_id, request)


@router.post("/{slug}/query/dropdown", response_model=schemas.DropdownResponse)
async def query_dropdown(
    slug: str,
    request: schemas.DropdownQueryRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return query_service.query_dropdown(db, session.tenant_id, slug, session.user_id, request)


@router.post("/{slug}/stats/agg", response_model=schemas.AggregationResponse)
async def stats_aggregate(
    slug: str,
    request: schemas.AggregationRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return query_service.query_aggregate(db, session.tenant_id, slug, session.user_id, request)


@router.post("/{slug}/stats/chart", response_model=schemas.ChartDataResponse)
async def stats_chart(
    slug: str,
    request: schemas.ChartDataRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return query_service.query_chart(db, session.tenant_id, slug, session.user_id, request)


@router.post("/{slug}/breadcrumb", response_model=schemas.BreadcrumbResponse)
async def breadcrumb(
    slug: str,
    request: schemas.BreadcrumbRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return records.get_breadcrumb(db, session.tenant_id, slug, session.user_id, request)


@router.get("/{slug}/{record_id}")
async def get_record(
    slug: str, record_id: str, db: Session = Depends(get_db), session: SessionContext = Depends(get_current_user)
):
    return records.get_record(db, session.tenant_id, slug, session.user_id, record_id)


@router.put("/{slug}/{record_id}")
async def update_record(
    slug: str,
    record_id: str,
    data: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_current_user),
):
    return records.update_record(db, session.tenant_id, slug, session.user_id, record_id, data)


@router.delete("/{slug}/{record_id}", status_code=204)
async def delete_record(
    slug: str, record_id: str, db: Session = Depends(get_db), session: SessionContext = Depends(get_current_user)
):
    records.delete_record(db, session.tenant_id, slug, session.user_id, record_id)
    return Response(status_code=204)
