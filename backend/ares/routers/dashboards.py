from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import List
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..access import can_edit_pod, can_view_pod, get_actor, get_pod
from ..connectors.base import ConnectorError
from ..dashboard_service import collect_chat_trends, preview_widget_sql, run_dashboard_widget
from ..models import Dashboard, dashboard_to_out, get_db, list_dashboards, load_data_sources
from ..query_service import QueryContext
from ..schemas import (
    DashboardCreate,
    DashboardOut,
    DashboardUpdate,
    QueryResult,
    TrendItem,
    TrendsResponse,
    WidgetRunRequest,
    WidgetSqlRequest,
    WidgetSqlResponse,
)
from ..sqlgen import SqlBuildError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pods/{pod_id}/dashboards", tags=["dashboards"])


def _query_context(user, pod) -> QueryContext:
    return QueryContext(data_source=user.active_data_source, data_sources=load_data_sources(pod))


def _load_dashboard(db: Session, pod_id: str, dashboard_id: str) -> Dashboard:
    d = db.get(Dashboard, dashboard_id)
    if not d or d.pod_id != pod_id:
        raise HTTPException(status_code=404, detail="Dashboard not found")
    return d


@router.get("", response_model=List[DashboardOut])
def get_dashboards(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> List[DashboardOut]:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    pod = get_pod(db, org, pod_id)
    return list_dashboards(db, pod.id)


@router.post("", response_model=List[DashboardOut])
def create_dashboard(
    pod_id: str,
    payload: DashboardCreate,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> List[DashboardOut]:
    name = (payload.name or "").strip()
    if len(name) < 2:
        raise HTTPException(status_code=400, detail="Dashboard name is required.")
    user, org = get_actor(db, actorId)
    if not can_edit_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No edit access to pod.")
    pod = get_pod(db, org, pod_id)
    db.add(Dashboard(id=str(uuid4()), pod_id=pod.id, name=name, description=payload.description, widgets_json="[]"))
    db.commit()
    return list_dashboards(db, pod.id)


@router.put("/{dashboard_id}", response_model=DashboardOut)
def update_dashboard(
    pod_id: str,
    dashboard_id: str,
    payload: DashboardUpdate,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> DashboardOut:
    user, org = get_actor(db, actorId)
    if not can_edit_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No edit access to pod.")
    pod = get_pod(db, org, pod_id)
    d = _load_dashboard(db, pod.id, dashboard_id)
    if payload.name is not None and payload.name.strip():
        d.name = payload.name.strip()
    if payload.description is not None:
        d.description = payload.description
    if payload.widgets is not None:
        d.widgets_json = json.dumps([w.model_dump() for w in payload.widgets])
    d.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(d)
    return dashboard_to_out(d)


@router.delete("/{dashboard_id}")
def delete_dashboard(
    pod_id: str,
    dashboard_id: str,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    user, org = get_actor(db, actorId)
    if not can_edit_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No edit access to pod.")
    pod = get_pod(db, org, pod_id)
    db.delete(_load_dashboard(db, pod.id, dashboard_id))
    db.commit()
    return {"ok": True}


@router.post("/run", response_model=QueryResult)
def run_widget(
    pod_id: str,
    payload: WidgetRunRequest,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> QueryResult:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    pod = get_pod(db, org, pod_id)
    try:
        return run_dashboard_widget(payload.widget, _query_context(user, pod))
    except (ConnectorError, SqlBuildError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/sql", response_model=WidgetSqlResponse)
def widget_sql(
    pod_id: str,
    payload: WidgetSqlRequest,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> WidgetSqlResponse:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    pod = get_pod(db, org, pod_id)
    try:
        return preview_widget_sql(payload.query, _query_context(user, pod))
    except SqlBuildError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/trends", response_model=TrendsResponse)
def get_trends(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> TrendsResponse:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    pod = get_pod(db, org, pod_id)
    ctx = _query_context(user, pod)
    items: List[TrendItem] = []
    try:
        for w in collect_chat_trends(list_dashboards(db, pod.id)):
            data = run_dashboard_widget(w, ctx)
            items.append(TrendItem(widgetId=w.id, title=w.title, chartType=w.chartType, data=data))
    except (ConnectorError, SqlBuildError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return TrendsResponse(widgets=items)
