from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import query_service
from ..access import can_edit_pod, can_view_pod, get_actor, get_pod
from ..connectors.base import ConnectorError
from ..metrics import counter_inc
from ..models import get_db, load_data_sources, save_data_sources
from ..schemas import DataSources, DataSourcesUpdate, TestConnectionRequest, TestConnectionResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["datasources"])


@router.get("/pods/{pod_id}/data-sources", response_model=DataSources)
def get_data_sources(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> DataSources:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    return load_data_sources(get_pod(db, org, pod_id))


@router.put("/pods/{pod_id}/data-sources", response_model=DataSources)
def put_data_sources(
    pod_id: str,
    payload: DataSourcesUpdate,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> DataSources:
    user, org = get_actor(db, actorId)
    if not can_edit_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No edit access to pod.")
    pod = get_pod(db, org, pod_id)
    current = load_data_sources(pod)
    now = datetime.utcnow().isoformat()
    # Fields left out of the payload keep their stored values
    for key in ("localSql", "postgres", "mysql"):
        src = getattr(current, key)
        upd = getattr(payload, key)
        if upd is not None and upd.connectionString is not None:
            src.connectionString = upd.connectionString.strip()
        src.updatedAt = now
    fb = current.firebase
    if payload.firebase is not None:
        if payload.firebase.projectId is not None:
            fb.projectId = payload.firebase.projectId.strip()
        if payload.firebase.serviceAccountJson is not None:
            fb.serviceAccountJson = payload.firebase.serviceAccountJson
    fb.updatedAt = now
    logger.info(f"[DataSources] {user.id} updated data sources for pod {pod.id}")
    return save_data_sources(db, pod, current)


@router.post("/connectors/{kind}", response_model=TestConnectionResponse)
def run_connector_test(
    kind: Literal["local-sql", "postgres", "mysql", "firebase"],
    payload: TestConnectionRequest,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> TestConnectionResponse:
    get_actor(db, actorId)
    try:
        ok = query_service.test_connection(kind, payload)
    except ConnectorError as e:
        counter_inc("connector_test_failures_total", {"kind": kind})
        raise HTTPException(status_code=400, detail=str(e))
    return TestConnectionResponse(ok=ok)
