from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..access import can_admin_pod, can_view_pod, get_actor, get_pod, get_pod_access, is_org_admin
from ..config import settings
from ..models import (
    Organization,
    Pod,
    PodAccess,
    User,
    create_pod,
    delete_pod,
    get_db,
    iso,
    list_dashboards,
    load_knowledge,
    pod_quality,
)
from ..schemas import PodCreate, PodDetail, PodListResponse, PodSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pods", tags=["pods"])


def _visible_pods(db: Session, user: User, org: Organization) -> PodListResponse:
    pods = db.query(Pod).filter(Pod.org_id == org.id).order_by(Pod.created_at.asc()).all()
    roles = {a.pod_id: a.role for a in db.query(PodAccess).filter(PodAccess.user_id == user.id).all()}
    admin = is_org_admin(user)
    out = [
        PodSummary(id=p.id, name=p.name, createdAt=iso(p.created_at), role="admin" if admin else roles.get(p.id))
        for p in pods
        if admin or p.id in roles
    ]
    return PodListResponse(pods=out, licenseType=org.license_tier)


@router.get("", response_model=PodListResponse)
def list_pods(actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> PodListResponse:
    user, org = get_actor(db, actorId)
    return _visible_pods(db, user, org)


@router.post("", response_model=PodListResponse)
def create_pod_route(payload: PodCreate, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> PodListResponse:
    name = (payload.name or "").strip()
    if len(name) < 2:
        raise HTTPException(status_code=400, detail="Pod name must be at least 2 characters.")
    user, org = get_actor(db, actorId)
    if org.account_type == "INDIVIDUAL":
        count = db.query(Pod).filter(Pod.org_id == org.id).count()
        if count >= int(settings.individual_pod_limit):
            raise HTTPException(status_code=403, detail=f"Individual license allows up to {settings.individual_pod_limit} pods.")
    if not is_org_admin(user):
        raise HTTPException(status_code=403, detail="Only admins can create pods.")
    pod = create_pod(db, org.id, name, user.id)
    logger.info(f"[Pods] {user.id} created pod {pod.id}")
    return _visible_pods(db, user, org)


@router.get("/{pod_id}", response_model=PodDetail)
def get_pod_route(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> PodDetail:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    pod = get_pod(db, org, pod_id)
    access = get_pod_access(db, user, pod_id)
    return PodDetail(
        id=pod.id,
        name=pod.name,
        createdAt=iso(pod.created_at),
        role="admin" if is_org_admin(user) else (access.role if access else None),
        knowledge=load_knowledge(pod),
        knowledgeQuality=pod_quality(pod),
        chatEnabled=bool(pod.chat_enabled),
        chatOverride=bool(pod.chat_override),
        dashboards=list_dashboards(db, pod.id),
    )


@router.delete("/{pod_id}")
def delete_pod_route(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> dict:
    user, org = get_actor(db, actorId)
    if not can_admin_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="Only pod admins can delete pods.")
    pod = get_pod(db, org, pod_id)
    delete_pod(db, pod)
    logger.info(f"[Pods] {user.id} deleted pod {pod_id}")
    return {"ok": True}
