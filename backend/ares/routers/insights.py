from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import List
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..access import can_view_pod, get_actor, get_pod
from ..models import Insight, Organization, Pod, User, get_db, iso, list_insights
from ..schemas import InsightCreate, InsightOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pods/{pod_id}/insights", tags=["insights"])


def _feed_access(db: Session, actor_id: str | None, pod_id: str) -> tuple[User, Organization, Pod]:
    """Insights are a Business feature; any pod viewer may read and post."""
    user, org = get_actor(db, actor_id)
    if org.account_type != "BUSINESS":
        raise HTTPException(status_code=403, detail="Insights are available for Business accounts only.")
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    return user, org, get_pod(db, org, pod_id)


def _load_insight(db: Session, pod_id: str, insight_id: str) -> Insight:
    post = db.get(Insight, insight_id)
    if not post or post.pod_id != pod_id:
        raise HTTPException(status_code=404, detail="Insight not found")
    return post


def _content(payload: InsightCreate) -> str:
    content = (payload.content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="content is required.")
    return content


@router.get("", response_model=List[InsightOut])
def get_insights(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> List[InsightOut]:
    _, _, pod = _feed_access(db, actorId, pod_id)
    return list_insights(db, pod.id)


@router.post("", response_model=List[InsightOut])
def share_insight(
    pod_id: str,
    payload: InsightCreate,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> List[InsightOut]:
    content = _content(payload)
    user, _, pod = _feed_access(db, actorId, pod_id)
    db.add(Insight(id=str(uuid4()), pod_id=pod.id, user_id=user.id, content=content, created_at=datetime.utcnow()))
    db.commit()
    logger.info(f"[Insights] {user.id} shared an insight in pod {pod.id}")
    return list_insights(db, pod.id)


@router.post("/{insight_id}/like", response_model=List[InsightOut])
def toggle_like(
    pod_id: str,
    insight_id: str,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> List[InsightOut]:
    user, _, pod = _feed_access(db, actorId, pod_id)
    post = _load_insight(db, pod.id, insight_id)
    likes = json.loads(post.likes_json or "[]")
    if user.id in likes:
        likes = [uid for uid in likes if uid != user.id]
    else:
        likes.append(user.id)
    post.likes_json = json.dumps(likes)
    db.commit()
    return list_insights(db, pod.id)


@router.post("/{insight_id}/comment", response_model=List[InsightOut])
def add_comment(
    pod_id: str,
    insight_id: str,
    payload: InsightCreate,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> List[InsightOut]:
    content = _content(payload)
    user, _, pod = _feed_access(db, actorId, pod_id)
    post = _load_insight(db, pod.id, insight_id)
    comments = json.loads(post.comments_json or "[]")
    comments.append({"id": str(uuid4()), "userId": user.id, "content": content, "createdAt": iso(datetime.utcnow())})
    post.comments_json = json.dumps(comments)
    db.commit()
    return list_insights(db, pod.id)
