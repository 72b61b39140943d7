from __future__ import annotations

from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from .config import settings
from .models import Organization, Pod, PodAccess, User

ROLE_ORDER = ("viewer", "editor", "admin")


def role_at_least(role: Optional[str], required: str) -> bool:
    if role not in ROLE_ORDER:
        return False
    return ROLE_ORDER.index(role) >= ROLE_ORDER.index(required)


def is_org_admin(user: User) -> bool:
    return (user.role or "").lower() == "admin"


def get_pod_access(db: Session, user: User, pod_id: str) -> Optional[PodAccess]:
    return db.query(PodAccess).filter(PodAccess.user_id == user.id, PodAccess.pod_id == pod_id).first()


def _has_role(db: Session, user: User, pod_id: str, required: str) -> bool:
    if is_org_admin(user):
        return True
    access = get_pod_access(db, user, pod_id)
    return bool(access and role_at_least(access.role, required))


def can_view_pod(db: Session, user: User, pod_id: str) -> bool:
    return _has_role(db, user, pod_id, "viewer")


def can_edit_pod(db: Session, user: User, pod_id: str) -> bool:
    return _has_role(db, user, pod_id, "editor")


def can_admin_pod(db: Session, user: User, pod_id: str) -> bool:
    return _has_role(db, user, pod_id, "admin")


def get_actor(db: Session, actor_id: Optional[str]) -> tuple[User, Organization]:
    """Resolve the ``actorId`` query parameter to a user and its organization."""
    uid = (actor_id or "").strip()
    if not uid:
        raise HTTPException(status_code=401, detail="actorId is required")
    user = db.get(User, uid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    org = db.get(Organization, user.org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    return user, org


def get_pod(db: Session, org: Organization, pod_id: str) -> Pod:
    pod = db.get(Pod, pod_id)
    if not pod or pod.org_id != org.id:
        raise HTTPException(status_code=404, detail="Pod not found")
    return pod


def chat_allowed(org: Organization, pod: Pod) -> bool:
    """Business orgs chat only once the knowledge quality clears the threshold, unless an admin overrode it."""
    if org.account_type != "BUSINESS":
        return True
    if pod.chat_override:
        return bool(pod.chat_enabled)
    return pod.quality_score is None or pod.quality_score >= int(settings.quality_threshold)
