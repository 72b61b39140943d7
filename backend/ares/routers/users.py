from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..access import get_actor
from ..models import Organization, User, create_org_with_admin, get_db, iso
from ..schemas import OrgCreate, OrgCreateResponse, OrgOut, ProfileOut, ProfileUpdate, TokenBucketOut
from ..security import encrypt_text
from ..tokens import reset_token_bucket_if_needed

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


def org_out(org: Organization) -> OrgOut:
    return OrgOut(
        id=org.id,
        name=org.name,
        accountType=org.account_type,
        licenseTier=org.license_tier,
        tokenBucket=TokenBucketOut(limit=int(org.token_limit or 0), used=int(org.tokens_used or 0), resetAt=iso(org.tokens_reset_at)),
    )


def profile_out(user: User) -> ProfileOut:
    return ProfileOut(
        id=user.id,
        orgId=user.org_id,
        name=user.name,
        email=user.email,
        role=user.role,
        llmProvider=user.llm_provider,
        hasKey=bool(user.api_key_encrypted),
        activeDataSource=user.active_data_source,
    )


@router.post("/orgs", response_model=OrgCreateResponse)
def create_org(payload: OrgCreate, db: Session = Depends(get_db)) -> OrgCreateResponse:
    name = (payload.name or "").strip()
    email = (payload.adminEmail or "").strip().lower()
    admin_name = (payload.adminName or "").strip()
    if len(name) < 2:
        raise HTTPException(status_code=400, detail="Organization name must be at least 2 characters.")
    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail="A valid admin email is required.")
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="Email already registered")
    org, admin = create_org_with_admin(db, name, payload.accountType, admin_name or email.split("@")[0], email)
    logger.info(f"[Org] Created {org.account_type} org {org.id} with admin {admin.id}")
    return OrgCreateResponse(org=org_out(org), admin=profile_out(admin))


@router.get("/orgs/usage", response_model=OrgOut)
def get_usage(actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> OrgOut:
    _, org = get_actor(db, actorId)
    if reset_token_bucket_if_needed(org):
        db.commit()
    return org_out(org)


@router.get("/profile", response_model=ProfileOut)
def get_profile(actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> ProfileOut:
    user, _ = get_actor(db, actorId)
    return profile_out(user)


@router.put("/profile", response_model=ProfileOut)
def update_profile(payload: ProfileUpdate, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> ProfileOut:
    user, _ = get_actor(db, actorId)
    if payload.name is not None and payload.name.strip():
        user.name = payload.name.strip()
    if payload.llmProvider is not None:
        user.llm_provider = payload.llmProvider
    if payload.activeDataSource is not None:
        user.active_data_source = payload.activeDataSource
    if payload.apiKey is not None:
        # Empty string clears the stored key
        key = payload.apiKey.strip()
        user.api_key_encrypted = encrypt_text(key) if key else None
    db.commit()
    db.refresh(user)
    return profile_out(user)
