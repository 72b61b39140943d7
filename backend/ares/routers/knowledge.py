from __future__ import annotations

import logging
from datetime import datetime
from typing import List
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..access import can_admin_pod, can_edit_pod, can_view_pod, chat_allowed, get_actor, get_pod
from ..config import settings
from ..llm_service import evaluate_knowledge_quality
from ..models import (
    KnowledgeBankEntry,
    get_db,
    list_bank_entries,
    load_knowledge,
    pod_quality,
    save_knowledge,
    user_api_key,
)
from ..schemas import (
    ChatOverrideOut,
    ChatOverrideRequest,
    KnowledgeBankCreate,
    KnowledgeBankEntryOut,
    KnowledgeBase,
    QualityOut,
)
from ..tokens import can_use_tokens, consume_tokens, estimate_tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pods/{pod_id}", tags=["knowledge"])


def _quality_out(org, pod) -> QualityOut:
    return QualityOut(
        quality=pod_quality(pod),
        chatEnabled=chat_allowed(org, pod),
        chatOverride=bool(pod.chat_override),
        threshold=int(settings.quality_threshold),
    )


@router.get("/knowledge", response_model=KnowledgeBase)
def get_knowledge(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> KnowledgeBase:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    return load_knowledge(get_pod(db, org, pod_id))


@router.put("/knowledge", response_model=KnowledgeBase)
def put_knowledge(pod_id: str, payload: KnowledgeBase, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> KnowledgeBase:
    user, org = get_actor(db, actorId)
    if not can_edit_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No edit access to pod.")
    return save_knowledge(db, get_pod(db, org, pod_id), payload)


@router.get("/knowledge/quality", response_model=QualityOut)
def get_quality(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> QualityOut:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    return _quality_out(org, get_pod(db, org, pod_id))


@router.post("/knowledge/quality", response_model=QualityOut)
async def evaluate_quality(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> QualityOut:
    user, org = get_actor(db, actorId)
    if org.account_type != "BUSINESS":
        raise HTTPException(status_code=403, detail="Quality scoring is available for business plans only.")
    if not can_admin_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="Only admins can evaluate quality.")
    pod = get_pod(db, org, pod_id)
    knowledge = load_knowledge(pod)
    bank = list_bank_entries(db, pod.id)
    estimated = estimate_tokens(knowledge.model_dump_json() + "".join(e.model_dump_json() for e in bank))
    if not can_use_tokens(org, estimated):
        db.commit()
        raise HTTPException(status_code=402, detail="Token limit reached. Upgrade your license to continue.")
    result = await evaluate_knowledge_quality(
        knowledge,
        provider=user.llm_provider,
        api_key=user_api_key(user),
        knowledge_bank=bank,
    )
    pod.quality_score = result.score
    pod.quality_notes = result.notes
    pod.quality_updated_at = datetime.utcnow()
    pod.quality_evaluated_by = "admin"
    if not pod.chat_override:
        pod.chat_enabled = result.score >= int(settings.quality_threshold)
    consume_tokens(org, result.tokensUsed)
    db.commit()
    logger.info(f"[Knowledge] Pod {pod.id} scored {result.score}")
    return _quality_out(org, pod)


@router.post("/knowledge/chat-override", response_model=ChatOverrideOut)
def set_chat_override(
    pod_id: str,
    payload: ChatOverrideRequest,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> ChatOverrideOut:
    user, org = get_actor(db, actorId)
    if org.account_type != "BUSINESS":
        raise HTTPException(status_code=403, detail="Chat override is only available for business plans.")
    if not can_admin_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="Only admins can override chat gating.")
    pod = get_pod(db, org, pod_id)
    pod.chat_enabled = bool(payload.enabled)
    pod.chat_override = True
    db.commit()
    return ChatOverrideOut(chatEnabled=pod.chat_enabled, chatOverride=pod.chat_override)


# --- Knowledge bank ---
@router.get("/knowledge-bank", response_model=List[KnowledgeBankEntryOut])
def get_knowledge_bank(pod_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> List[KnowledgeBankEntryOut]:
    user, org = get_actor(db, actorId)
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    pod = get_pod(db, org, pod_id)
    return list_bank_entries(db, pod.id)


@router.post("/knowledge-bank", response_model=List[KnowledgeBankEntryOut])
def add_knowledge_bank_entry(
    pod_id: str,
    payload: KnowledgeBankCreate,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> List[KnowledgeBankEntryOut]:
    if not all((v or "").strip() for v in (payload.title, payload.date, payload.highlights, payload.lowlights)):
        raise HTTPException(status_code=400, detail="title, date, highlights, and lowlights are required.")
    user, org = get_actor(db, actorId)
    if not can_edit_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No edit access to pod.")
    pod = get_pod(db, org, pod_id)
    db.add(
        KnowledgeBankEntry(
            id=str(uuid4()),
            pod_id=pod.id,
            title=payload.title.strip(),
            date=payload.date.strip(),
            highlights=payload.highlights,
            lowlights=payload.lowlights,
            doc_text=payload.docText,
            created_by=user.id,
        )
    )
    db.commit()
    return list_bank_entries(db, pod.id)


@router.delete("/knowledge-bank/{entry_id}")
def delete_knowledge_bank_entry(
    pod_id: str,
    entry_id: str,
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    user, org = get_actor(db, actorId)
    if not can_edit_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No edit access to pod.")
    pod = get_pod(db, org, pod_id)
    entry = db.get(KnowledgeBankEntry, entry_id)
    if not entry or entry.pod_id != pod.id:
        raise HTTPException(status_code=404, detail="Knowledge bank entry not found")
    db.delete(entry)
    db.commit()
    return {"ok": True}
