from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..access import can_view_pod, chat_allowed, get_actor, get_pod, is_org_admin
from ..config import settings
from ..connectors.base import ConnectorError
from ..llm_client import LlmError, resolve_api_key
from ..llm_service import AnalysisRequest, FeedbackNote, SqlRequest, generate_analysis, generate_sql
from ..metrics import counter_inc
from ..models import (
    ChatMessage,
    Conversation,
    Feedback,
    Pod,
    PodAccess,
    User,
    get_db,
    iso,
    list_bank_entries,
    list_dashboards,
    load_data_sources,
    load_knowledge,
    user_api_key,
)
from ..query_service import QueryContext, run_query
from ..rag import retrieve_context
from ..schemas import ChatMessageOut, ChatRequest, ChatResponse, ConversationOut, FeedbackCreate
from ..sql_guard import UnsafeSqlError, ensure_read_only
from ..sqlgen import detect_dialect
from ..tokens import can_use_tokens, consume_tokens, estimate_tokens

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

BANK_CONTEXT_ENTRIES = 3
FEEDBACK_CONTEXT_ITEMS = 3


def _default_pod_id(db: Session, user: User) -> Optional[str]:
    access = db.query(PodAccess).filter(PodAccess.user_id == user.id).order_by(PodAccess.created_at.asc()).first()
    if access:
        return access.pod_id
    if is_org_admin(user):
        pod = db.query(Pod).filter(Pod.org_id == user.org_id).order_by(Pod.created_at.asc()).first()
        return pod.id if pod else None
    return None


def _conversation_out(db: Session, conv: Conversation, with_messages: bool = True) -> ConversationOut:
    messages: List[ChatMessageOut] = []
    if with_messages:
        rows = (
            db.query(ChatMessage)
            .filter(ChatMessage.conversation_id == conv.id)
            .order_by(ChatMessage.created_at.asc())
            .all()
        )
        messages = [ChatMessageOut(id=m.id, role=m.role, content=m.content, createdAt=iso(m.created_at)) for m in rows]
    return ConversationOut(
        id=conv.id,
        podId=conv.pod_id,
        messages=messages,
        createdAt=iso(conv.created_at),
        updatedAt=iso(conv.updated_at),
    )


def _recent_feedback(db: Session, user: User) -> List[FeedbackNote]:
    rows = (
        db.query(Feedback)
        .filter(Feedback.user_id == user.id)
        .order_by(Feedback.created_at.desc())
        .limit(FEEDBACK_CONTEXT_ITEMS)
        .all()
    )
    return [FeedbackNote(rating=f.rating, comment=f.comment) for f in reversed(rows)]


@router.post("/chat", response_model=ChatResponse)
async def chat(payload: ChatRequest, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> ChatResponse:
    message = (payload.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required.")
    user, org = get_actor(db, actorId)
    pod_id = payload.podId or _default_pod_id(db, user)
    if not pod_id:
        raise HTTPException(status_code=400, detail="No pod selected.")
    if not can_view_pod(db, user, pod_id):
        raise HTTPException(status_code=403, detail="No access to pod.")
    pod = get_pod(db, org, pod_id)

    if not chat_allowed(org, pod):
        raise HTTPException(
            status_code=403,
            detail=f"Chat is disabled until knowledge quality reaches {settings.quality_threshold}. "
            "An admin can enable it in Knowledge settings.",
        )

    api_key = user_api_key(user)
    if not resolve_api_key(user.llm_provider, api_key):
        raise HTTPException(status_code=400, detail="Add your OpenAI or Gemini API key in Profile to enable live SQL and analysis.")

    knowledge = load_knowledge(pod)
    bank = list_bank_entries(db, pod.id)
    bank_context = "\n".join(
        f"({e.date}) {e.title}: {e.highlights} | {e.lowlights}" for e in bank[-BANK_CONTEXT_ENTRIES:]
    )
    estimated = estimate_tokens(f"{message}{knowledge.model_dump_json()}{bank_context}")
    if not can_use_tokens(org, estimated):
        db.commit()
        raise HTTPException(status_code=402, detail="Token limit reached. Upgrade your license to continue.")

    conv: Optional[Conversation] = None
    if payload.conversationId:
        conv = db.get(Conversation, payload.conversationId)
        if conv is not None and conv.user_id != user.id:
            raise HTTPException(status_code=404, detail="Conversation not found")
    if conv is None:
        conv = Conversation(id=payload.conversationId or str(uuid4()), user_id=user.id, pod_id=pod.id)
    user_msg = ChatMessage(id=str(uuid4()), conversation_id=conv.id, role="user", content=message, created_at=datetime.utcnow())

    data_source = user.active_data_source
    sources = load_data_sources(pod)
    dashboards = list_dashboards(db, pod.id)
    feedback = _recent_feedback(db, user)
    rag = retrieve_context(message, knowledge, bank)

    try:
        sql_res = await generate_sql(
            SqlRequest(
                message=message,
                provider=user.llm_provider,
                api_key=api_key,
                knowledge=knowledge,
                data_source=data_source,
                rag=rag,
                feedback=feedback,
                knowledge_bank=bank_context,
                dashboards=dashboards,
            )
        )
        sql = sql_res.sql
        if data_source != "firebase":
            sql = ensure_read_only(sql, detect_dialect(data_source, sources))
        result = await asyncio.to_thread(run_query, sql, QueryContext(data_source=data_source, data_sources=sources))
        analysis_res = await generate_analysis(
            AnalysisRequest(
                message=message,
                sql=sql,
                columns=result.columns,
                rows=result.rows,
                provider=user.llm_provider,
                api_key=api_key,
                knowledge=knowledge,
                data_source=data_source,
                feedback=feedback,
                knowledge_bank=bank_context,
                dashboards=dashboards,
            )
        )
    except LlmError as e:
        counter_inc("chat_requests_total", {"status": "llm_error"})
        raise HTTPException(status_code=502, detail=str(e))
    except (UnsafeSqlError, ConnectorError) as e:
        counter_inc("chat_requests_total", {"status": "query_error"})
        logger.warning(f"[Chat] Query failed for pod {pod.id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    consume_tokens(org, sql_res.tokensUsed + analysis_res.tokensUsed)
    assistant_msg = ChatMessage(
        id=str(uuid4()),
        conversation_id=conv.id,
        role="assistant",
        content=analysis_res.analysis,
        sql=sql,
        chart_hint=sql_res.chartHint,
        created_at=datetime.utcnow(),
    )
    conv.updated_at = datetime.utcnow()
    db.add(conv)
    db.add(user_msg)
    db.add(assistant_msg)
    db.commit()
    counter_inc("chat_requests_total", {"status": "ok"})

    return ChatResponse(
        conversationId=conv.id,
        messageId=assistant_msg.id,
        sql=sql,
        analysis=analysis_res.analysis,
        chartHint=sql_res.chartHint,
        columns=result.columns,
        rows=result.rows,
    )


@router.get("/conversations", response_model=List[ConversationOut])
def list_conversations(
    podId: str | None = Query(default=None),
    actorId: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> List[ConversationOut]:
    user, _ = get_actor(db, actorId)
    q = db.query(Conversation).filter(Conversation.user_id == user.id)
    if podId:
        q = q.filter(Conversation.pod_id == podId)
    return [_conversation_out(db, c, with_messages=False) for c in q.order_by(Conversation.updated_at.desc()).all()]


@router.get("/conversations/{conversation_id}", response_model=ConversationOut)
def get_conversation(conversation_id: str, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> ConversationOut:
    user, _ = get_actor(db, actorId)
    conv = db.get(Conversation, conversation_id)
    if not conv or conv.user_id != user.id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return _conversation_out(db, conv)


@router.post("/feedback")
def add_feedback(payload: FeedbackCreate, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> dict:
    user, _ = get_actor(db, actorId)
    if not payload.conversationId.strip() or not payload.messageId.strip():
        raise HTTPException(status_code=400, detail="conversationId, messageId, and rating are required.")
    db.add(
        Feedback(
            id=str(uuid4()),
            user_id=user.id,
            conversation_id=payload.conversationId,
            message_id=payload.messageId,
            rating=payload.rating,
            comment=payload.comment,
        )
    )
    db.commit()
    counter_inc("chat_feedback_total", {"rating": payload.rating})
    return {"ok": True}
