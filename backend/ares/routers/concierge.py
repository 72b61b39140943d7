from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..access import get_actor
from ..llm_client import LlmError, resolve_api_key
from ..llm_service import SupportRequest, generate_support_response
from ..metrics import counter_inc
from ..models import get_db, user_api_key
from ..schemas import ConciergeRequest, ConciergeResponse
from ..tokens import can_use_tokens, consume_tokens, estimate_tokens

logger = logging.getLogger(__name__)

router = APIRouter(tags=["concierge"])


@router.post("/concierge", response_model=ConciergeResponse)
async def concierge(payload: ConciergeRequest, actorId: str | None = Query(default=None), db: Session = Depends(get_db)) -> ConciergeResponse:
    message = (payload.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required.")
    user, org = get_actor(db, actorId)
    api_key = user_api_key(user)
    if not resolve_api_key(user.llm_provider, api_key):
        raise HTTPException(status_code=400, detail="Add your OpenAI or Gemini API key in Profile to enable concierge.")
    if not can_use_tokens(org, estimate_tokens(message)):
        db.commit()
        raise HTTPException(status_code=402, detail="Token limit reached. Upgrade your license to continue.")
    try:
        result = await generate_support_response(
            SupportRequest(
                message=message,
                history=payload.history,
                provider=user.llm_provider,
                api_key=api_key,
                account_type=org.account_type,
                license_tier=org.license_tier,
            )
        )
    except LlmError as e:
        counter_inc("concierge_requests_total", {"status": "error"})
        logger.warning(f"[Concierge] Provider call failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    consume_tokens(org, result.tokensUsed)
    db.commit()
    counter_inc("concierge_requests_total", {"status": "ok"})
    return ConciergeResponse(reply=result.reply)
