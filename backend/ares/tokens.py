from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from .config import settings


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token count: one token per four characters, at least one for non-empty text."""
    if not text:
        return 0
    return max(1, math.ceil(len(text) / 4))


def get_token_limit(tier: str) -> int:
    if tier == "FREE":
        return int(settings.free_token_limit)
    if tier == "INDIVIDUAL":
        return int(settings.individual_token_limit)
    return int(settings.business_token_limit)


def license_for(account_type: str) -> str:
    return "BUSINESS" if account_type == "BUSINESS" else "FREE"


def start_token_bucket(org, now: Optional[datetime] = None) -> None:
    now = now or datetime.utcnow()
    org.token_limit = get_token_limit(org.license_tier)
    org.tokens_used = 0
    org.tokens_reset_at = now + timedelta(days=int(settings.token_bucket_days))


def reset_token_bucket_if_needed(org, now: Optional[datetime] = None) -> bool:
    """Start a fresh bucket once the reset time has passed. Returns True when reset."""
    now = now or datetime.utcnow()
    if org.tokens_reset_at is not None and org.tokens_reset_at > now:
        return False
    start_token_bucket(org, now)
    return True


def can_use_tokens(org, tokens: int, now: Optional[datetime] = None) -> bool:
    reset_token_bucket_if_needed(org, now)
    return int(org.tokens_used or 0) + int(tokens) <= int(org.token_limit or 0)


def consume_tokens(org, tokens: int, now: Optional[datetime] = None) -> int:
    """Add ``tokens`` to the org bucket (caller commits). Returns the new usage."""
    reset_token_bucket_if_needed(org, now)
    org.tokens_used = int(org.tokens_used or 0) + int(tokens)
    return org.tokens_used
