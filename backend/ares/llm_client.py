from __future__ import annotations

import asyncio
import logging
import time as _t
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .config import settings
from .metrics import counter_inc, summary_observe
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

_AI_SEM = asyncio.BoundedSemaphore(settings.ai_limit)


class LlmError(RuntimeError):
    """The provider call failed or returned something unusable."""


@dataclass
class ProviderResult:
    text: str
    tokens: int


def resolve_api_key(provider: str, api_key: Optional[str]) -> str:
    """Prefer the user's own key; fall back to the app-level key for the provider."""
    if api_key:
        return api_key
    if provider == "OPENAI":
        return settings.openai_api_key or ""
    return settings.gemini_api_key or ""


def resolve_model(provider: str) -> str:
    if provider == "OPENAI":
        return settings.openai_model
    return settings.gemini_model


def pick_app_provider() -> str:
    if settings.openai_api_key:
        return "OPENAI"
    if settings.gemini_api_key:
        return "GEMINI"
    raise LlmError("No app LLM key configured. Set OPENAI_API_KEY or GEMINI_API_KEY.")


# --- LLM call helpers ---
async def _call_gemini(model: str, api_key: str, prompt: str) -> str:
    url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"
    headers = {"Content-Type": "application/json"}
    payload = {"contents": [{"parts": [{"text": prompt}]}]}
    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.ai_timeout)) as client:
        r = await client.post(url, headers=headers, json=payload)
        if r.status_code != 200:
            raise LlmError(f"Gemini error: {r.text}")
        data = r.json()
        try:
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(str(p.get("text") or "") for p in parts)
        except (KeyError, IndexError, TypeError, AttributeError):
            raise LlmError("Gemini malformed response")


async def _call_openai(model: str, api_key: str, prompt: str) -> str:
    url = f"{(settings.openai_base_url or 'https://api.openai.com/v1').rstrip('/')}/chat/completions"
    headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
    messages: List[Dict[str, Any]] = [{"role": "user", "content": prompt}]
    payload = {"model": model, "messages": messages, "temperature": 0.2}
    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.ai_timeout)) as client:
        r = await client.post(url, headers=headers, json=payload)
        if r.status_code != 200:
            raise LlmError(f"OpenAI error: {r.text}")
        data = r.json()
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise LlmError("OpenAI malformed response")


async def complete(provider: str, api_key: str, prompt: str, model: Optional[str] = None) -> str:
    """Send one prompt to the provider, bounded by the shared concurrency limit."""
    p = (provider or "").upper()
    mdl = model or resolve_model(p)
    _s = _t.perf_counter()
    try:
        async with _AI_SEM:
            if p == "OPENAI":
                text = await _call_openai(mdl, api_key, prompt)
            elif p == "GEMINI":
                text = await _call_gemini(mdl, api_key, prompt)
            else:
                raise LlmError(f"Unsupported provider: {provider}")
    except httpx.HTTPError as e:
        counter_inc("llm_errors_total", {"provider": p.lower()})
        logger.warning(f"[LLM] {p} transport error: {e}")
        raise LlmError(f"{p} request failed: {e}") from e
    except LlmError:
        counter_inc("llm_errors_total", {"provider": p.lower()})
        raise
    _d = int((_t.perf_counter() - _s) * 1000)
    counter_inc("llm_requests_total", {"provider": p.lower()})
    summary_observe("llm_request_duration_ms", _d, {"provider": p.lower()})
    return text


async def run_provider(provider: str, prompt: str, api_key: Optional[str]) -> ProviderResult:
    """Run ``prompt`` and estimate tokens. Without any usable key the call is skipped."""
    key = resolve_api_key(provider, api_key)
    if not key:
        return ProviderResult(text="", tokens=estimate_tokens(prompt))
    text = await complete(provider, key, prompt)
    return ProviderResult(text=text, tokens=estimate_tokens(f"{prompt}{text}"))
