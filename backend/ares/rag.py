from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from .schemas import KnowledgeBankEntryOut, KnowledgeBase

_WORD_RE = re.compile(r"[a-z0-9_]+")
_STOPWORDS = {
    "a", "an", "and", "are", "by", "for", "from", "how", "in", "is", "it", "me",
    "my", "of", "on", "or", "show", "the", "to", "was", "what", "which", "with",
}


@dataclass
class RagContext:
    snippets: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)


def tokenize(text: Optional[str]) -> set[str]:
    return {w for w in _WORD_RE.findall((text or "").lower()) if w not in _STOPWORDS and len(w) > 1}


def _candidates(knowledge: KnowledgeBase, bank_entries: Iterable[KnowledgeBankEntryOut]) -> List[Tuple[str, str]]:
    out: List[Tuple[str, str]] = []
    for e in bank_entries:
        text = f"({e.date}) {e.title}: {e.highlights} | {e.lowlights}"
        if e.docText:
            text = f"{text} | {e.docText[:500]}"
        out.append((f"knowledgeBank:{e.id}", text))
    for m in knowledge.metrics:
        if not m.name.strip():
            continue
        parts = [f"Metric {m.name}: {m.definition}".strip()]
        if m.sampleQuery:
            parts.append(f"Sample: {m.sampleQuery}")
        if m.defaultFilters:
            parts.append(f"Filters: {m.defaultFilters}")
        out.append((f"metric:{m.name}", " | ".join(parts)))
    return out


def retrieve_context(
    question: str,
    knowledge: KnowledgeBase,
    bank_entries: Iterable[KnowledgeBankEntryOut] = (),
    top_k: int = 3,
) -> RagContext:
    """Rank knowledge-bank entries and metric definitions by word overlap with the question.

    Ties keep their input order; items sharing no words with the question are dropped.
    """
    q = tokenize(question)
    if not q:
        return RagContext()
    scored = []
    for idx, (source, text) in enumerate(_candidates(knowledge, bank_entries)):
        overlap = len(q & tokenize(text))
        if overlap:
            scored.append((-overlap, idx, source, text))
    scored.sort()
    top = scored[: max(0, int(top_k))]
    return RagContext(snippets=[t for _, _, _, t in top], sources=[s for _, _, s, _ in top])
