"""
Prompt building and response handling for the LLM features:

- SQL generation for chat questions (``generate_sql``)
- result summaries (``generate_analysis``)
- the support concierge (``generate_support_response``)
- knowledge-base quality scoring (``evaluate_knowledge_quality``), with a
  deterministic heuristic used whenever the model cannot answer
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from . import llm_client
from .llm_client import LlmError
from .rag import RagContext
from .schemas import DashboardOut, KnowledgeBankEntryOut, KnowledgeBase, SupportMessage
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

FALLBACK_SQL = """SELECT
  date_trunc('month', created_at) AS month,
  SUM(total) AS revenue
FROM orders
GROUP BY 1
ORDER BY 1
LIMIT 12;"""

CHART_HINTS = ("line", "bar", "pie")
SUPPORT_HISTORY_TURNS = 6

NO_KEY_ANALYSIS = "No API key configured. Add your OpenAI or Gemini key in Profile to enable live analysis."
NO_KEY_SUPPORT = "Concierge needs an OpenAI or Gemini API key. Add one in Profile to enable support answers."


@dataclass
class FeedbackNote:
    rating: str
    comment: Optional[str] = None


@dataclass
class SqlRequest:
    message: str
    provider: str
    api_key: Optional[str]
    knowledge: KnowledgeBase
    data_source: str
    rag: RagContext = field(default_factory=RagContext)
    feedback: List[FeedbackNote] = field(default_factory=list)
    knowledge_bank: str = ""
    dashboards: List[DashboardOut] = field(default_factory=list)


@dataclass
class SqlResponse:
    sql: str
    chartHint: str
    tokensUsed: int


@dataclass
class AnalysisRequest:
    message: str
    sql: str
    columns: List[str]
    rows: List[Dict[str, Any]]
    provider: str
    api_key: Optional[str]
    knowledge: KnowledgeBase
    data_source: str
    feedback: List[FeedbackNote] = field(default_factory=list)
    knowledge_bank: str = ""
    dashboards: List[DashboardOut] = field(default_factory=list)


@dataclass
class AnalysisResponse:
    analysis: str
    tokensUsed: int


@dataclass
class SupportRequest:
    message: str
    history: List[SupportMessage]
    provider: str
    api_key: Optional[str]
    account_type: str
    license_tier: str


@dataclass
class SupportResponse:
    reply: str
    tokensUsed: int


@dataclass
class KnowledgeQualityResponse:
    score: int
    notes: str
    tokensUsed: int


def extract_json(text: str) -> Any:
    """Parse the outermost ``{...}`` block of a model answer."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ValueError("No JSON block found")
    return json.loads(text[start : end + 1])


def _feedback_snippet(feedback: Sequence[FeedbackNote]) -> str:
    if not feedback:
        return "None."
    return "\n".join(f"{f.rating.upper()}: {f.comment or '(no comment)'}" for f in feedback)


def _dashboards_snippet(dashboards: Sequence[DashboardOut]) -> str:
    if not dashboards:
        return "None."
    return "\n".join(f"{d.name}: {', '.join(w.title for w in d.widgets)}" for d in dashboards)


def _dump(items: Sequence[Any]) -> str:
    return json.dumps([i.model_dump() for i in items])


def _dialect_instruction(data_source: str) -> str:
    if data_source == "firebase":
        return "- Use simple SQL that maps to Firestore: SELECT <fields> FROM <collection> WHERE field = 'value' ORDER BY field LIMIT N."
    if data_source == "postgres":
        return "- Use PostgreSQL-compatible SQL (date_trunc, ILIKE, etc.)."
    if data_source == "mysql":
        return "- Use MySQL-compatible SQL (DATE_FORMAT, backticks if needed)."
    return "- Use PostgreSQL/MySQL compatible SQL."


def build_sql_prompt(request: SqlRequest) -> str:
    k = request.knowledge
    return "\n".join([
        "You are ARES, an AI SQL assistant.",
        f"User question: {request.message}",
        f"Active data source: {request.data_source}",
        "Table dictionary:",
        _dump(k.tableDictionary),
        "Column dictionary:",
        _dump(k.columnDictionary),
        "Parameters:",
        json.dumps(k.parameters.model_dump()),
        "Metrics:",
        _dump(k.metrics),
        "Knowledge bank context:",
        request.knowledge_bank or "None.",
        "Dashboards:",
        _dashboards_snippet(request.dashboards),
        "RAG snippets:",
        " | ".join(request.rag.snippets) or "None.",
        "Recent user feedback:",
        _feedback_snippet(request.feedback),
        "\nInstructions:",
        "- Return ONLY a JSON object with keys: sql, chartHint.",
        "- chartHint must be one of: line, bar, pie.",
        "- Always include a LIMIT unless the user asked for full output.",
        _dialect_instruction(request.data_source),
    ])


async def generate_sql(request: SqlRequest) -> SqlResponse:
    prompt = build_sql_prompt(request)
    raw = await llm_client.run_provider(request.provider, prompt, request.api_key)
    if not raw.text:
        return SqlResponse(sql=FALLBACK_SQL, chartHint="line", tokensUsed=raw.tokens)
    try:
        parsed = extract_json(raw.text)
    except ValueError:
        logger.info("[LLM] SQL answer had no parseable JSON; using fallback query")
        return SqlResponse(sql=FALLBACK_SQL, chartHint="bar", tokensUsed=raw.tokens)
    sql = parsed.get("sql") if isinstance(parsed, dict) else None
    hint = parsed.get("chartHint") if isinstance(parsed, dict) else None
    if not isinstance(sql, str) or not sql.strip():
        sql = FALLBACK_SQL
    if hint not in CHART_HINTS:
        hint = "bar"
    return SqlResponse(sql=sql.strip(), chartHint=hint, tokensUsed=raw.tokens)


async def generate_analysis(request: AnalysisRequest) -> AnalysisResponse:
    prompt = "\n".join([
        "You are ARES, an AI data analyst.",
        f"User question: {request.message}",
        f"SQL: {request.sql}",
        f"Columns: {json.dumps(request.columns)}",
        f"Rows: {json.dumps(request.rows, default=str)}",
        "Parameters:",
        json.dumps(request.knowledge.parameters.model_dump()),
        "Knowledge bank context:",
        request.knowledge_bank or "None.",
        "Dashboards:",
        _dashboards_snippet(request.dashboards),
        "Recent user feedback:",
        _feedback_snippet(request.feedback),
        "\nInstructions:",
        "- Summarize key insights in 4-6 bullets.",
        "- Mention anomalies or trends.",
        "- Keep it concise and business-focused.",
    ])
    raw = await llm_client.run_provider(request.provider, prompt, request.api_key)
    if not raw.text:
        return AnalysisResponse(analysis=NO_KEY_ANALYSIS, tokensUsed=raw.tokens)
    return AnalysisResponse(analysis=raw.text.strip(), tokensUsed=raw.tokens)


async def generate_support_response(request: SupportRequest) -> SupportResponse:
    history = "\n".join(
        f"{m.role.upper()}: {m.content}" for m in request.history[-SUPPORT_HISTORY_TURNS:]
    )
    prompt = "\n".join([
        "You are ARES Concierge, a help & support assistant for the ARES Console.",
        "You MUST only answer about product usage, onboarding, troubleshooting, and where to find features.",
        "Do NOT generate SQL or analyze user data. If asked, redirect them to the Chat panel.",
        f"Account type: {request.account_type}",
        f"License tier: {request.license_tier}",
        "Key modules: Profile/API keys, Data Sources, Knowledge Base, Knowledge Bank, Dashboards, Chat, Billing/License.",
        "Answer in <= 120 words. Use short steps if needed.",
        f"Recent conversation:\n{history}" if history else "Recent conversation: None.",
        f"User: {request.message}",
    ])
    raw = await llm_client.run_provider(request.provider, prompt, request.api_key)
    if not raw.text:
        return SupportResponse(reply=NO_KEY_SUPPORT, tokensUsed=raw.tokens)
    return SupportResponse(reply=raw.text.strip(), tokensUsed=raw.tokens)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_heuristic_quality(
    knowledge: KnowledgeBase,
    knowledge_bank: Optional[Sequence[KnowledgeBankEntryOut]] = None,
) -> tuple[int, str]:
    """Score documentation completeness out of 100.

    tables 30, columns 20, four parameters at 5 each, metrics 20 (by filled
    fields), any knowledge-bank entry 10.
    """
    tables = knowledge.tableDictionary
    columns = knowledge.columnDictionary
    metrics = knowledge.metrics

    table_complete = sum(1 for t in tables if t.tableName.strip() and t.description.strip())
    column_complete = sum(
        1
        for c in columns
        if c.tableName.strip() and c.columnName.strip() and c.dataType.strip() and c.description.strip()
    )
    table_score = min(30.0, table_complete / max(1, len(tables)) * 30)
    column_score = min(20.0, column_complete / max(1, len(columns)) * 20)

    p = knowledge.parameters
    params_score = 5 * sum(
        1
        for filled in (
            p.dateHandlingRules.strip(),
            p.bestQueryPractices.strip(),
            p.businessContext.strip(),
            bool(p.sampleQueries),
        )
        if filled
    )

    metric_fields = len(metrics) * 4
    metric_filled = sum(
        bool(m.name.strip()) + bool(m.definition.strip()) + bool(m.sampleQuery.strip()) + bool(m.defaultFilters.strip())
        for m in metrics
    )
    metric_score = (metric_filled / metric_fields) * 20 if metric_fields else 0.0
    bank_score = 10 if knowledge_bank else 0

    total = max(0, min(100, _round_half_up(table_score + column_score + params_score + metric_score + bank_score)))

    missing: List[str] = []
    if table_complete == 0:
        missing.append("tables")
    if column_complete == 0:
        missing.append("columns")
    if not p.businessContext.strip():
        missing.append("business context")
    if not metrics or metric_filled == 0:
        missing.append("metrics")
    if missing:
        notes = f"Add {', '.join(missing)} to improve documentation quality."
    else:
        notes = "Knowledge base is sufficiently detailed for analytics."
    return total, notes


def _quality_prompt(knowledge: KnowledgeBase, knowledge_bank: Optional[Sequence[KnowledgeBankEntryOut]]) -> str:
    if knowledge_bank:
        bank = "Knowledge bank:\n" + "\n".join(f"- {e.title}: {e.highlights} | {e.lowlights}" for e in knowledge_bank)
    else:
        bank = "Knowledge bank: None."
    return "\n".join([
        "You are a data documentation reviewer.",
        "Evaluate the quality of the knowledge base for analytics readiness.",
        "Return ONLY JSON with keys: score (0-100 integer), notes (1-2 sentences).",
        "Scoring guidance:",
        "- 90-100: comprehensive tables/columns/metrics with clear business context.",
        "- 80-89: mostly complete but missing minor details.",
        "- 60-79: incomplete or unclear; missing key definitions.",
        "- <60: insufficient for reliable analysis.",
        "If knowledge bank entries exist, incorporate them in the assessment.",
        "Knowledge base:",
        json.dumps(knowledge.model_dump()),
        bank,
    ])


async def evaluate_knowledge_quality(
    knowledge: KnowledgeBase,
    provider: Optional[str] = None,
    api_key: Optional[str] = None,
    knowledge_bank: Optional[Sequence[KnowledgeBankEntryOut]] = None,
) -> KnowledgeQualityResponse:
    if not provider:
        try:
            provider = llm_client.pick_app_provider()
        except LlmError:
            provider = "OPENAI"
    prompt = _quality_prompt(knowledge, knowledge_bank)
    fb_score, fb_notes = compute_heuristic_quality(knowledge, knowledge_bank)

    try:
        raw = await llm_client.run_provider(provider, prompt, api_key)
    except LlmError as e:
        logger.warning(f"[LLM] Knowledge evaluation failed, using heuristic: {e}")
        return KnowledgeQualityResponse(
            score=fb_score,
            notes=f"{fb_notes} (LLM evaluation unavailable; using heuristic).",
            tokensUsed=estimate_tokens(prompt),
        )
    if not raw.text:
        return KnowledgeQualityResponse(score=fb_score, notes=fb_notes, tokensUsed=raw.tokens)

    try:
        parsed = extract_json(raw.text)
    except ValueError:
        return KnowledgeQualityResponse(score=fb_score, notes=fb_notes, tokensUsed=raw.tokens)
    if not isinstance(parsed, dict):
        return KnowledgeQualityResponse(score=fb_score, notes=fb_notes, tokensUsed=raw.tokens)

    score = parsed.get("score")
    if isinstance(score, (int, float)) and not isinstance(score, bool) and not math.isnan(score):
        score = _round_half_up(max(0.0, min(100.0, float(score))))
    else:
        score = fb_score
    notes = parsed.get("notes")
    if not isinstance(notes, str) or not notes:
        notes = fb_notes
    return KnowledgeQualityResponse(score=score, notes=notes, tokensUsed=raw.tokens)
