import asyncio

import pytest

from ares import llm_client, llm_service
from ares.llm_client import LlmError, ProviderResult
from ares.llm_service import (
    FALLBACK_SQL,
    AnalysisRequest,
    SqlRequest,
    SupportRequest,
    compute_heuristic_quality,
    evaluate_knowledge_quality,
    extract_json,
    generate_analysis,
    generate_sql,
    generate_support_response,
)
from ares.schemas import (
    ColumnDictionaryItem,
    KnowledgeBankEntryOut,
    KnowledgeBase,
    KnowledgeParameters,
    MetricDefinition,
    SupportMessage,
    TableDictionaryItem,
)


def _full_knowledge() -> KnowledgeBase:
    return KnowledgeBase(
        tableDictionary=[TableDictionaryItem(tableName="orders", description="One row per order")],
        columnDictionary=[
            ColumnDictionaryItem(tableName="orders", columnName="total", dataType="numeric", description="Order value")
        ],
        parameters=KnowledgeParameters(
            dateHandlingRules="UTC",
            bestQueryPractices="Always filter by date",
            businessContext="Online retail",
            sampleQueries=["SELECT 1"],
        ),
        metrics=[
            MetricDefinition(name="revenue", definition="Sum of totals", sampleQuery="SELECT SUM(total)", defaultFilters="paid")
        ],
    )


BANK = [KnowledgeBankEntryOut(id="k1", title="Q1 review", date="2024-03-31", highlights="Up", lowlights="Churn")]


@pytest.fixture
def provider_answer(monkeypatch):
    """Replace the provider call with a canned answer and record prompts."""
    state = {"text": "", "prompts": []}

    async def fake_run(provider, prompt, api_key):
        state["prompts"].append(prompt)
        return ProviderResult(text=state["text"], tokens=42)

    monkeypatch.setattr(llm_client, "run_provider", fake_run)
    return state


def _sql_request(**kw):
    base = dict(message="revenue by month", provider="OPENAI", api_key="sk-test", knowledge=KnowledgeBase(), data_source="postgres")
    base.update(kw)
    return SqlRequest(**base)


class TestExtractJson:
    def test_fenced_answer(self):
        assert extract_json('```json\n{"sql": "SELECT 1", "chartHint": "pie"}\n```') == {"sql": "SELECT 1", "chartHint": "pie"}

    def test_no_braces(self):
        with pytest.raises(ValueError):
            extract_json("no json here")


class TestGenerateSql:
    def test_parses_model_answer(self, provider_answer):
        provider_answer["text"] = 'Sure:\n{"sql": "  SELECT 1 LIMIT 5  ", "chartHint": "pie"}'
        res = asyncio.run(generate_sql(_sql_request()))
        assert res.sql == "SELECT 1 LIMIT 5"
        assert res.chartHint == "pie"
        assert res.tokensUsed == 42

    def test_empty_answer_uses_line_fallback(self, provider_answer):
        res = asyncio.run(generate_sql(_sql_request()))
        assert res.sql == FALLBACK_SQL.strip()
        assert res.chartHint == "line"

    def test_unparseable_answer_uses_bar_fallback(self, provider_answer):
        provider_answer["text"] = "I cannot help with that."
        res = asyncio.run(generate_sql(_sql_request()))
        assert res.sql == FALLBACK_SQL.strip()
        assert res.chartHint == "bar"

    def test_blank_sql_and_unknown_hint(self, provider_answer):
        provider_answer["text"] = '{"sql": "   ", "chartHint": "scatter"}'
        res = asyncio.run(generate_sql(_sql_request()))
        assert res.sql == FALLBACK_SQL.strip()
        assert res.chartHint == "bar"

    def test_prompt_carries_context(self, provider_answer):
        asyncio.run(generate_sql(_sql_request(data_source="firebase", knowledge_bank="(2024-01-01) Launch: ok | none")))
        prompt = provider_answer["prompts"][0]
        assert "User question: revenue by month" in prompt
        assert "Firestore" in prompt
        assert "(2024-01-01) Launch" in prompt

    def test_mysql_instruction(self, provider_answer):
        asyncio.run(generate_sql(_sql_request(data_source="mysql")))
        assert "MySQL-compatible" in provider_answer["prompts"][0]


class TestAnalysisAndSupport:
    def test_analysis_without_key_explains(self, provider_answer):
        req = AnalysisRequest(
            message="q", sql="SELECT 1", columns=["a"], rows=[{"a": 1}], provider="OPENAI",
            api_key=None, knowledge=KnowledgeBase(), data_source="postgres",
        )
        res = asyncio.run(generate_analysis(req))
        assert res.analysis == llm_service.NO_KEY_ANALYSIS

    def test_analysis_text_trimmed(self, provider_answer):
        provider_answer["text"] = "\n- Revenue grew 10%\n"
        req = AnalysisRequest(
            message="q", sql="SELECT 1", columns=["a"], rows=[{"a": 1}], provider="OPENAI",
            api_key="k", knowledge=KnowledgeBase(), data_source="postgres",
        )
        assert asyncio.run(generate_analysis(req)).analysis == "- Revenue grew 10%"

    def test_support_keeps_last_turns(self, provider_answer):
        provider_answer["text"] = "Open Profile."
        history = [SupportMessage(role="user", content=f"turn {i}") for i in range(10)]
        req = SupportRequest(
            message="where are keys?", history=history, provider="GEMINI", api_key="k",
            account_type="BUSINESS", license_tier="BUSINESS",
        )
        res = asyncio.run(generate_support_response(req))
        prompt = provider_answer["prompts"][0]
        assert res.reply == "Open Profile."
        assert "turn 3" not in prompt
        assert "USER: turn 4" in prompt
        assert "USER: turn 9" in prompt

    def test_support_without_key(self, provider_answer):
        req = SupportRequest(
            message="hi", history=[], provider="OPENAI", api_key=None, account_type="INDIVIDUAL", license_tier="FREE",
        )
        res = asyncio.run(generate_support_response(req))
        assert res.reply == llm_service.NO_KEY_SUPPORT
        assert "Recent conversation: None." in provider_answer["prompts"][0]


class TestHeuristicQuality:
    def test_empty_knowledge(self):
        score, notes = compute_heuristic_quality(KnowledgeBase())
        assert score == 0
        assert notes == "Add tables, columns, business context, metrics to improve documentation quality."

    def test_complete_knowledge_with_bank(self):
        score, notes = compute_heuristic_quality(_full_knowledge(), BANK)
        assert score == 100
        assert notes == "Knowledge base is sufficiently detailed for analytics."

    def test_partial_knowledge(self):
        kb = _full_knowledge()
        kb.tableDictionary.append(TableDictionaryItem(tableName="users"))
        kb.metrics[0].defaultFilters = ""
        # tables 15, columns 20, params 20, metrics 15, no bank
        score, _ = compute_heuristic_quality(kb)
        assert score == 70


class TestEvaluateKnowledgeQuality:
    def test_uses_model_score(self, provider_answer):
        provider_answer["text"] = '{"score": 87.5, "notes": "Solid."}'
        res = asyncio.run(evaluate_knowledge_quality(KnowledgeBase(), "OPENAI", "k"))
        assert (res.score, res.notes, res.tokensUsed) == (88, "Solid.", 42)

    def test_score_clamped(self, provider_answer):
        provider_answer["text"] = '{"score": 123.6}'
        res = asyncio.run(evaluate_knowledge_quality(KnowledgeBase(), "OPENAI", "k"))
        assert res.score == 100
        assert res.notes.startswith("Add tables")

    def test_non_numeric_score_falls_back(self, provider_answer):
        provider_answer["text"] = '{"score": "great", "notes": "x"}'
        res = asyncio.run(evaluate_knowledge_quality(_full_knowledge(), "OPENAI", "k", BANK))
        assert res.score == 100

    def test_no_key_uses_heuristic(self, provider_answer):
        res = asyncio.run(evaluate_knowledge_quality(KnowledgeBase(), "OPENAI", None))
        assert res.score == 0
        assert "(LLM evaluation unavailable" not in res.notes

    def test_provider_failure_marks_notes(self, monkeypatch):
        async def failing(provider, prompt, api_key):
            raise LlmError("OpenAI error: quota")

        monkeypatch.setattr(llm_client, "run_provider", failing)
        res = asyncio.run(evaluate_knowledge_quality(KnowledgeBase(), "OPENAI", "k"))
        assert res.score == 0
        assert res.notes.endswith(" (LLM evaluation unavailable; using heuristic).")
        assert res.tokensUsed > 0


class TestRunProvider:
    def test_skips_call_without_key(self, monkeypatch):
        async def boom(*a, **kw):
            raise AssertionError("provider must not be called")

        monkeypatch.setattr(llm_client, "complete", boom)
        res = asyncio.run(llm_client.run_provider("OPENAI", "abcdefgh", None))
        assert res == ProviderResult(text="", tokens=2)

    def test_counts_prompt_and_answer(self, monkeypatch):
        async def fake_complete(provider, api_key, prompt, model=None):
            assert api_key == "user-key"
            return "abcd"

        monkeypatch.setattr(llm_client, "complete", fake_complete)
        res = asyncio.run(llm_client.run_provider("GEMINI", "abcd", "user-key"))
        assert res == ProviderResult(text="abcd", tokens=2)

    def test_unknown_provider_rejected(self):
        with pytest.raises(LlmError, match="Unsupported provider"):
            asyncio.run(llm_client.complete("CLAUDE", "k", "hi"))
