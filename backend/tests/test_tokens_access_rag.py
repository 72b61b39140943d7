from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from ares.access import chat_allowed, role_at_least
from ares.config import settings
from ares.rag import retrieve_context, tokenize
from ares.schemas import KnowledgeBankEntryOut, KnowledgeBase, MetricDefinition
from ares.tokens import (
    can_use_tokens,
    consume_tokens,
    estimate_tokens,
    get_token_limit,
    license_for,
    reset_token_bucket_if_needed,
)

NOW = datetime(2024, 6, 1, 12, 0, 0)


def _org(tier="FREE", used=0, limit=None, reset_at=None, account_type="INDIVIDUAL"):
    return SimpleNamespace(
        account_type=account_type,
        license_tier=tier,
        tokens_used=used,
        token_limit=get_token_limit(tier) if limit is None else limit,
        tokens_reset_at=reset_at,
    )


class TestTokenBucket:
    def test_estimate(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0
        assert estimate_tokens("abc") == 1
        assert estimate_tokens("abcdefghi") == 3

    def test_limits_by_tier(self):
        assert get_token_limit("FREE") == settings.free_token_limit
        assert get_token_limit("INDIVIDUAL") == settings.individual_token_limit
        assert get_token_limit("BUSINESS") == settings.business_token_limit
        assert license_for("BUSINESS") == "BUSINESS"
        assert license_for("INDIVIDUAL") == "FREE"

    def test_bucket_not_reset_before_deadline(self):
        org = _org(used=500, reset_at=NOW + timedelta(days=1))
        assert reset_token_bucket_if_needed(org, NOW) is False
        assert org.tokens_used == 500

    def test_expired_bucket_resets(self):
        org = _org(tier="BUSINESS", used=500, limit=10, reset_at=NOW - timedelta(seconds=1))
        assert reset_token_bucket_if_needed(org, NOW) is True
        assert org.tokens_used == 0
        assert org.token_limit == settings.business_token_limit
        assert org.tokens_reset_at == NOW + timedelta(days=settings.token_bucket_days)

    def test_missing_reset_time_starts_bucket(self):
        org = _org(used=7)
        assert reset_token_bucket_if_needed(org, NOW) is True
        assert org.tokens_used == 0

    def test_can_use_up_to_limit(self):
        org = _org(used=90, limit=100, reset_at=NOW + timedelta(days=1))
        assert can_use_tokens(org, 10, NOW)
        assert not can_use_tokens(org, 11, NOW)

    def test_consume_accumulates(self):
        org = _org(used=5, limit=100, reset_at=NOW + timedelta(days=1))
        assert consume_tokens(org, 10, NOW) == 15
        assert consume_tokens(org, 0, NOW) == 15


class TestAccess:
    @pytest.mark.parametrize(
        "role,required,ok",
        [
            ("admin", "editor", True),
            ("editor", "editor", True),
            ("viewer", "editor", False),
            ("editor", "admin", False),
            (None, "viewer", False),
            ("owner", "viewer", False),
        ],
    )
    def test_role_order(self, role, required, ok):
        assert role_at_least(role, required) is ok

    def test_individual_orgs_always_chat(self):
        org = SimpleNamespace(account_type="INDIVIDUAL")
        pod = SimpleNamespace(chat_override=False, chat_enabled=False, quality_score=10)
        assert chat_allowed(org, pod)

    def test_business_gated_on_quality(self):
        org = SimpleNamespace(account_type="BUSINESS")
        low = SimpleNamespace(chat_override=False, chat_enabled=False, quality_score=settings.quality_threshold - 1)
        high = SimpleNamespace(chat_override=False, chat_enabled=False, quality_score=settings.quality_threshold)
        unscored = SimpleNamespace(chat_override=False, chat_enabled=True, quality_score=None)
        assert not chat_allowed(org, low)
        assert chat_allowed(org, high)
        assert chat_allowed(org, unscored)

    def test_override_wins(self):
        org = SimpleNamespace(account_type="BUSINESS")
        forced_on = SimpleNamespace(chat_override=True, chat_enabled=True, quality_score=0)
        forced_off = SimpleNamespace(chat_override=True, chat_enabled=False, quality_score=100)
        assert chat_allowed(org, forced_on)
        assert not chat_allowed(org, forced_off)


class TestRetrieveContext:
    def _kb(self):
        return KnowledgeBase(
            metrics=[
                MetricDefinition(name="revenue", definition="Sum of paid order totals"),
                MetricDefinition(name="churn", definition="Share of customers lost"),
                MetricDefinition(name=""),
            ]
        )

    def test_tokenize_drops_stopwords(self):
        assert tokenize("Show me the revenue by region!") == {"revenue", "region"}

    def test_ranks_by_overlap(self):
        bank = [
            KnowledgeBankEntryOut(id="b1", title="Churn spike", date="2024-02-01", highlights="", lowlights="customers lost"),
        ]
        ctx = retrieve_context("why were customers lost to churn", self._kb(), bank)
        assert ctx.sources == ["knowledgeBank:b1", "metric:churn"]
        assert ctx.snippets[1].startswith("Metric churn: Share of customers lost")

    def test_no_overlap_returns_nothing(self):
        ctx = retrieve_context("weather tomorrow", self._kb())
        assert ctx.snippets == []
        assert ctx.sources == []

    def test_top_k(self):
        ctx = retrieve_context("revenue churn customers paid", self._kb(), top_k=1)
        assert len(ctx.sources) == 1
