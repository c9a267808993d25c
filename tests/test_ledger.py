"""Tests for subscription quotas and usage bookkeeping."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from sqyros.core.ledger import QuotaPolicy, UsageLedger, UsageStore, normalize_tier, period_key
from sqyros.models.routing_models import ModelTier
from sqyros.models.usage_models import UsageAction, UsageRecord

NOW = datetime(2026, 10, 17, 15, 30, tzinfo=timezone.utc)


class InMemoryStore:
    def __init__(self, tier: str | None = None) -> None:
        self.tier = tier
        self.logs: list = []
        self.monthly: dict[tuple[str, str], dict] = {}
        self.fail_log = False
        self.fail_monthly = False

    async def get_user_tier(self, user_id: str):
        _ = user_id
        return self.tier

    async def get_monthly_usage(self, user_id: str, year_month: str):
        return self.monthly.get((user_id, year_month))

    async def count_usage_logs(self, user_id: str, action: str, day: str) -> int:
        return sum(
            1 for e in self.logs if e.user_id == user_id and e.action_type.value == action and e.day == day
        )

    async def insert_usage_log(self, entry) -> None:
        if self.fail_log:
            raise ServerSelectionTimeoutError("mongo down")
        self.logs.append(entry)

    async def increment_monthly_usage(self, user_id, year_month, *, guides, questions, tokens, cost_cents):
        if self.fail_monthly:
            raise ConnectionError("mongo down")
        doc = self.monthly.setdefault(
            (user_id, year_month),
            {"guides_generated": 0, "questions_asked": 0, "total_tokens": 0, "total_cost_cents": 0},
        )
        doc["guides_generated"] += guides
        doc["questions_asked"] += questions
        doc["total_tokens"] += tokens
        doc["total_cost_cents"] += cost_cents


def _record(tier: ModelTier = ModelTier.ADVANCED) -> UsageRecord:
    return UsageRecord.from_tokens(tier, 1000, 1000)


def test_in_memory_store_satisfies_protocol():
    assert isinstance(InMemoryStore(), UsageStore)


def test_period_keys():
    assert period_key(UsageAction.guide, NOW) == "2026-10"
    assert period_key(UsageAction.question, NOW) == "2026-10-17"
    assert period_key(UsageAction.routed, NOW) == "2026-10"


@pytest.mark.parametrize("raw,expected", [(None, "free"), ("", "free"), ("  ", "free"), ("Pro", "pro"), ("team", "team")])
def test_normalize_tier(raw, expected):
    assert normalize_tier(raw) == expected


def test_policy_limits_only_apply_to_free_tier():
    policy = QuotaPolicy()
    assert policy.limit_for("free", UsageAction.guide) == 3
    assert policy.limit_for("free", UsageAction.question) == 5
    assert policy.limit_for("free", UsageAction.routed) is None
    assert policy.limit_for("pro", UsageAction.guide) is None
    assert policy.limit_for("enterprise", UsageAction.question) is None


@pytest.mark.asyncio
async def test_free_user_under_guide_limit_is_allowed():
    store = InMemoryStore()
    store.monthly[("u1", "2026-10")] = {"guides_generated": 2}
    ledger = UsageLedger(store)

    check = await ledger.check_and_reserve("u1", "free", UsageAction.guide, now=NOW)
    assert check.allowed is True
    assert check.used == 2
    assert check.limit == 3
    assert check.period_key == "2026-10"


@pytest.mark.asyncio
async def test_free_user_at_guide_limit_is_rejected():
    store = InMemoryStore()
    store.monthly[("u1", "2026-10")] = {"guides_generated": 3}
    ledger = UsageLedger(store)

    check = await ledger.check_and_reserve("u1", "free", UsageAction.guide, now=NOW)
    assert check.allowed is False


@pytest.mark.asyncio
async def test_last_months_guides_do_not_count():
    store = InMemoryStore()
    store.monthly[("u1", "2026-09")] = {"guides_generated": 3}
    ledger = UsageLedger(store)

    check = await ledger.check_and_reserve("u1", "free", UsageAction.guide, now=NOW)
    assert check.allowed is True
    assert check.used == 0


@pytest.mark.asyncio
async def test_daily_question_quota_counts_todays_log_entries():
    store = InMemoryStore()
    ledger = UsageLedger(store)
    for _ in range(5):
        await ledger.record_usage("u1", UsageAction.question, _record(ModelTier.FAST), now=NOW)

    assert (await ledger.check_and_reserve("u1", "free", UsageAction.question, now=NOW)).allowed is False

    tomorrow = NOW.replace(day=18)
    assert (await ledger.check_and_reserve("u1", "free", UsageAction.question, now=tomorrow)).allowed is True


@pytest.mark.asyncio
async def test_paid_tier_is_never_capped():
    store = InMemoryStore()
    store.monthly[("u1", "2026-10")] = {"guides_generated": 500}
    ledger = UsageLedger(store)

    check = await ledger.check_and_reserve("u1", "pro", UsageAction.guide, now=NOW)
    assert check.allowed is True
    assert check.limit is None


@pytest.mark.asyncio
async def test_resolve_tier_defaults_to_free():
    assert await UsageLedger(InMemoryStore(tier=None)).resolve_tier("u1") == "free"
    assert await UsageLedger(InMemoryStore(tier="pro")).resolve_tier("u1") == "pro"


@pytest.mark.asyncio
async def test_record_usage_appends_log_and_creates_monthly_row():
    store = InMemoryStore()
    ledger = UsageLedger(store)
    record = _record()

    ok = await ledger.record_usage("u1", UsageAction.guide, record, model="gemini-3-pro", metadata={"device": "MXA920"}, now=NOW)

    assert ok is True
    assert len(store.logs) == 1
    entry = store.logs[0]
    assert entry.action_type == UsageAction.guide
    assert entry.model_used == "gemini-3-pro"
    assert entry.cost_cents == record.cost_cents == 9
    assert entry.year_month == "2026-10"
    assert entry.day == "2026-10-17"
    assert entry.metadata == {"device": "MXA920"}
    assert store.monthly[("u1", "2026-10")] == {
        "guides_generated": 1,
        "questions_asked": 0,
        "total_tokens": 2000,
        "total_cost_cents": 9,
    }


@pytest.mark.asyncio
async def test_record_usage_accumulates_running_totals():
    store = InMemoryStore()
    ledger = UsageLedger(store)

    await ledger.record_usage("u1", UsageAction.guide, _record(), now=NOW)
    await ledger.record_usage("u1", UsageAction.question, _record(ModelTier.FAST), now=NOW)
    await ledger.record_usage("u1", UsageAction.routed, _record(ModelTier.FAST), now=NOW)

    doc = store.monthly[("u1", "2026-10")]
    assert doc["guides_generated"] == 1
    assert doc["questions_asked"] == 1
    assert doc["total_tokens"] == 6000
    assert doc["total_cost_cents"] == 9 + 2 + 2


@pytest.mark.asyncio
async def test_record_usage_swallows_store_failures():
    store = InMemoryStore()
    store.fail_log = True
    store.fail_monthly = True
    ledger = UsageLedger(store)

    ok = await ledger.record_usage("u1", UsageAction.guide, _record(), now=NOW)
    assert ok is False


@pytest.mark.asyncio
async def test_log_failure_does_not_skip_monthly_fold():
    store = InMemoryStore()
    store.fail_log = True
    ledger = UsageLedger(store)

    ok = await ledger.record_usage("u1", UsageAction.guide, _record(), now=NOW)
    assert ok is False
    assert store.monthly[("u1", "2026-10")]["guides_generated"] == 1


@pytest.mark.asyncio
async def test_summary_reports_remaining_allowance():
    store = InMemoryStore()
    ledger = UsageLedger(store)
    await ledger.record_usage("u1", UsageAction.guide, _record(), now=NOW)
    await ledger.record_usage("u1", UsageAction.question, _record(ModelTier.FAST), now=NOW)

    summary = await ledger.summary("u1", "free", now=NOW)
    assert summary.tier == "free"
    assert summary.monthly.guides_generated == 1
    assert summary.guides.remaining == 2
    assert summary.questions.used == 1
    assert summary.questions.remaining == 4

    paid = await ledger.summary("u1", "pro", now=NOW)
    assert paid.guides.limit is None
    assert paid.guides.remaining is None


def test_exceeded_messages_name_the_limit():
    policy = QuotaPolicy(guides_per_month=3, questions_per_day=5)
    assert "(3/3)" in policy.exceeded_message(UsageAction.guide)
    assert "(5/5)" in policy.exceeded_message(UsageAction.question)
