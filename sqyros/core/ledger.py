"""Subscription quotas and usage bookkeeping.

The ledger sits between the HTTP handlers and the usage store:

- `check_and_reserve` runs before any paid LLM call and answers whether the
  caller still has allowance for the current period.
- `record_usage` runs after a call has completed and books its tokens and cost.
  It is best-effort: a store failure is logged and swallowed so a response the
  user already has is never lost to an accounting problem.

The check and the later booking are separate round-trips, so two concurrent
requests from the same free-tier user can both pass the check. The quota is a
soft cost-control cap; the monthly fold itself is an atomic increment.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import structlog
from pymongo.errors import PyMongoError

from sqyros.core.errors import LedgerWriteError
from sqyros.models.usage_models import (
    ActionAllowance,
    MonthlyUsage,
    QuotaCheck,
    SubscriptionTier,
    UsageAction,
    UsageLogEntry,
    UsageRecord,
    UsageSummary,
)

log = structlog.get_logger(__name__)

_STORE_ERRORS = (PyMongoError, ConnectionError, TimeoutError, OSError, RuntimeError, ValueError, TypeError)


@runtime_checkable
class UsageStore(Protocol):
    """Persistence operations the ledger needs (implemented by `sqyros.db.mongo.Mongo`)."""

    async def get_user_tier(self, user_id: str) -> str | None:
        raise NotImplementedError

    async def get_monthly_usage(self, user_id: str, year_month: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def count_usage_logs(self, user_id: str, action: str, day: str) -> int:
        raise NotImplementedError

    async def insert_usage_log(self, entry: UsageLogEntry) -> None:
        raise NotImplementedError

    async def increment_monthly_usage(
        self,
        user_id: str,
        year_month: str,
        *,
        guides: int,
        questions: int,
        tokens: int,
        cost_cents: int,
    ) -> None:
        raise NotImplementedError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_key(now: datetime) -> str:
    return now.strftime("%Y-%m")


def day_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def period_key(action: UsageAction, now: datetime) -> str:
    """Quota period an action is counted in: daily for questions, monthly otherwise."""
    if action == UsageAction.question:
        return day_key(now)
    return month_key(now)


def normalize_tier(raw: str | None) -> str:
    """Missing profiles and blank tiers count as free."""
    tier = (raw or "").strip().lower()
    return tier or SubscriptionTier.free.value


@dataclass(frozen=True)
class QuotaPolicy:
    """Free-tier allowances. Every other tier is uncapped."""

    guides_per_month: int = 3
    questions_per_day: int = 5

    def limit_for(self, tier: str, action: UsageAction) -> int | None:
        if normalize_tier(tier) != SubscriptionTier.free.value:
            return None
        if action == UsageAction.guide:
            return self.guides_per_month
        if action == UsageAction.question:
            return self.questions_per_day
        return None

    def exceeded_message(self, action: UsageAction) -> str:
        if action == UsageAction.guide:
            n = self.guides_per_month
            return f"Monthly guide limit reached ({n}/{n}). Upgrade to Pro for unlimited guides."
        n = self.questions_per_day
        return f"Daily question limit reached ({n}/{n}). Upgrade to Pro for unlimited questions."


class UsageLedger:
    """Quota gate and usage recorder over a `UsageStore`."""

    def __init__(self, store: UsageStore, policy: QuotaPolicy | None = None) -> None:
        self._store = store
        self._policy = policy or QuotaPolicy()

    @property
    def policy(self) -> QuotaPolicy:
        return self._policy

    async def resolve_tier(self, user_id: str) -> str:
        return normalize_tier(await self._store.get_user_tier(user_id))

    async def check_and_reserve(
        self,
        user_id: str,
        tier: str,
        action: UsageAction,
        *,
        now: datetime | None = None,
    ) -> QuotaCheck:
        """Compare the caller's current-period counter against the tier limit.

        Must be awaited before the LLM call. Store errors propagate: with no
        counter to compare against, nothing should be spent.
        """
        now = now or utcnow()
        key = period_key(action, now)
        limit = self._policy.limit_for(tier, action)
        if limit is None:
            return QuotaCheck(allowed=True, used=0, limit=None, period_key=key)

        used = await self._current_count(user_id, action, key)
        allowed = used < limit
        if not allowed:
            log.info("quota_exceeded", user_id=user_id, action=action.value, used=used, limit=limit, period=key)
        return QuotaCheck(allowed=allowed, used=used, limit=limit, period_key=key)

    async def _current_count(self, user_id: str, action: UsageAction, key: str) -> int:
        if action == UsageAction.question:
            return int(await self._store.count_usage_logs(user_id, action.value, key) or 0)
        doc = await self._store.get_monthly_usage(user_id, key) or {}
        if action == UsageAction.guide:
            return int(doc.get("guides_generated") or 0)
        return 0

    async def record_usage(
        self,
        user_id: str,
        action: UsageAction,
        record: UsageRecord,
        *,
        model: str | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Append a log entry and fold the record into the monthly aggregate.

        Returns False if either write failed. Never raises.
        """
        now = now or utcnow()
        ok = True
        try:
            await self._append_log(user_id, action, record, model, metadata, now)
        except LedgerWriteError as e:
            ok = False
            log.error("usage_record_failed", user_id=user_id, step="log", error=str(e), exc_info=True)
        try:
            await self._fold_monthly(user_id, action, record, now)
        except LedgerWriteError as e:
            ok = False
            log.error("usage_record_failed", user_id=user_id, step="monthly", error=str(e), exc_info=True)

        if ok:
            log.info(
                "usage_recorded",
                user_id=user_id,
                action=action.value,
                model_tier=record.model_tier.value,
                total_tokens=record.total_tokens,
                cost_cents=record.cost_cents,
            )
        return ok

    async def _append_log(
        self,
        user_id: str,
        action: UsageAction,
        record: UsageRecord,
        model: str | None,
        metadata: dict[str, Any] | None,
        now: datetime,
    ) -> None:
        try:
            entry = UsageLogEntry(
                user_id=user_id,
                action_type=action,
                model_tier=record.model_tier,
                model_used=model,
                input_tokens=record.input_tokens,
                output_tokens=record.output_tokens,
                cost_cents=record.cost_cents,
                year_month=month_key(now),
                day=day_key(now),
                metadata=metadata or {},
                created_at=now,
            )
            await self._store.insert_usage_log(entry)
        except _STORE_ERRORS as e:
            raise LedgerWriteError(f"usage log append failed: {e}") from e

    async def _fold_monthly(self, user_id: str, action: UsageAction, record: UsageRecord, now: datetime) -> None:
        try:
            await self._store.increment_monthly_usage(
                user_id,
                month_key(now),
                guides=1 if action == UsageAction.guide else 0,
                questions=1 if action == UsageAction.question else 0,
                tokens=record.total_tokens,
                cost_cents=record.cost_cents,
            )
        except _STORE_ERRORS as e:
            raise LedgerWriteError(f"monthly usage update failed: {e}") from e

    async def summary(self, user_id: str, tier: str, *, now: datetime | None = None) -> UsageSummary:
        now = now or utcnow()
        ym = month_key(now)
        doc = await self._store.get_monthly_usage(user_id, ym) or {}
        monthly = MonthlyUsage(
            user_id=user_id,
            year_month=ym,
            guides_generated=int(doc.get("guides_generated") or 0),
            questions_asked=int(doc.get("questions_asked") or 0),
            total_tokens=int(doc.get("total_tokens") or 0),
            total_cost_cents=int(doc.get("total_cost_cents") or 0),
        )
        questions_today = int(
            await self._store.count_usage_logs(user_id, UsageAction.question.value, day_key(now)) or 0
        )
        return UsageSummary(
            tier=normalize_tier(tier),
            monthly=monthly,
            guides=self._allowance(tier, UsageAction.guide, monthly.guides_generated),
            questions=self._allowance(tier, UsageAction.question, questions_today),
        )

    def _allowance(self, tier: str, action: UsageAction, used: int) -> ActionAllowance:
        limit = self._policy.limit_for(tier, action)
        remaining = None if limit is None else max(0, limit - used)
        return ActionAllowance(used=used, limit=limit, remaining=remaining)
