"""MongoDB repository for user profiles and usage accounting."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pymongo import ASCENDING, AsyncMongoClient

from sqyros.models.usage_models import UsageLogEntry


class Mongo:
    """Async MongoDB repository backing the usage ledger."""

    def __init__(self, mongo_url: str, database: str = "sqyros") -> None:
        self.client = AsyncMongoClient(mongo_url)
        self.db = self.client[database]
        self.user_profiles = self.db.user_profiles
        self.usage_logs = self.db.usage_logs
        self.monthly_usage = self.db.monthly_usage

    async def ping(self) -> None:
        await self.client.admin.command("ping")

    async def close(self) -> None:
        # PyMongo async close is awaitable.
        await self.client.close()

    async def ensure_indexes(self) -> None:
        """One aggregate row per (user, month); daily question counts scan by user/action/day."""
        await self.monthly_usage.create_index(
            [("user_id", ASCENDING), ("year_month", ASCENDING)],
            unique=True,
        )
        await self.usage_logs.create_index(
            [("user_id", ASCENDING), ("action_type", ASCENDING), ("day", ASCENDING)],
        )

    async def get_user_tier(self, user_id: str) -> str | None:
        doc = await self.user_profiles.find_one({"id": user_id}, projection={"_id": 0, "tier": 1})
        if not doc:
            return None
        return doc.get("tier")

    async def get_monthly_usage(self, user_id: str, year_month: str) -> dict[str, Any] | None:
        return await self.monthly_usage.find_one(
            {"user_id": user_id, "year_month": year_month},
            projection={"_id": 0},
        )

    async def count_usage_logs(self, user_id: str, action: str, day: str) -> int:
        return await self.usage_logs.count_documents(
            {"user_id": user_id, "action_type": action, "day": day}
        )

    async def insert_usage_log(self, entry: UsageLogEntry) -> None:
        now = datetime.now(timezone.utc)
        doc = entry.model_dump(mode="json")
        # Keep a native datetime for range queries.
        doc["created_at"] = entry.created_at or now
        await self.usage_logs.insert_one(doc)

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
        """Fold one call into the monthly aggregate with a single atomic upsert."""
        now = datetime.now(timezone.utc)
        await self.monthly_usage.update_one(
            {"user_id": user_id, "year_month": year_month},
            {
                "$inc": {
                    "guides_generated": guides,
                    "questions_asked": questions,
                    "total_tokens": tokens,
                    "total_cost_cents": cost_cents,
                },
                "$set": {"updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )
