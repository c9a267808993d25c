"""Pydantic models for usage accounting and quota checks."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sqyros.core.pricing import estimate_cost_cents
from sqyros.models.routing_models import ModelTier


class SubscriptionTier(str, Enum):
    free = "free"
    pro = "pro"


class UsageAction(str, Enum):
    guide = "guide"
    question = "question"
    routed = "routed"


class UsageRecord(BaseModel):
    """Token usage and cost of one completed LLM call."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    model_tier: ModelTier = Field(..., alias="modelTier")
    input_tokens: int = Field(..., ge=0, alias="inputTokens")
    output_tokens: int = Field(..., ge=0, alias="outputTokens")
    cost_cents: int = Field(..., ge=0, alias="costCents")

    @classmethod
    def from_tokens(cls, tier: ModelTier, input_tokens: int, output_tokens: int) -> "UsageRecord":
        return cls(
            model_tier=tier,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_cents=estimate_cost_cents(tier, input_tokens, output_tokens),
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def as_wire(self) -> dict[str, int]:
        """Usage block in the shape HTTP responses carry."""
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_cents": self.cost_cents,
        }


class UsageLogEntry(BaseModel):
    """One immutable per-call row in the usage log."""

    user_id: str = Field(..., min_length=1)
    action_type: UsageAction
    model_tier: ModelTier
    model_used: str | None = None
    input_tokens: int = Field(..., ge=0)
    output_tokens: int = Field(..., ge=0)
    cost_cents: int = Field(..., ge=0)
    year_month: str
    day: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class MonthlyUsage(BaseModel):
    """Per-user-per-month running totals."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str
    year_month: str = Field(..., alias="yearMonth")
    guides_generated: int = Field(default=0, ge=0, alias="guidesGenerated")
    questions_asked: int = Field(default=0, ge=0, alias="questionsAsked")
    total_tokens: int = Field(default=0, ge=0, alias="totalTokens")
    total_cost_cents: int = Field(default=0, ge=0, alias="totalCostCents")


class QuotaCheck(BaseModel):
    allowed: bool
    used: int = Field(..., ge=0)
    limit: int | None = None
    period_key: str


class ActionAllowance(BaseModel):
    used: int = Field(..., ge=0)
    limit: int | None = None
    remaining: int | None = None


class UsageSummary(BaseModel):
    """Current-period usage for one user, as shown on the dashboard."""

    model_config = ConfigDict(populate_by_name=True)

    tier: str
    monthly: MonthlyUsage
    guides: ActionAllowance
    questions: ActionAllowance
