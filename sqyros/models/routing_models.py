"""Pydantic models for routing requests and decisions."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ModelTier(str, Enum):
    """The two LLM tiers a request can be routed to."""

    FAST = "FAST"
    ADVANCED = "ADVANCED"

    @classmethod
    def parse(cls, value: str) -> "ModelTier":
        """Strict, case-insensitive parse. Raises ValueError for unknown tiers."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown model tier: {value!r}")
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown model tier: {value!r}") from None

    @classmethod
    def coerce(cls, value: Any) -> "ModelTier":
        """Lenient parse for identifiers read back from storage (legacy/unknown → default)."""
        try:
            return cls.parse(value)
        except ValueError:
            return DEFAULT_MODEL_TIER


DEFAULT_MODEL_TIER = ModelTier.FAST


class TaskType(str, Enum):
    simple_qa = "simple_qa"
    troubleshooting = "troubleshooting"
    integration_guide = "integration_guide"
    integration_setup = "integration_setup"
    compatibility_check = "compatibility_check"
    complex_request = "complex_request"
    complex_query = "complex_query"
    forced = "forced"


class ConversationTurn(BaseModel):
    role: str = Field(..., min_length=1)
    content: str


class RoutingContext(BaseModel):
    """Optional structured hints supplied alongside the user's message."""

    model_config = ConfigDict(populate_by_name=True)

    selected_system: str | None = Field(default=None, alias="selectedSystem")
    selected_device: str | None = Field(default=None, alias="selectedDevice")
    selected_connection: str | None = Field(default=None, alias="selectedConnection")
    # Passed through to the LLM as prior turns; classifiers never look at it.
    conversation_history: list[ConversationTurn] = Field(default_factory=list, alias="conversationHistory")

    @property
    def has_full_selection(self) -> bool:
        return bool(self.selected_system and self.selected_device and self.selected_connection)


class RoutingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., min_length=1)
    context: RoutingContext | None = None
    forced_model: ModelTier | None = Field(default=None, alias="forcedModel")


class RoutingDecision(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    task_type: TaskType = Field(..., alias="taskType")
    model_tier: ModelTier = Field(..., alias="modelTier")
    max_output_tokens: int = Field(..., gt=0, alias="maxOutputTokens")
    reasoning: str = ""
