"""Base interface for LLM-backed agents."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sqyros.core.llm import LLMCompletion
from sqyros.models.guide_models import Guide
from sqyros.models.routing_models import RoutingDecision
from sqyros.models.usage_models import UsageRecord


@dataclass(frozen=True)
class AgentResult:
    """What one agent call produced, plus what it cost."""

    decision: RoutingDecision
    completion: LLMCompletion
    usage: UsageRecord
    guide: Guide | None = None

    @property
    def content(self) -> str:
        return self.completion.content


class BaseAgent(ABC):
    """Base interface for all agents."""

    @abstractmethod
    async def process(self, input_data: Any) -> AgentResult:
        """Classify, call the model once and return the result with its usage."""
