"""Pydantic inputs for the guide, chat and router agents."""

from __future__ import annotations

from pydantic import BaseModel, Field

from sqyros.models.routing_models import ConversationTurn, ModelTier, RoutingContext


class GuideInput(BaseModel):
    system: str = Field(..., min_length=1, description="Core AV system")
    device: str = Field(..., min_length=1, description="Peripheral device")
    connection: str = Field(..., min_length=1, description="Connection type")
    category: str | None = None


class ChatInput(BaseModel):
    message: str = Field(..., min_length=1)
    conversation_history: list[ConversationTurn] = Field(default_factory=list)


class RouterInput(BaseModel):
    user_message: str = Field(..., min_length=1)
    context: RoutingContext | None = None
    system_prompt: str | None = None
    force_model: ModelTier | None = None
