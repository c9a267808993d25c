"""RouterAgent: general-purpose completion with classifier-chosen model tier."""

from __future__ import annotations

from sqyros.agents.base import AgentResult, BaseAgent
from sqyros.agents.classifier import RequestClassifier, guide_classifier
from sqyros.core.llm import LLMGateway
from sqyros.models.routing_models import ConversationTurn, RoutingRequest
from sqyros.models.task_input import RouterInput
from sqyros.models.usage_models import UsageRecord


class RouterAgent(BaseAgent):
    """Runs the full rule table (or the caller's forced tier) with a caller-supplied system prompt."""

    def __init__(self, llm: LLMGateway, *, classifier: RequestClassifier | None = None) -> None:
        self._llm = llm
        self._classifier = classifier or guide_classifier

    async def process(self, input_data: RouterInput) -> AgentResult:
        decision = self._classifier.classify(
            RoutingRequest(
                text=input_data.user_message,
                context=input_data.context,
                forced_model=input_data.force_model,
            )
        )

        turns: list[ConversationTurn] = []
        if input_data.context is not None:
            turns.extend(input_data.context.conversation_history)
        turns.append(ConversationTurn(role="user", content=input_data.user_message))

        completion = await self._llm.complete(
            decision.model_tier,
            decision.max_output_tokens,
            input_data.system_prompt,
            turns,
        )
        usage = UsageRecord.from_tokens(completion.model_tier, completion.input_tokens, completion.output_tokens)
        return AgentResult(decision=decision, completion=completion, usage=usage)
