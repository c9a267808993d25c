"""ChatAgent: short maintenance Q&A for AV equipment."""

from __future__ import annotations

from sqyros.agents.base import AgentResult, BaseAgent
from sqyros.agents.classifier import RequestClassifier, chat_classifier
from sqyros.core.llm import LLMGateway
from sqyros.models.routing_models import ConversationTurn, RoutingRequest
from sqyros.models.task_input import ChatInput
from sqyros.models.usage_models import UsageRecord


MAINTENANCE_QA_PROMPT = """You are Sqyros, an expert AV maintenance assistant created by avnova.ai.

Provide quick, accurate answers to AV maintenance questions. Focus on:
- Firmware update procedures
- Factory reset methods
- Network/IP configuration
- LED status indicators
- Common error messages
- Control protocol commands (RS-232, Telnet)
- Password recovery
- Basic troubleshooting

Keep responses concise but complete. Use bullet points for multi-step procedures.
Include specific button combinations, menu paths, and commands where applicable.
Always mention which software tools are needed (e.g., Shure Designer, Q-SYS Configurator).

If you're unsure about a specific model's procedure, say so and provide general guidance.

For equipment you know well, include:
- Default IP addresses and login credentials
- Recommended firmware versions
- Known issues and workarounds
- Best practices for configuration"""

# Prior turns forwarded to the model.
HISTORY_WINDOW = 10


class ChatAgent(BaseAgent):
    def __init__(self, llm: LLMGateway, *, classifier: RequestClassifier | None = None) -> None:
        self._llm = llm
        self._classifier = classifier or chat_classifier

    async def process(self, input_data: ChatInput) -> AgentResult:
        decision = self._classifier.classify(RoutingRequest(text=input_data.message))

        turns = list(input_data.conversation_history[-HISTORY_WINDOW:])
        turns.append(ConversationTurn(role="user", content=input_data.message))

        completion = await self._llm.complete(
            decision.model_tier,
            decision.max_output_tokens,
            MAINTENANCE_QA_PROMPT,
            turns,
        )
        usage = UsageRecord.from_tokens(completion.model_tier, completion.input_tokens, completion.output_tokens)
        return AgentResult(decision=decision, completion=completion, usage=usage)
