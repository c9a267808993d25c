"""GuideAgent: step-by-step AV integration guides as structured JSON."""

from __future__ import annotations

from sqyros.agents.base import AgentResult, BaseAgent
from sqyros.agents.classifier import RequestClassifier, guide_classifier
from sqyros.core.llm import LLMGateway
from sqyros.models.guide_models import parse_guide
from sqyros.models.routing_models import ConversationTurn, RoutingContext, RoutingRequest
from sqyros.models.task_input import GuideInput
from sqyros.models.usage_models import UsageRecord


INTEGRATION_GUIDE_PROMPT = """You are Sqyros, an expert AV integration assistant created by avnova.ai.
Your task is to generate detailed, accurate setup guides for connecting AV devices.

When generating integration guides, always include:
1. Prerequisites - Required software, network requirements, cables
2. Network Configuration - IP settings, VLANs, subnets
3. Device Configuration - Step-by-step for each device
4. Signal Routing - How to connect audio/video/control signals
5. Verification Steps - How to confirm successful integration
6. Troubleshooting - Common issues and solutions

Format your response as structured JSON with this exact schema:
{
  "title": "Device A → System B",
  "subtitle": "via Connection Type",
  "complexity": "simple|medium|complex",
  "estimatedTime": "15-30 minutes",
  "prerequisites": ["item1", "item2"],
  "steps": [
    {
      "stepNumber": 1,
      "title": "Step Title",
      "content": "Detailed instructions...",
      "tips": ["optional tips"],
      "warnings": ["optional warnings"],
      "code": "optional command or config snippet"
    }
  ],
  "verification": ["check1", "check2"],
  "troubleshooting": [
    {"issue": "Problem description", "solution": "How to fix"}
  ]
}

Use your deep knowledge of:
- Dante/AES67 audio networking
- QSC Q-SYS, Crestron, Biamp Tesira, Extron ecosystems
- Control protocols (RS-232, IP, IR)
- Video distribution (HDMI, HDBaseT, AV-over-IP)
- UC platforms (Zoom, Teams, Webex)

Be precise with model numbers, software versions, and technical specifications.
Only output valid JSON - no markdown code blocks or extra text."""


def build_guide_prompt(input_data: GuideInput) -> str:
    return (
        "Generate a detailed integration setup guide for:\n"
        f"Core AV System: {input_data.system}\n"
        f"Peripheral Device: {input_data.device}\n"
        f"Device Category: {input_data.category or 'General'}\n"
        f"Connection Type: {input_data.connection}\n\n"
        "Provide complete step-by-step instructions in JSON format."
    )


class GuideAgent(BaseAgent):
    """Generates one integration guide.

    The request always carries a full device selection, so the classifier routes
    it to the advanced tier with the largest output budget.
    """

    def __init__(self, llm: LLMGateway, *, classifier: RequestClassifier | None = None) -> None:
        self._llm = llm
        self._classifier = classifier or guide_classifier

    async def process(self, input_data: GuideInput) -> AgentResult:
        prompt = build_guide_prompt(input_data)
        decision = self._classifier.classify(
            RoutingRequest(
                text=prompt,
                context=RoutingContext(
                    selected_system=input_data.system,
                    selected_device=input_data.device,
                    selected_connection=input_data.connection,
                ),
            )
        )

        completion = await self._llm.complete(
            decision.model_tier,
            decision.max_output_tokens,
            INTEGRATION_GUIDE_PROMPT,
            [ConversationTurn(role="user", content=prompt)],
        )
        guide = parse_guide(
            completion.content,
            system=input_data.system,
            device=input_data.device,
            connection=input_data.connection,
        )

        usage = UsageRecord.from_tokens(completion.model_tier, completion.input_tokens, completion.output_tokens)
        return AgentResult(decision=decision, completion=completion, usage=usage, guide=guide)
