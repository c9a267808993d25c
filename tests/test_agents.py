"""Tests for the guide, chat and router agents with a fake LLM gateway."""
from __future__ import annotations

import json

import pytest

from sqyros.agents.chat_agent import HISTORY_WINDOW, MAINTENANCE_QA_PROMPT, ChatAgent
from sqyros.agents.guide_agent import INTEGRATION_GUIDE_PROMPT, GuideAgent
from sqyros.agents.router_agent import RouterAgent
from sqyros.core.llm import LLMCompletion
from sqyros.models.guide_models import parse_guide
from sqyros.models.routing_models import ConversationTurn, ModelTier, RoutingContext, TaskType
from sqyros.models.task_input import ChatInput, GuideInput, RouterInput

GUIDE_JSON = {
    "title": "MXA920 → Q-SYS Core 110f",
    "subtitle": "via Dante",
    "complexity": "medium",
    "estimatedTime": "30-45 minutes",
    "prerequisites": ["Shure Designer 6", "Q-SYS Designer 9.x"],
    "steps": [
        {
            "stepNumber": 1,
            "title": "Assign IP addresses",
            "content": "Put both devices on the Dante VLAN.",
            "tips": ["Use static IPs"],
            "warnings": [],
            "code": None,
        }
    ],
    "verification": ["Meters move in Q-SYS"],
    "troubleshooting": [{"issue": "No audio", "solution": "Check Dante subscriptions"}],
}


class FakeGateway:
    def __init__(self, content: str = "ok", input_tokens: int = 100, output_tokens: int = 200):
        self.content = content
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls: list[dict] = []

    async def complete(self, tier, max_output_tokens, system_prompt, turns):
        self.calls.append(
            {"tier": tier, "max_output_tokens": max_output_tokens, "system_prompt": system_prompt, "turns": list(turns)}
        )
        return LLMCompletion(
            content=self.content,
            model=f"{tier.value.lower()}-model",
            model_tier=tier,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )


# =============================================================================
# Guide parsing
# =============================================================================

def test_parse_guide_accepts_plain_json():
    guide = parse_guide(json.dumps(GUIDE_JSON), system="Q-SYS", device="MXA920", connection="Dante")
    assert guide.degraded is False
    assert guide.steps[0].step_number == 1
    assert guide.to_wire()["estimatedTime"] == "30-45 minutes"
    assert guide.to_wire()["steps"][0]["stepNumber"] == 1


def test_parse_guide_extracts_json_wrapped_in_prose_and_fences():
    raw = "Here is your guide:\n```json\n" + json.dumps(GUIDE_JSON) + "\n```\nEnjoy!"
    guide = parse_guide(raw, system="Q-SYS", device="MXA920", connection="Dante")
    assert guide.degraded is False
    assert guide.title == "MXA920 → Q-SYS Core 110f"


def test_parse_guide_ignores_braced_prose_after_the_json():
    raw = (
        "```json\n"
        '{"title": "MXA920 -> Q-SYS", "steps": []}\n'
        "```\n"
        "Replace {DEVICE_IP} with the address from Designer."
    )
    guide = parse_guide(raw, system="Q-SYS", device="MXA920", connection="Dante")
    assert guide.degraded is False
    assert guide.title == "MXA920 -> Q-SYS"


def test_parse_guide_skips_braced_prose_before_the_json():
    raw = "Use {placeholders} as shown.\n" + json.dumps(GUIDE_JSON)
    guide = parse_guide(raw, system="Q-SYS", device="MXA920", connection="Dante")
    assert guide.degraded is False
    assert guide.steps[0].title == "Assign IP addresses"


@pytest.mark.parametrize("raw", ["Sorry, I can't help with that.", '{"title": "x", "steps": "not a list"}', "{broken json", ""])
def test_parse_guide_degrades_instead_of_failing(raw):
    guide = parse_guide(raw, system="Q-SYS", device="MXA920", connection="Dante")
    assert guide.degraded is True
    assert guide.title == "MXA920 → Q-SYS"
    assert guide.subtitle == "via Dante"
    assert guide.content == raw
    assert guide.to_wire()["degraded"] is True


# =============================================================================
# Agents
# =============================================================================

@pytest.mark.asyncio
async def test_guide_agent_always_routes_to_advanced_with_full_budget():
    llm = FakeGateway(content=json.dumps(GUIDE_JSON), input_tokens=1000, output_tokens=3000)
    result = await GuideAgent(llm).process(GuideInput(system="Q-SYS Core 110f", device="MXA920", connection="Dante"))

    assert result.decision.task_type == TaskType.integration_guide
    assert result.decision.model_tier == ModelTier.ADVANCED
    call = llm.calls[0]
    assert call["tier"] == ModelTier.ADVANCED
    assert call["max_output_tokens"] == 4000
    assert call["system_prompt"] == INTEGRATION_GUIDE_PROMPT
    assert "Device Category: General" in call["turns"][0].content
    assert result.guide is not None and result.guide.degraded is False
    # 1000 * 1.5 / 1000 + 3000 * 7.5 / 1000 = 24 cents
    assert result.usage.cost_cents == 24
    assert result.usage.model_tier == ModelTier.ADVANCED


@pytest.mark.asyncio
async def test_chat_agent_trims_history_and_uses_chat_table():
    llm = FakeGateway(content="Hold reset for 10s.")
    history = [ConversationTurn(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}") for i in range(14)]

    result = await ChatAgent(llm).process(ChatInput(message="how to reset the MXA920", conversation_history=history))

    assert result.decision.task_type == TaskType.simple_qa
    call = llm.calls[0]
    assert call["tier"] == ModelTier.FAST
    assert call["max_output_tokens"] == 1000
    assert call["system_prompt"] == MAINTENANCE_QA_PROMPT
    assert len(call["turns"]) == HISTORY_WINDOW + 1
    assert call["turns"][0].content == "turn 4"
    assert call["turns"][-1].content == "how to reset the MXA920"
    assert result.content == "Hold reset for 10s."


@pytest.mark.asyncio
async def test_chat_agent_escalates_on_chat_keywords():
    llm = FakeGateway()
    result = await ChatAgent(llm).process(ChatInput(message="how do I configure AEC on a Tesira"))
    assert result.decision.task_type == TaskType.complex_query
    assert llm.calls[0]["tier"] == ModelTier.ADVANCED
    assert llm.calls[0]["max_output_tokens"] == 2000


@pytest.mark.asyncio
async def test_router_agent_honors_forced_model_and_passes_history():
    llm = FakeGateway()
    context = RoutingContext(conversation_history=[ConversationTurn(role="user", content="earlier")])

    result = await RouterAgent(llm).process(
        RouterInput(user_message="reset password", context=context, system_prompt="be brief", force_model=ModelTier.ADVANCED)
    )

    assert result.decision.task_type == TaskType.forced
    call = llm.calls[0]
    assert call["tier"] == ModelTier.ADVANCED
    assert call["max_output_tokens"] == 4000
    assert call["system_prompt"] == "be brief"
    assert [t.content for t in call["turns"]] == ["earlier", "reset password"]


@pytest.mark.asyncio
async def test_router_agent_classifies_without_override():
    llm = FakeGateway()
    result = await RouterAgent(llm).process(RouterInput(user_message="audio dropout on the stage box"))
    assert result.decision.task_type == TaskType.troubleshooting
    assert llm.calls[0]["tier"] == ModelTier.FAST
    assert llm.calls[0]["max_output_tokens"] == 1500
