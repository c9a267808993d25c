"""Request classification: pick a model tier and token budget for a user message.

Two independent rule tables live here:

- ``GUIDE_RULE_TABLE`` drives guide generation and the general router.
- ``CHAT_RULE_TABLE`` drives maintenance chat, which has evolved separately and
  escalates on a different keyword set.

Rules are evaluated in table order and the first match wins. Matching is a plain
substring test against the lower-cased message, so a keyword also fires inside a
longer word ("tunable" contains "unable"). Classification is a pure function of
the request: no clock, no randomness, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from sqyros.models.routing_models import (
    ModelTier,
    RoutingDecision,
    RoutingRequest,
    TaskType,
)

log = structlog.get_logger(__name__)


FORCED_MAX_OUTPUT_TOKENS = 4000


@dataclass(frozen=True)
class KeywordRule:
    """One row of a rule table: keywords that, when present, select a decision."""

    task_type: TaskType
    model_tier: ModelTier
    max_output_tokens: int
    reasoning: str
    keywords: tuple[str, ...] = ()

    def matches(self, lowered_text: str) -> bool:
        return any(kw in lowered_text for kw in self.keywords)

    def decision(self) -> RoutingDecision:
        return RoutingDecision(
            task_type=self.task_type,
            model_tier=self.model_tier,
            max_output_tokens=self.max_output_tokens,
            reasoning=self.reasoning,
        )


@dataclass(frozen=True)
class RuleTable:
    """Ordered keyword rules plus the decision used when nothing matches."""

    name: str
    rules: tuple[KeywordRule, ...]
    default: KeywordRule
    # Short-circuit for requests whose device context already implies a full guide.
    full_selection: KeywordRule | None = None
    honor_forced_model: bool = True

    def find(self, lowered_text: str) -> KeywordRule | None:
        for rule in self.rules:
            if rule.matches(lowered_text):
                return rule
        return None


# =============================================================================
# Keyword taxonomies
# =============================================================================

COMPATIBILITY_KEYWORDS = (
    "compatible", "work with", "support", "can i use", "will it work",
    "supported", "requirements",
)

COMPLEXITY_KEYWORDS = (
    "custom", "unusual", "special", "advanced", "complex", "multiple",
    "chain", "daisy", "redundant", "failover", "multi-zone", "enterprise",
)

INTEGRATION_KEYWORDS = (
    "connect", "integrate", "setup", "configure", "route", "dante",
    "aes67", "integration", "step by step", "installation",
)

TROUBLESHOOTING_KEYWORDS = (
    "not working", "error", "problem", "issue", "fix", "troubleshoot",
    "help", "broken", "failed", "won't", "can't", "unable", "noise",
    "static", "dropout", "latency",
)

CHAT_ESCALATION_KEYWORDS = COMPLEXITY_KEYWORDS + (
    "integrate", "connect", "setup", "configure", "compatible",
)


# =============================================================================
# Rule tables
# =============================================================================

GUIDE_RULE_TABLE = RuleTable(
    name="guide",
    full_selection=KeywordRule(
        task_type=TaskType.integration_guide,
        model_tier=ModelTier.ADVANCED,
        max_output_tokens=4000,
        reasoning="multi-device integration requires advanced reasoning",
    ),
    rules=(
        KeywordRule(
            task_type=TaskType.compatibility_check,
            model_tier=ModelTier.ADVANCED,
            max_output_tokens=2000,
            reasoning="compatibility analysis requires deep technical knowledge",
            keywords=COMPATIBILITY_KEYWORDS,
        ),
        # Any escalation term bumps the request, whatever else it looks like.
        KeywordRule(
            task_type=TaskType.complex_request,
            model_tier=ModelTier.ADVANCED,
            max_output_tokens=3000,
            reasoning="complex or unusual request benefits from advanced reasoning",
            keywords=COMPLEXITY_KEYWORDS,
        ),
        KeywordRule(
            task_type=TaskType.integration_setup,
            model_tier=ModelTier.ADVANCED,
            max_output_tokens=3000,
            reasoning="integration setup benefits from detailed reasoning",
            keywords=INTEGRATION_KEYWORDS,
        ),
        KeywordRule(
            task_type=TaskType.troubleshooting,
            model_tier=ModelTier.FAST,
            max_output_tokens=1500,
            reasoning="troubleshooting - pattern matching for common issues",
            keywords=TROUBLESHOOTING_KEYWORDS,
        ),
    ),
    default=KeywordRule(
        task_type=TaskType.simple_qa,
        model_tier=ModelTier.FAST,
        max_output_tokens=1000,
        reasoning="simple question - fast response preferred",
    ),
)

CHAT_RULE_TABLE = RuleTable(
    name="chat",
    honor_forced_model=False,
    rules=(
        KeywordRule(
            task_type=TaskType.complex_query,
            model_tier=ModelTier.ADVANCED,
            max_output_tokens=2000,
            reasoning="complex query routed to advanced model",
            keywords=CHAT_ESCALATION_KEYWORDS,
        ),
    ),
    default=KeywordRule(
        task_type=TaskType.simple_qa,
        model_tier=ModelTier.FAST,
        max_output_tokens=1000,
        reasoning="simple query - fast response",
    ),
)


# =============================================================================
# Classifier
# =============================================================================

class RequestClassifier:
    """Maps a RoutingRequest to a RoutingDecision using one rule table."""

    def __init__(self, table: RuleTable = GUIDE_RULE_TABLE) -> None:
        self._table = table

    @property
    def table(self) -> RuleTable:
        return self._table

    def classify(self, request: RoutingRequest) -> RoutingDecision:
        decision = self._decide(request)
        log.debug(
            "request_classified",
            table=self._table.name,
            task_type=decision.task_type.value,
            model_tier=decision.model_tier.value,
            max_output_tokens=decision.max_output_tokens,
        )
        return decision

    def _decide(self, request: RoutingRequest) -> RoutingDecision:
        table = self._table

        if table.honor_forced_model and request.forced_model is not None:
            return RoutingDecision(
                task_type=TaskType.forced,
                model_tier=request.forced_model,
                max_output_tokens=FORCED_MAX_OUTPUT_TOKENS,
                reasoning="caller override",
            )

        if table.full_selection is not None and request.context is not None:
            if request.context.has_full_selection:
                return table.full_selection.decision()

        rule = table.find(request.text.lower())
        if rule is not None:
            return rule.decision()
        return table.default.decision()


guide_classifier = RequestClassifier(GUIDE_RULE_TABLE)
chat_classifier = RequestClassifier(CHAT_RULE_TABLE)


def classify(request: RoutingRequest) -> RoutingDecision:
    """Classify with the guide/router table (the full rule set)."""
    return guide_classifier.classify(request)


def classify_chat(request: RoutingRequest) -> RoutingDecision:
    """Classify with the reduced chat table."""
    return chat_classifier.classify(request)
