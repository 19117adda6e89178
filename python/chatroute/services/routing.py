"""Tiered routing: (intent, difficulty, plan) -> RouteDecision.

Plan hierarchy: free < plus < pro.

| plan | easy                 | hard                                  |
|------|----------------------|---------------------------------------|
| free | openai/gpt-3.5-turbo | openai/gpt-3.5-turbo (downgraded)     |
| plus | openai/gpt-3.5-turbo | gemini/gemini-1.5-pro                 |
| pro  | openai/gpt-4         | openai/gpt-4                          |

image and diagram intents need plus or higher; they are served by the
plan's hard-column model. A denied decision never reaches the invoker.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chatroute.logging import get_logger
from chatroute.services.classifier import Classification, Difficulty, Intent, classify
from chatroute.services.llm.types import ModelTarget, Provider

logger = get_logger(__name__)


class Plan(str, Enum):
    FREE = "free"
    PLUS = "plus"
    PRO = "pro"

    @property
    def rank(self) -> int:
        return _PLAN_RANK[self]

    def at_least(self, other: "Plan") -> bool:
        return self.rank >= other.rank


_PLAN_RANK = {Plan.FREE: 0, Plan.PLUS: 1, Plan.PRO: 2}


def normalize_plan(value: str | Plan | None) -> Plan:
    """Map a stored/requested plan string to a Plan; unknown values are free."""
    if isinstance(value, Plan):
        return value
    try:
        return Plan((value or "").strip().lower())
    except ValueError:
        return Plan.FREE


def _t(provider: Provider, model_id: str) -> ModelTarget:
    return ModelTarget(provider=provider, model_id=model_id)


GPT_35 = _t(Provider.OPENAI, "gpt-3.5-turbo")
GPT_4 = _t(Provider.OPENAI, "gpt-4")
GEMINI_FLASH = _t(Provider.GEMINI, "gemini-1.5-flash")
GEMINI_PRO = _t(Provider.GEMINI, "gemini-1.5-pro")
CLAUDE_HAIKU = _t(Provider.ANTHROPIC, "claude-3-haiku")
CLAUDE_SONNET = _t(Provider.ANTHROPIC, "claude-3-sonnet")

EASY_TIER = frozenset({GPT_35.model_id, GEMINI_FLASH.model_id, CLAUDE_HAIKU.model_id})
HARD_TIER = frozenset({GPT_4.model_id, GEMINI_PRO.model_id, CLAUDE_SONNET.model_id})

# (plan, difficulty) -> (primary, fallbacks)
ROUTING_MATRIX: dict[tuple[Plan, Difficulty], tuple[ModelTarget, tuple[ModelTarget, ...]]] = {
    (Plan.FREE, Difficulty.EASY): (GPT_35, (GEMINI_FLASH, CLAUDE_HAIKU)),
    (Plan.FREE, Difficulty.HARD): (GPT_35, (GEMINI_FLASH, CLAUDE_HAIKU)),
    (Plan.PLUS, Difficulty.EASY): (GPT_35, (GEMINI_FLASH, CLAUDE_HAIKU)),
    (Plan.PLUS, Difficulty.HARD): (GEMINI_PRO, (CLAUDE_SONNET, GPT_35)),
    (Plan.PRO, Difficulty.EASY): (GPT_4, (CLAUDE_SONNET, GEMINI_PRO)),
    (Plan.PRO, Difficulty.HARD): (GPT_4, (CLAUDE_SONNET, GEMINI_PRO)),
}

RESTRICTED_INTENTS: dict[Intent, Plan] = {
    Intent.IMAGE: Plan.PLUS,
    Intent.DIAGRAM: Plan.PLUS,
}


@dataclass(frozen=True)
class RouteDecision:
    """Router output.

    Invariants:
    - allowed=False => the invoker is never called
    - downgraded=True => difficulty was hard but primary_model is easy tier
    """

    intent: Intent
    difficulty: Difficulty
    primary_model: ModelTarget
    fallback_models: tuple[ModelTarget, ...]
    allowed: bool
    downgraded: bool
    confidence: float
    plan: Plan
    content_type: str = "text"
    required_plan: Plan | None = None
    matched: tuple[str, ...] = field(default_factory=tuple)

    @property
    def targets(self) -> list[ModelTarget]:
        return [self.primary_model, *self.fallback_models]

    def to_dict(self) -> dict[str, Any]:
        """The `routing` payload returned to clients."""
        return {
            "type": self.intent.value,
            "difficulty": self.difficulty.value,
            "primaryModel": self.primary_model.model_id,
            "fallbackModels": [m.model_id for m in self.fallback_models],
            "allowed": self.allowed,
            "downgraded": self.downgraded,
            "confidence": self.confidence,
        }

    def to_legacy(self) -> dict[str, Any]:
        """Shape returned by POST /route."""
        return {
            "intent": "coding" if self.intent == Intent.CODING else "general",
            "contentType": self.intent.value,
            "difficulty": self.difficulty.value,
            "model": self.primary_model.model_id,
            "endpoint": "/api/pro" if self.plan == Plan.PRO else "/api/free",
            "allowed": self.allowed,
            "downgraded": self.downgraded,
            "plan": self.plan.value,
        }


def decide_route(classification: Classification, plan: str | Plan | None) -> RouteDecision:
    """Apply the admission matrix to a classification."""
    plan = normalize_plan(plan)
    intent = classification.intent
    difficulty = classification.difficulty

    required = RESTRICTED_INTENTS.get(intent)
    if required is not None:
        # restricted intents are served from the hard column
        primary, fallbacks = ROUTING_MATRIX[(plan, Difficulty.HARD)]
        allowed = plan.at_least(required)
        return RouteDecision(
            intent=intent,
            difficulty=difficulty,
            primary_model=primary,
            fallback_models=fallbacks if allowed else (),
            allowed=allowed,
            downgraded=False,
            confidence=classification.confidence,
            plan=plan,
            content_type=classification.content_type,
            required_plan=None if allowed else required,
            matched=classification.matched,
        )

    primary, fallbacks = ROUTING_MATRIX[(plan, difficulty)]
    downgraded = difficulty == Difficulty.HARD and primary.model_id in EASY_TIER
    return RouteDecision(
        intent=intent,
        difficulty=difficulty,
        primary_model=primary,
        fallback_models=fallbacks,
        allowed=True,
        downgraded=downgraded,
        confidence=classification.confidence,
        plan=plan,
        content_type=classification.content_type,
        matched=classification.matched,
    )


def route_query(message: str, plan: str | Plan | None) -> RouteDecision:
    """Classify a message and route it for the caller's plan."""
    decision = decide_route(classify(message), plan)
    logger.info(
        "chat.route.decided",
        intent=decision.intent.value,
        difficulty=decision.difficulty.value,
        plan=decision.plan.value,
        model=decision.primary_model.model_id,
        allowed=decision.allowed,
        tier_downgraded=decision.downgraded,
        confidence=decision.confidence,
    )
    return decision
