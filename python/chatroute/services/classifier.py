"""Query classification: (intent, difficulty, confidence) from raw text.

Local weighted pattern matching only; pure and deterministic so the result
can feed the admission matrix and cache decisions.

Scoring:
- each matched pattern adds its weight to its content type
- each keyword found adds 0.1
- a type's score is capped at 1.0
- confidence = min(primary * 0.7 + (primary - secondary) * 0.3, 0.95)

Below CONFIDENCE_THRESHOLD the result falls back to (text, easy).
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from chatroute.logging import get_logger
from chatroute.services.redact import hash_text

logger = get_logger(__name__)

CONFIDENCE_THRESHOLD = 0.75
KEYWORD_WEIGHT = 0.1
NO_MATCH_CONFIDENCE = 0.3
LONG_MESSAGE_CHARS = 200

COMPLEXITY_MARKERS = ("complex", "advanced", "algorithm", "architecture", "optimization")


class Intent(str, Enum):
    """Routable intents."""

    TEXT = "text"
    CODING = "coding"
    IMAGE = "image"
    DIAGRAM = "diagram"


class Difficulty(str, Enum):
    EASY = "easy"
    HARD = "hard"


@dataclass(frozen=True)
class _Pattern:
    regex: re.Pattern
    weight: float
    hard: bool = False


def _p(pattern: str, weight: float, hard: bool = False) -> _Pattern:
    return _Pattern(re.compile(pattern, re.IGNORECASE), weight, hard)


# content type -> (patterns, keywords). "video" is scored so it does not
# inflate other types, but it is not routable and folds into text.
PATTERNS: dict[str, tuple[list[_Pattern], tuple[str, ...]]] = {
    "coding": (
        [
            _p(r"```[\s\S]*```", 0.9, hard=True),
            _p(r"\b(function|class|const|let|var|def|import|export)\s*[\(\{=]", 0.85),
            _p(
                r"\b(javascript|python|java|typescript|react|node\.?js|express|sql|html|css"
                r"|php|ruby|go|rust|c\+\+)\b",
                0.8,
            ),
            _p(
                r"\b(debug|fix|implement|create|build|develop|code|program)\s+(a|an|the)?\s*"
                r"(function|class|component|api|app|website|database)",
                0.85,
                hard=True,
            ),
            _p(r"\b(how\s+to\s+)?(code|program|implement|develop|build)", 0.7),
            _p(r"\b(error|bug|exception|crash|fail|broken)\b.*\b(fix|solve|debug|resolve)", 0.8, True),
            _p(r"\b(syntax\s+error|runtime\s+error|compilation\s+error)", 0.9, hard=True),
            _p(r"\b(algorithm|data\s+structure|optimization|performance|scalability)", 0.75, True),
            _p(r"\b(api|endpoint|database|query|schema|migration)", 0.7),
        ],
        ("code", "function", "class", "debug", "implement", "programming", "development", "software"),
    ),
    "image": (
        [
            _p(
                r"\b(create|generate|make|draw|design)\s+(an?\s+)?"
                r"(image|picture|illustration|artwork|logo|icon)",
                0.9,
            ),
            _p(r"\b(show|display)\s+me\s+(an?\s+)?(image|picture|photo)", 0.85),
            _p(r"\b(visual|graphic|artwork|painting|sketch|drawing|render)", 0.75),
            _p(r"\b(banner|poster|thumbnail|avatar|profile\s+picture)", 0.8),
            _p(r"\b(realistic|cartoon|anime|abstract|minimalist|vintage|modern)\s+(style|art|image)", 0.8),
            _p(r"\bin\s+the\s+style\s+of", 0.75),
        ],
        ("image", "picture", "visual", "draw", "create", "generate", "design", "artwork"),
    ),
    "diagram": (
        [
            _p(r"\b(flow\s*chart|sequence\s+diagram|class\s+diagram|er\s+diagram|uml|mermaid|gantt)", 0.9),
            _p(r"\b(draw|create|generate|make|design)\s+(a|an|the)?\s*(diagram|chart|graph|mind\s*map)", 0.9),
            _p(r"\b(architecture|system|network|deployment)\s+diagram", 0.85, hard=True),
            _p(r"\bdiagram\b", 0.7),
        ],
        ("diagram", "flowchart", "mermaid", "uml", "mind map"),
    ),
    "text": (
        [
            _p(r"^(what|how|why|when|where|who|which|can\s+you)\s+", 0.7),
            _p(r"\b(explain|describe|tell\s+me|help\s+me\s+understand)", 0.75),
            _p(r"\b(analyze|compare|contrast|evaluate|assess|review)", 0.8, hard=True),
            _p(
                r"\b(pros\s+and\s+cons|advantages\s+and\s+disadvantages|benefits\s+and\s+drawbacks)",
                0.75,
                hard=True,
            ),
            _p(
                r"\b(write|compose|draft)\s+(a|an|the)?\s*"
                r"(letter|email|essay|article|report|summary)",
                0.8,
                hard=True,
            ),
            _p(r"\b(improve|edit|revise|proofread)\s+(this|my)", 0.75),
            _p(r"^(hi|hello|hey|good\s+(morning|afternoon|evening))", 0.9),
            _p(r"\b(thank\s+you|thanks|please|sorry)", 0.6),
        ],
        ("explain", "help", "question", "answer", "information", "advice", "suggestion"),
    ),
    "video": (
        [
            _p(r"\b(create|generate|make)\s+(a|an|the)?\s*(video|animation|movie|clip)", 0.9, True),
            _p(r"\b(video\s+editing|motion\s+graphics|animation)", 0.85, hard=True),
        ],
        ("video", "animation", "movie", "clip", "motion"),
    ),
}


@dataclass(frozen=True)
class Classification:
    """Classifier output.

    content_type is the raw winning type (may be "video"); intent is the
    routable intent after thresholding and folding.
    """

    intent: Intent
    difficulty: Difficulty
    confidence: float
    content_type: str = "text"
    matched: tuple[str, ...] = field(default_factory=tuple)


def _score(message: str) -> tuple[dict[str, float], list[str], bool]:
    lowered = message.lower().strip()
    scores: dict[str, float] = {}
    matched: list[str] = []
    any_hard = False

    for content_type, (patterns, keywords) in PATTERNS.items():
        score = 0.0
        for pattern in patterns:
            if pattern.regex.search(message):
                score += pattern.weight
                matched.append(f"{content_type}:{pattern.regex.pattern[:40]}")
                any_hard = any_hard or pattern.hard
        score += KEYWORD_WEIGHT * sum(1 for kw in keywords if kw in lowered)
        scores[content_type] = min(score, 1.0)

    return scores, matched, any_hard


def _difficulty(message: str, any_hard: bool) -> Difficulty:
    lowered = message.lower()
    if any_hard or len(message) > LONG_MESSAGE_CHARS:
        return Difficulty.HARD
    if any(marker in lowered for marker in COMPLEXITY_MARKERS):
        return Difficulty.HARD
    return Difficulty.EASY


def classify(message: str) -> Classification:
    """Classify a raw user message.

    Never raises for ordinary text; empty input classifies as (text, easy).
    """
    scores, matched, any_hard = _score(message)
    ranked = sorted(
        ((t, s) for t, s in scores.items() if s > 0), key=lambda item: item[1], reverse=True
    )

    if not ranked:
        return Classification(Intent.TEXT, Difficulty.EASY, NO_MATCH_CONFIDENCE)

    primary_type, primary = ranked[0]
    secondary = ranked[1][1] if len(ranked) > 1 else 0.0
    confidence = round(min(primary * 0.7 + (primary - secondary) * 0.3, 0.95), 4)

    if confidence < CONFIDENCE_THRESHOLD:
        result = Classification(
            Intent.TEXT, Difficulty.EASY, confidence, primary_type, tuple(matched[:3])
        )
    else:
        intent = Intent.TEXT if primary_type == "video" else Intent(primary_type)
        result = Classification(
            intent, _difficulty(message, any_hard), confidence, primary_type, tuple(matched[:3])
        )

    logger.debug(
        "query.classified",
        intent=result.intent.value,
        difficulty=result.difficulty.value,
        confidence=result.confidence,
        message_sha256=hash_text(message),
    )
    return result
