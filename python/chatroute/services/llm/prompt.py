"""Turn lists sent to every provider.

One system turn opens the list; image and diagram requests get their own
instructions. Stored history follows, then the new user message.
"""

from chatroute.services.llm.types import Turn

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant that provides accurate and concise responses."

INTENT_SYSTEM_PROMPTS: dict[str, str] = {
    "diagram": (
        DEFAULT_SYSTEM_PROMPT
        + "\nThe user wants a diagram. Reply with valid Mermaid source in a ```mermaid"
        " code block, followed by one or two sentences describing it."
    ),
    "image": (
        DEFAULT_SYSTEM_PROMPT
        + "\nThe user wants an image. Reply with a detailed image brief: subject,"
        " composition, style, lighting and colour palette, ready for an image model."
    ),
}

MAX_PROMPT_CHARS = 100_000


class PromptTooLargeError(Exception):
    def __init__(self, actual_size: int, max_size: int):
        self.actual_size = actual_size
        self.max_size = max_size
        super().__init__(f"Prompt size {actual_size} exceeds max {max_size}")


def system_prompt_for(intent: str) -> str:
    return INTENT_SYSTEM_PROMPTS.get(intent, DEFAULT_SYSTEM_PROMPT)


def render_prompt(
    user_content: str,
    history: list[Turn],
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
) -> list[Turn]:
    """System turn, prior user and assistant turns, then `user_content`."""
    turns = [Turn(role="system", content=system_prompt)]
    turns.extend(turn for turn in history if turn.role in ("user", "assistant"))
    turns.append(Turn(role="user", content=user_content))
    return turns


def fit_history(history: list[Turn], budget: int) -> list[Turn]:
    """The newest turns of `history` whose combined length fits `budget`."""
    kept: list[Turn] = []
    used = 0
    for turn in reversed(history):
        used += len(turn.content)
        if used > budget:
            break
        kept.append(turn)
    kept.reverse()
    return kept


def validate_prompt_size(turns: list[Turn], max_chars: int = MAX_PROMPT_CHARS) -> None:
    """Raise PromptTooLargeError if total chars exceed the limit."""
    total = sum(len(t.content) for t in turns)
    if total > max_chars:
        raise PromptTooLargeError(total, max_chars)


def estimate_token_count(text: str) -> int:
    """About four characters per token; display only, never billing."""
    return len(text) // 4 + 1
