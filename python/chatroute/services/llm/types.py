"""Value types passed between the invoker and the provider adapters.

A stream is a run of delta chunks followed by a single terminal chunk.
Only the terminal chunk carries usage and the provider request id; a
provider stream that stops before its terminal marker is a NETWORK failure.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


@dataclass(frozen=True)
class ModelTarget:
    """A canonical model id plus the provider that serves it.

    The router resolves this once. Everything downstream dispatches on
    `provider` rather than parsing `model_id`.
    """

    provider: Provider
    model_id: str

    def __str__(self) -> str:
        return self.model_id


@dataclass(frozen=True)
class Turn:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class LLMUsage:
    # Providers report different subsets; any count may be missing
    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None


@dataclass(frozen=True)
class LLMRequest:
    """What an adapter sends upstream.

    `model_name` is the provider's own name for the model. `messages`
    holds at most one system turn, placed first. A temperature of None
    leaves the provider default in place.
    """

    model_name: str
    messages: list[Turn]
    max_tokens: int
    temperature: float | None = None


@dataclass(frozen=True)
class LLMResponse:
    text: str
    usage: LLMUsage | None
    provider_request_id: str | None


@dataclass(frozen=True)
class LLMChunk:
    delta_text: str
    done: bool
    usage: LLMUsage | None = None
    provider_request_id: str | None = None

    def __post_init__(self):
        if not self.done and self.usage is not None:
            raise ValueError("usage is only allowed on the terminal chunk")
