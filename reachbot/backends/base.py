import time
import random
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Type, TypeVar

from pydantic import BaseModel

from reachbot.errors import TransientProviderError
from reachbot.models import HistoryEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass
class ToolSpec:
    """An administrative action the model may request during a reply."""
    name: str
    description: str
    parameters: Type[BaseModel]


@dataclass
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelReply:
    text: str = ""
    tool_call: Optional[ToolCall] = None


def call_with_backoff(
    op: Callable[[], T],
    is_transient: Callable[[Exception], bool],
    label: str,
    max_attempts: int,
    base_delay: float,
    max_delay: float,
) -> T:
    """Run ``op``, retrying transient failures with exponential backoff and jitter.

    Non-transient errors propagate on the first occurrence. Running out of
    attempts raises TransientProviderError chained to the last failure.
    """
    for attempt in range(max_attempts):
        try:
            return op()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt == max_attempts - 1:
                logger.error("[LLM] %s failed after %d attempts: %s", label, max_attempts, exc)
                raise TransientProviderError(f"{label}: provider unavailable") from exc
            wait = min(max_delay, base_delay * (2 ** attempt))
            wait += random.uniform(0, wait / 2)
            logger.warning("[LLM] Retrying %s in %.2fs (attempt %d): %s", label, wait, attempt + 1, exc)
            time.sleep(wait)
    raise TransientProviderError(f"{label}: no attempts made")


class LLMBackend(ABC):
    """Abstract base class for LLM provider backends."""

    @abstractmethod
    def reply(
        self, system_prompt: str, history: list[HistoryEntry], prompt: str,
        tools: Optional[list[ToolSpec]] = None,
    ) -> ModelReply:
        """Conversational turn. The model may request at most one tool call."""
        pass

    @abstractmethod
    def complete(self, system_prompt: str, history: list[HistoryEntry], prompt: str) -> str:
        """Plain text generation."""
        pass

    @abstractmethod
    def structured(self, system_prompt: str, prompt: str, schema: Type[M], tool_name: str) -> M:
        """Generate output conforming to ``schema``. Raises ClassificationParseError if it does not."""
        pass
