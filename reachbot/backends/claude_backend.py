import time
import logging
from typing import Optional

import anthropic
from pydantic import ValidationError

from reachbot.backends.base import LLMBackend, ModelReply, ToolCall, ToolSpec, call_with_backoff
from reachbot.config import (
    ANTHROPIC_API_KEY,
    CLAUDE_MODEL,
    LLM_BACKOFF_BASE_SECS,
    LLM_BACKOFF_MAX_SECS,
    LLM_MAX_ATTEMPTS,
)
from reachbot.errors import ClassificationParseError
from reachbot.models import HistoryEntry, MessageAuthor

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 529})


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, (anthropic.APITimeoutError, anthropic.APIConnectionError)):
        return True
    if isinstance(exc, anthropic.APIStatusError):
        return exc.status_code in TRANSIENT_STATUS_CODES
    return False


def to_messages(history: list[HistoryEntry], prompt: str) -> list[dict]:
    """Convert history plus the new prompt into alternating Anthropic turns."""
    messages: list[dict] = []
    turns = [(e.role, e.text) for e in history] + [(MessageAuthor.USER, prompt)]
    for role, text in turns:
        if not text:
            continue
        api_role = "assistant" if role == MessageAuthor.MODEL else "user"
        if messages and messages[-1]["role"] == api_role:
            messages[-1]["content"] += "\n\n" + text
        else:
            messages.append({"role": api_role, "content": text})
    if messages and messages[0]["role"] == "assistant":
        messages.insert(0, {"role": "user", "content": "Hi"})
    return messages


def _tool_definition(tool: ToolSpec) -> dict:
    return {
        "name": tool.name,
        "description": tool.description,
        "input_schema": tool.parameters.model_json_schema(),
    }


class ClaudeBackend(LLMBackend):
    """Claude backend using the Anthropic API, with tool-use for structured output."""

    def __init__(self, client: Optional[anthropic.Anthropic] = None, model: str = CLAUDE_MODEL,
                 max_attempts: int = LLM_MAX_ATTEMPTS):
        self.client = client or anthropic.Anthropic(api_key=ANTHROPIC_API_KEY)
        self.model = model
        self.max_attempts = max_attempts

    def _create(self, label: str, **kwargs):
        def op():
            start = time.time()
            message = self.client.messages.create(model=self.model, max_tokens=4096, **kwargs)
            elapsed = time.time() - start
            usage = getattr(message, "usage", None)
            logger.info(
                "[LLM] %s: model=%s elapsed=%.1fs stop=%s input=%s output=%s",
                label, self.model, elapsed,
                message.stop_reason,
                getattr(usage, "input_tokens", "?"),
                getattr(usage, "output_tokens", "?"),
            )
            return message

        return call_with_backoff(
            op, is_transient, label,
            max_attempts=self.max_attempts,
            base_delay=LLM_BACKOFF_BASE_SECS,
            max_delay=LLM_BACKOFF_MAX_SECS,
        )

    def reply(self, system_prompt, history, prompt, tools=None):
        kwargs = {}
        if tools:
            kwargs["tools"] = [_tool_definition(t) for t in tools]
        message = self._create(
            "reply",
            system=system_prompt,
            messages=to_messages(history, prompt),
            **kwargs,
        )
        texts = []
        tool_call = None
        for block in message.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use" and tool_call is None:
                tool_call = ToolCall(name=block.name, arguments=dict(block.input or {}))
        return ModelReply(text="\n".join(texts).strip(), tool_call=tool_call)

    def complete(self, system_prompt, history, prompt):
        return self.reply(system_prompt, history, prompt).text

    def structured(self, system_prompt, prompt, schema, tool_name):
        message = self._create(
            tool_name,
            system=system_prompt,
            messages=[{"role": "user", "content": prompt}],
            tools=[{
                "name": tool_name,
                "description": f"Report the {tool_name} results",
                "input_schema": schema.model_json_schema(),
            }],
            tool_choice={"type": "tool", "name": tool_name},
        )
        for block in message.content:
            if block.type == "tool_use":
                try:
                    return schema.model_validate(block.input)
                except ValidationError as exc:
                    raise ClassificationParseError(f"{tool_name}: {exc}") from exc
        raise ClassificationParseError(f"No tool_use block in response for {tool_name}")
