import time
import logging

from pydantic import ValidationError

from reachbot.backends.base import LLMBackend, ModelReply, ToolCall, call_with_backoff
from reachbot.config import (
    GEMINI_API_KEY,
    GEMINI_MODEL,
    LLM_BACKOFF_BASE_SECS,
    LLM_BACKOFF_MAX_SECS,
    LLM_MAX_ATTEMPTS,
)
from reachbot.errors import ClassificationParseError
from reachbot.models import MessageAuthor

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_transient(exc: Exception) -> bool:
    from google.genai import errors
    if isinstance(exc, errors.APIError):
        return exc.code in TRANSIENT_STATUS_CODES
    return isinstance(exc, (ConnectionError, TimeoutError))


class GeminiBackend(LLMBackend):
    """Gemini backend using the Google GenAI API with function declarations and response schemas."""

    def __init__(self, client=None, model: str = GEMINI_MODEL, max_attempts: int = LLM_MAX_ATTEMPTS):
        if client is None:
            from google import genai
            client = genai.Client(api_key=GEMINI_API_KEY)
        self.client = client
        self.model = model
        self.max_attempts = max_attempts

    def _generate(self, label, contents, config):
        def op():
            start = time.time()
            response = self.client.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            )
            elapsed = time.time() - start
            usage = getattr(response, "usage_metadata", None)
            if usage:
                logger.info(
                    "[LLM] %s: model=%s elapsed=%.1fs input=%s output=%s",
                    label, self.model, elapsed,
                    getattr(usage, "prompt_token_count", "?"),
                    getattr(usage, "candidates_token_count", "?"),
                )
            else:
                logger.info("[LLM] %s: model=%s elapsed=%.1fs", label, self.model, elapsed)
            return response

        return call_with_backoff(
            op, is_transient, label,
            max_attempts=self.max_attempts,
            base_delay=LLM_BACKOFF_BASE_SECS,
            max_delay=LLM_BACKOFF_MAX_SECS,
        )

    @staticmethod
    def _contents(history, prompt):
        contents = [
            {"role": "model" if e.role == MessageAuthor.MODEL else "user", "parts": [{"text": e.text}]}
            for e in history if e.text
        ]
        contents.append({"role": "user", "parts": [{"text": prompt}]})
        return contents

    def reply(self, system_prompt, history, prompt, tools=None):
        from google.genai.types import FunctionDeclaration, GenerateContentConfig, Tool

        config_kwargs = {"system_instruction": system_prompt, "max_output_tokens": 4096}
        if tools:
            config_kwargs["tools"] = [Tool(function_declarations=[
                FunctionDeclaration(
                    name=t.name,
                    description=t.description,
                    parameters_json_schema=t.parameters.model_json_schema(),
                )
                for t in tools
            ])]
        response = self._generate("reply", self._contents(history, prompt), GenerateContentConfig(**config_kwargs))

        tool_call = None
        calls = getattr(response, "function_calls", None) or []
        if calls:
            tool_call = ToolCall(name=calls[0].name, arguments=dict(calls[0].args or {}))
        text = ""
        if not calls:
            text = (response.text or "").strip()
        return ModelReply(text=text, tool_call=tool_call)

    def complete(self, system_prompt, history, prompt):
        return self.reply(system_prompt, history, prompt).text

    def structured(self, system_prompt, prompt, schema, tool_name):
        from google.genai.types import GenerateContentConfig

        response = self._generate(
            tool_name,
            [{"role": "user", "parts": [{"text": prompt}]}],
            GenerateContentConfig(
                system_instruction=system_prompt,
                response_mime_type="application/json",
                response_schema=schema,
                max_output_tokens=8192,
            ),
        )
        try:
            return schema.model_validate_json(response.text or "")
        except ValidationError as exc:
            raise ClassificationParseError(f"{tool_name}: {exc}") from exc
