"""
Agent LLM: OpenAI chat completions, with and without tool calling.

The OpenAI client is built once at start-up and injected; a missing API key turns
every call into ServiceUnavailableError instead of failing at import time.
"""

import json
import logging
from typing import Any

from openai import OpenAI, OpenAIError

from inboxpilot.core.config import AGENT_MAX_TOKENS, LLM_API_TIMEOUT, LLM_TEMPERATURE, OPENAI_LLM_MODEL
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.models import Completion, ToolCall

logger = logging.getLogger(__name__)


def build_openai_client(api_key: str) -> OpenAI | None:
    if not api_key:
        logger.warning("[llm] OPENAI_API_KEY not set; language model calls will fail")
        return None
    return OpenAI(api_key=api_key, timeout=LLM_API_TIMEOUT)


def _parse_tool_calls(raw_tool_calls: list[Any]) -> list[ToolCall]:
    tool_calls = []
    for tc in raw_tool_calls:
        fn = getattr(tc, "function", None)
        if not fn:
            continue
        fargs = getattr(fn, "arguments", None) or "{}"
        try:
            args = json.loads(fargs) if isinstance(fargs, str) else dict(fargs)
        except json.JSONDecodeError:
            logger.warning("[llm] unparseable tool arguments for %s: %r", getattr(fn, "name", ""), fargs[:200])
            args = {}
        if not isinstance(args, dict):
            args = {}
        tool_calls.append(ToolCall(id=getattr(tc, "id", None) or "", name=getattr(fn, "name", None) or "", arguments=args))
    return tool_calls


class OpenAIChatModel:
    """Language-model completion capability backed by OpenAI chat completions."""

    def __init__(
        self,
        client: OpenAI | None,
        model: str = OPENAI_LLM_MODEL,
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = AGENT_MAX_TOKENS,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    def _require_client(self) -> OpenAI:
        if self._client is None:
            raise ServiceUnavailableError("OPENAI_API_KEY is not configured")
        return self._client

    def complete(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None) -> Completion:
        """
        One chat completion. When tools are given the model may answer with tool calls
        (tool_choice="auto"); the caller executes them and calls again with the results.
        """
        client = self._require_client()
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        logger.info("[llm:complete] IN  messages=%d tools=%d", len(messages), len(tools or []))
        try:
            response = client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise ServiceUnavailableError(f"Language model request failed: {e}") from e

        msg = response.choices[0].message if response.choices else None
        if msg is None:
            return Completion(text="")
        content = (getattr(msg, "content", None) or "").strip()
        tool_calls = _parse_tool_calls(getattr(msg, "tool_calls", None) or [])
        if tool_calls:
            logger.info("[llm:complete] OUT tool_calls=%s", [t.name for t in tool_calls])
        logger.info("[llm:complete] OUT content_len=%d", len(content))
        return Completion(text=content, tool_calls=tool_calls)

    def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 256) -> str:
        """Plain single-prompt generation (summaries, names, extraction)."""
        client = self._require_client()
        logger.info("[llm:generate] IN  prompt_len=%d max_tokens=%d", len(prompt), max_tokens)
        try:
            response = client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            raise ServiceUnavailableError(f"Language model request failed: {e}") from e
        msg = response.choices[0].message if response.choices else None
        out = (getattr(msg, "content", None) or "").strip()
        logger.info("[llm:generate] OUT response_len=%d", len(out))
        return out
