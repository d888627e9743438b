# src/llm2ui/llm.py
"""
Generation capability + adapters for llm2ui.

- LLM: minimal async interface with a single `generate(...)` method.
- StreamingLLM: optional `stream(...)`; collect_stream() joins chunks.
- LocalMock: deterministic, offline responses for tests/demos/evals.
- OpenAIAdapter / AnthropicAdapter: optional; disabled when
  NO_NETWORK / LLM2UI_FORCE_MOCK is set.

Design goals:
- The orchestrator only ever sees `generate`; providers stay behind it.
- Fail LOUDLY if a real network/model is attempted in CI.
- Provide enough deterministic behavior to prove the retry loop.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

import structlog

from .config import GenerationConfig
from .schemas import ChatMessage

logger = structlog.get_logger()


@runtime_checkable
class LLM(Protocol):
    async def generate(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> str:
        """
        Return the assistant's text for the given chat messages.
        Must NOT mutate `messages`.
        """
        ...


@runtime_checkable
class StreamingLLM(Protocol):
    def stream(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> AsyncIterator[str]:
        ...


async def collect_stream(chunks: AsyncIterator[str]) -> str:
    """Join a chunk stream into the full response text."""
    parts: List[str] = []
    async for chunk in chunks:
        if chunk:
            parts.append(chunk)
    return "".join(parts)


def inject_system_prompt(
    messages: Sequence[ChatMessage], config: Optional[GenerationConfig]
) -> List[ChatMessage]:
    """New list with config.system_prompt prepended, unless a system message already leads."""
    out = list(messages)
    prompt = (config.system_prompt or "").strip() if config else ""
    if not prompt or (out and out[0].role == "system"):
        return out
    return [ChatMessage(role="system", content=prompt), *out]


def _network_disabled() -> bool:
    return os.getenv("NO_NETWORK") == "1" or os.getenv("LLM2UI_FORCE_MOCK") == "1"


# -------------------------
# Helpers
# -------------------------

_REQUEST_MARKERS = ("## Request\n", "## 需求\n")

_FORM_HINTS = re.compile(r"\bform\b|login|log in|sign ?up|register|contact|表单|登录|注册", re.I)
_TABLE_HINTS = re.compile(r"\btable\b|\blist of\b|dashboard|report|表格|列表", re.I)


def _last_user_text(messages: Sequence[ChatMessage]) -> str:
    for m in reversed(messages):
        if m.role == "user":
            return m.content
    return ""


def _task_text(prompt: str) -> str:
    """The request paragraph of a built prompt (fix prompts embed it too)."""
    for marker in _REQUEST_MARKERS:
        at = prompt.find(marker)
        if at != -1:
            rest = prompt[at + len(marker):]
            return rest.split("\n\n", 1)[0]
    return prompt


def _form_schema(task: str) -> Dict[str, Any]:
    return {
        "version": "1.0",
        "root": {
            "id": "form",
            "type": "Form",
            "props": {"onSubmit": "handleSubmit"},
            "children": [
                {"id": "title", "type": "Text", "props": {"variant": "h2"}, "text": task[:60] or "Form"},
                {"id": "email-label", "type": "Label", "props": {"htmlFor": "email"}, "text": "Email"},
                {"id": "email", "type": "Input", "props": {"type": "email", "name": "email", "placeholder": "you@example.com"}},
                {"id": "password-label", "type": "Label", "props": {"htmlFor": "password"}, "text": "Password"},
                {"id": "password", "type": "Input", "props": {"type": "password", "name": "password"}},
                {"id": "submit", "type": "Button", "props": {"variant": "primary"}, "text": "Submit"},
            ],
        },
    }


def _table_schema(task: str) -> Dict[str, Any]:
    return {
        "version": "1.0",
        "root": {
            "id": "page",
            "type": "Container",
            "props": {"direction": "column", "gap": 16},
            "children": [
                {"id": "heading", "type": "Text", "props": {"variant": "h2"}, "text": task[:60] or "Table"},
                {
                    "id": "table",
                    "type": "Table",
                    "props": {"columns": ["Name", "Status", "Updated"], "rows": []},
                },
            ],
        },
        "data": {"rows": []},
    }


def _card_schema(task: str) -> Dict[str, Any]:
    return {
        "version": "1.0",
        "root": {
            "id": "card",
            "type": "Card",
            "props": {"title": "Overview"},
            "children": [
                {"id": "body", "type": "Text", "text": task[:120] or "Content"},
                {"id": "action", "type": "Button", "props": {"variant": "secondary", "size": "sm"}, "text": "Learn more"},
            ],
        },
    }


def _strip_ids(node: Any) -> None:
    if isinstance(node, dict):
        node.pop("id", None)
        for child in node.get("children") or []:
            _strip_ids(child)


def _fenced(schema: Dict[str, Any], note: str) -> str:
    body = json.dumps(schema, ensure_ascii=False, indent=2)
    return f"{note}\n\n```json\n{body}\n```\n"


# -------------------------
# LocalMock (deterministic, offline)
# -------------------------

@dataclass
class LocalMock:
    """
    Deterministic, domain-aware offline generator.

    Behaviors:
    - `responses` given: replayed in order, the last one repeated forever.
    - Else a UISchema from one of a few templates, picked from the request text:
        * table (list / dashboard / report ...)
        * form (login / sign up / contact ...)
        * card (everything else)
    - `flaky=True`: the first call omits every component id so the retry
      path is exercised; later calls are valid.
    - `delay_seconds` simulates latency (use it to exercise timeouts).
    - Every call's messages are recorded in `calls`.
    """

    responses: Optional[List[str]] = None
    delay_seconds: float = 0.0
    flaky: bool = False
    tag: str = "[MOCK]"
    calls: List[List[ChatMessage]] = field(default_factory=list)

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> str:
        self.calls.append(list(messages))
        call_no = len(self.calls)
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        if self.responses:
            return self.responses[min(call_no, len(self.responses)) - 1]

        task = _task_text(_last_user_text(messages)).strip()
        # Tables first: listings often mention fields like "last login".
        if _TABLE_HINTS.search(task):
            schema = _table_schema(task)
        elif _FORM_HINTS.search(task):
            schema = _form_schema(task)
        else:
            schema = _card_schema(task)

        if self.flaky and call_no == 1:
            _strip_ids(schema["root"])
        return _fenced(schema, f"{self.tag} Here is the UI for your request.")

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> AsyncIterator[str]:
        text = await self.generate(messages, config)
        for line in text.splitlines(keepends=True):
            yield line

    @property
    def call_count(self) -> int:
        return len(self.calls)


# -------------------------
# Provider adapters (optional, local-only)
# -------------------------

def _wire_messages(messages: Iterable[ChatMessage]) -> List[Dict[str, str]]:
    return [{"role": m.role, "content": m.content} for m in messages]


@dataclass
class OpenAIAdapter:
    """
    Thin wrapper around the OpenAI Chat Completions API.

    Also serves the iflow and custom providers (OpenAI-compatible endpoints)
    via `base_url`.

    - Respects NO_NETWORK / LLM2UI_FORCE_MOCK by refusing to initialize.
    - Requires the `openai` package (llm2ui[openai]). If not installed, raises.
    """

    config: GenerationConfig
    _client: Optional[Any] = None  # lazy

    def __post_init__(self):
        if _network_disabled():
            raise RuntimeError("Network use disabled by NO_NETWORK/LLM2UI_FORCE_MOCK. Use LocalMock.")
        try:
            from openai import AsyncOpenAI  # type: ignore
        except ImportError as e:
            raise RuntimeError(
                "The 'openai' package is required for OpenAIAdapter. "
                "Install llm2ui[openai] and try again."
            ) from e
        self._client = AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.endpoint,
            timeout=self.config.timeout_seconds,
            default_headers=self.config.headers or None,
        )

    def _request(self, messages: Sequence[ChatMessage], config: Optional[GenerationConfig]) -> Dict[str, Any]:
        cfg = config or self.config
        request: Dict[str, Any] = {
            "model": cfg.model,
            "messages": _wire_messages(inject_system_prompt(messages, cfg)),
        }
        if cfg.temperature is not None:
            request["temperature"] = cfg.temperature
        if cfg.max_tokens is not None:
            request["max_tokens"] = cfg.max_tokens
        return request

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> str:
        request = self._request(messages, config)
        try:
            resp = await self._client.chat.completions.create(**request)
        except Exception as e:
            raise RuntimeError(f"OpenAIAdapter call failed: {e}") from e

        choices = getattr(resp, "choices", None) or []
        if not choices or not getattr(choices[0], "message", None):
            raise RuntimeError("OpenAIAdapter returned no choices/message.")
        text = getattr(choices[0].message, "content", "") or ""
        if not text.strip():
            raise RuntimeError("OpenAIAdapter returned empty content.")
        logger.debug("openai_response", model=request["model"], chars=len(text))
        return text

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> AsyncIterator[str]:
        request = self._request(messages, config)
        try:
            chunks = await self._client.chat.completions.create(stream=True, **request)
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                delta = getattr(chunk.choices[0].delta, "content", None)
                if delta:
                    yield delta
        except Exception as e:
            raise RuntimeError(f"OpenAIAdapter stream failed: {e}") from e


@dataclass
class AnthropicAdapter:
    """
    Thin wrapper around the Anthropic Messages API.

    System messages are lifted into the `system` parameter; the remaining
    turns must alternate user/assistant, which the orchestrator guarantees.
    Requires the `anthropic` package (llm2ui[anthropic]).
    """

    config: GenerationConfig
    _client: Optional[Any] = None  # lazy

    def __post_init__(self):
        if _network_disabled():
            raise RuntimeError("Network use disabled by NO_NETWORK/LLM2UI_FORCE_MOCK. Use LocalMock.")
        try:
            from anthropic import AsyncAnthropic  # type: ignore
        except ImportError as e:
            raise RuntimeError(
                "The 'anthropic' package is required for AnthropicAdapter. "
                "Install llm2ui[anthropic] and try again."
            ) from e
        self._client = AsyncAnthropic(
            api_key=self.config.api_key,
            base_url=self.config.endpoint,
            timeout=self.config.timeout_seconds,
            default_headers=self.config.headers or None,
        )

    def _request(self, messages: Sequence[ChatMessage], config: Optional[GenerationConfig]) -> Dict[str, Any]:
        cfg = config or self.config
        full = inject_system_prompt(messages, cfg)
        system = "\n\n".join(m.content for m in full if m.role == "system")
        request: Dict[str, Any] = {
            "model": cfg.model,
            "max_tokens": cfg.max_tokens or 4096,
            "messages": _wire_messages(m for m in full if m.role != "system"),
        }
        if cfg.temperature is not None:
            request["temperature"] = cfg.temperature
        if system:
            request["system"] = system
        return request

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> str:
        request = self._request(messages, config)
        try:
            message = await self._client.messages.create(**request)
        except Exception as e:
            raise RuntimeError(f"AnthropicAdapter call failed: {e}") from e

        text = "".join(
            getattr(block, "text", "") for block in (message.content or []) if getattr(block, "type", "") == "text"
        )
        if not text.strip():
            raise RuntimeError("AnthropicAdapter returned empty content.")
        logger.debug("anthropic_response", model=request["model"], chars=len(text))
        return text

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> AsyncIterator[str]:
        request = self._request(messages, config)
        try:
            async with self._client.messages.stream(**request) as stream:
                async for text in stream.text_stream:
                    yield text
        except Exception as e:
            raise RuntimeError(f"AnthropicAdapter stream failed: {e}") from e


def create_llm(config: GenerationConfig) -> LLM:
    """Adapter for config.provider (anthropic -> AnthropicAdapter, everything else OpenAI-compatible)."""
    if config.provider == "anthropic":
        return AnthropicAdapter(config)
    return OpenAIAdapter(config)
