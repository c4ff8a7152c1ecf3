"""Provider adapters: one web-search-grounded call per backend, JSON out.

Each adapter reads its key from the Config on every call, sends the prompt,
pulls the first JSON object out of the free-text answer and raises a typed
ProviderError on any failure. Adapters hold no state between calls.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Awaitable
from enum import Enum
from typing import Any

from domain_research.config import Config

logger = logging.getLogger(__name__)

# Substrings that mark a provider error as quota / rate exhaustion (best effort)
QUOTA_MARKERS = ("quota", "rate limit", "rate_limit", "ratelimit", "resource_exhausted", "free_tier", "429")


class ProviderFailure(str, Enum):
    MISSING_CREDENTIALS = "missing_credentials"
    NO_TEXT_RETURNED = "no_text_returned"
    UNPARSABLE_JSON = "unparsable_json"
    UPSTREAM_HTTP_ERROR = "upstream_http_error"
    TIMEOUT = "timeout"


class ProviderError(Exception):
    """A single provider attempt failed."""

    def __init__(
        self,
        provider: str,
        cause: ProviderFailure,
        message: str = "",
        snippet: str | None = None,
    ):
        self.provider = provider
        self.cause = cause
        self.message = message
        self.snippet = snippet
        super().__init__(f"[{provider}] {cause.value}: {message}")

    @property
    def is_quota(self) -> bool:
        text = self.message.lower()
        return any(marker in text for marker in QUOTA_MARKERS)


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_json(text: str, provider: str = "unknown") -> dict[str, Any]:
    """Extract and parse the JSON object embedded in a model's answer.

    Code fences are stripped, then the span from the first ``{`` to the last
    ``}`` is parsed. If trailing prose contains a stray brace, the first
    balanced object is tried instead.
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()
    match = _OBJECT_RE.search(cleaned)
    if not match:
        raise ProviderError(
            provider, ProviderFailure.UNPARSABLE_JSON, "No JSON object found in response",
            snippet=cleaned[:200],
        )

    candidate = match.group(0)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        balanced = _first_balanced_object(candidate)
        try:
            data = json.loads(balanced) if balanced else None
        except json.JSONDecodeError:
            data = None
        if data is None:
            raise ProviderError(
                provider, ProviderFailure.UNPARSABLE_JSON, f"JSON parse error: {e}",
                snippet=candidate[:200],
            ) from e

    if not isinstance(data, dict):
        raise ProviderError(
            provider, ProviderFailure.UNPARSABLE_JSON, "Response JSON is not an object",
            snippet=candidate[:200],
        )
    return data


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        c = text[i]
        if escape:
            escape = False
            continue
        if c == "\\":
            escape = True
            continue
        if c == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


# ---------------------------------------------------------------------------
# Shared call wrapper
# ---------------------------------------------------------------------------

async def _run(provider: str, completion: Awaitable[str], timeout_s: float) -> str:
    """Await a provider completion, mapping every failure to ProviderError."""
    try:
        text = await asyncio.wait_for(completion, timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise ProviderError(provider, ProviderFailure.TIMEOUT, f"timed out after {timeout_s:.0f}s") from e
    except ProviderError:
        raise
    except Exception as e:
        raise ProviderError(provider, ProviderFailure.UPSTREAM_HTTP_ERROR, str(e)[:500]) from e

    if not text or not text.strip():
        raise ProviderError(provider, ProviderFailure.NO_TEXT_RETURNED, "Empty response text")
    return text


def _missing(provider: str, env_var: str) -> ProviderError:
    return ProviderError(provider, ProviderFailure.MISSING_CREDENTIALS, f"{env_var} not set")


# ---------------------------------------------------------------------------
# Gemini (Google Search grounding)
# ---------------------------------------------------------------------------

async def call_gemini(prompt: str, config: Config, timeout_s: float) -> dict[str, Any]:
    if not config.google_api_key:
        raise _missing("gemini", "GOOGLE_API_KEY")
    text = await _run(
        "gemini",
        _complete_gemini(prompt, config.google_api_key, config.gemini_model),
        timeout_s,
    )
    return extract_json(text, "gemini")


async def _complete_gemini(prompt: str, api_key: str, model: str) -> str:
    from google import genai
    from google.genai import types

    client = genai.Client(api_key=api_key)
    response = await client.aio.models.generate_content(
        model=model,
        contents=prompt,
        config=types.GenerateContentConfig(
            tools=[types.Tool(google_search=types.GoogleSearch())],
        ),
    )
    _log_gemini_grounding(response)

    text = response.text
    if not text and response.candidates:
        parts = response.candidates[0].content.parts or []
        text = "".join(p.text for p in parts if getattr(p, "text", None))
    return text or ""


def _log_gemini_grounding(response: Any) -> None:
    candidates = getattr(response, "candidates", None) or []
    metadata = getattr(candidates[0], "grounding_metadata", None) if candidates else None
    if metadata is None:
        return
    queries = getattr(metadata, "web_search_queries", None) or []
    chunks = getattr(metadata, "grounding_chunks", None) or []
    if queries:
        logger.debug("Gemini search queries: %s", queries[:5])
    if chunks:
        logger.debug("Gemini grounded with %d sources", len(chunks))


# ---------------------------------------------------------------------------
# OpenAI (Responses API with web search)
# ---------------------------------------------------------------------------

async def call_openai(prompt: str, config: Config, timeout_s: float) -> dict[str, Any]:
    if not config.openai_api_key:
        raise _missing("openai", "OPENAI_API_KEY")
    text = await _run(
        "openai",
        _complete_openai(prompt, config.openai_api_key, config.openai_model),
        timeout_s,
    )
    return extract_json(text, "openai")


async def _complete_openai(prompt: str, api_key: str, model: str) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.responses.create(
        model=model,
        tools=[{"type": "web_search"}],
        input=prompt,
    )
    return response.output_text or ""


# ---------------------------------------------------------------------------
# Anthropic (Messages API with server-side web search)
# ---------------------------------------------------------------------------

_ANTHROPIC_MAX_CONTINUATIONS = 5


async def call_anthropic(prompt: str, config: Config, timeout_s: float) -> dict[str, Any]:
    if not config.anthropic_api_key:
        raise _missing("anthropic", "ANTHROPIC_API_KEY")
    text = await _run(
        "anthropic",
        _complete_anthropic(
            prompt,
            config.anthropic_api_key,
            config.anthropic_model,
            config.anthropic_max_tokens,
            config.anthropic_max_searches,
        ),
        timeout_s,
    )
    return extract_json(text, "anthropic")


async def _complete_anthropic(
    prompt: str,
    api_key: str,
    model: str,
    max_tokens: int,
    max_searches: int,
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    tools = [{"type": "web_search_20250305", "name": "web_search", "max_uses": max_searches}]
    messages: list[dict[str, Any]] = [{"role": "user", "content": prompt}]

    # Long searches may pause the turn; continue it a bounded number of times
    for _ in range(_ANTHROPIC_MAX_CONTINUATIONS):
        response = await client.messages.create(
            model=model,
            max_tokens=max_tokens,
            messages=messages,
            tools=tools,
        )
        if response.stop_reason != "pause_turn":
            break
        messages.append({"role": "assistant", "content": response.content})

    usage = response.usage
    server_tool_use = getattr(usage, "server_tool_use", None)
    logger.debug(
        "Anthropic tokens: %d in, %d out, %d searches",
        getattr(usage, "input_tokens", 0) or 0,
        getattr(usage, "output_tokens", 0) or 0,
        getattr(server_tool_use, "web_search_requests", 0) or 0,
    )
    return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")


ADAPTERS = {
    "gemini": call_gemini,
    "openai": call_openai,
    "anthropic": call_anthropic,
}
