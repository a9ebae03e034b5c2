"""
Overlay Plans — LLM Provider Abstraction.

Two public functions route to the configured provider:
- `complete()` returns plain response text.
- `complete_with_tools()` offers function descriptions and returns the calls
  the model chose to make, alongside any text.

Provider is selected at startup via the LLM_PROVIDER env var.
Supports: gemini (default), anthropic, openai, cohere.

Conversation history is owned by the caller (the chat session) and passed in
on every call; nothing here remembers previous turns.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

MAX_HISTORY_MESSAGES = 10

# (role, content) pairs, role is "user" or "assistant"
History = Sequence[tuple[str, str]]

_ProviderFn = Callable[[str, str, str, list[dict], int], Awaitable[str]]


def _build_messages(history: History | None, user_message: str) -> list[dict]:
    """Trim history to the last turns and append the new user message."""
    turns = list(history or ())[-(MAX_HISTORY_MESSAGES - 1):] if MAX_HISTORY_MESSAGES > 1 else []
    messages = [
        {"role": role, "content": content}
        for role, content in turns
        if role in ("user", "assistant") and content
    ]
    messages.append({"role": "user", "content": user_message})
    return messages


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_gemini(api_key: str, model: str, system: str, messages: list[dict], max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    contents = [
        {"role": "model" if m["role"] == "assistant" else "user", "parts": [m["content"]]}
        for m in messages
    ]
    response = await gm.generate_content_async(
        contents,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _complete_anthropic(api_key: str, model: str, system: str, messages: list[dict], max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=messages,
    )
    return response.content[0].text


async def _complete_openai(api_key: str, model: str, system: str, messages: list[dict], max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}, *messages],
    )
    return response.choices[0].message.content


async def _complete_cohere(api_key: str, model: str, system: str, messages: list[dict], max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}, *messages],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Tool calling
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass
class ToolCompletion:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


# name, description, parameters (JSON Schema)
ToolSpec = dict

_ToolProviderFn = Callable[[str, str, str, list[dict], list[ToolSpec], int], Awaitable[ToolCompletion]]

# Gemini function declarations accept only this subset of JSON Schema
_GEMINI_SCHEMA_KEYS = {"type", "description", "enum", "properties", "items", "required", "format", "nullable"}


def _parse_arguments(raw: str | dict | None) -> dict:
    """Tool arguments arrive as a JSON string from OpenAI-style APIs."""
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError:
        logger.warning("Tool arguments are not valid JSON: %s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _gemini_schema(schema: dict) -> dict:
    cleaned = {k: v for k, v in schema.items() if k in _GEMINI_SCHEMA_KEYS}
    if "properties" in cleaned:
        cleaned["properties"] = {k: _gemini_schema(v) for k, v in cleaned["properties"].items()}
    if "items" in cleaned:
        cleaned["items"] = _gemini_schema(cleaned["items"])
    return cleaned


def _plain(value):
    """Convert protobuf map/repeated wrappers into dicts and lists."""
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, str):
        return [_plain(v) for v in value]
    return value


async def _tools_gemini(
    api_key: str, model: str, system: str, messages: list[dict], tools: list[ToolSpec], max_tokens: int,
) -> ToolCompletion:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    declarations = [
        {"name": t["name"], "description": t["description"], "parameters": _gemini_schema(t["parameters"])}
        for t in tools
    ]
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
        tools=[{"function_declarations": declarations}],
    )
    contents = [
        {"role": "model" if m["role"] == "assistant" else "user", "parts": [m["content"]]}
        for m in messages
    ]
    response = await gm.generate_content_async(
        contents,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    result = ToolCompletion()
    if not response.candidates:
        return result
    for part in response.candidates[0].content.parts:
        call = getattr(part, "function_call", None)
        if call and call.name:
            result.tool_calls.append(ToolCall(call.name, _plain(call.args) or {}))
        elif getattr(part, "text", ""):
            result.text += part.text
    return result


async def _tools_anthropic(
    api_key: str, model: str, system: str, messages: list[dict], tools: list[ToolSpec], max_tokens: int,
) -> ToolCompletion:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=messages,
        tools=[
            {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
            for t in tools
        ],
    )
    result = ToolCompletion()
    for block in response.content:
        if block.type == "tool_use":
            result.tool_calls.append(ToolCall(block.name, dict(block.input)))
        elif block.type == "text":
            result.text += block.text
    return result


async def _tools_openai(
    api_key: str, model: str, system: str, messages: list[dict], tools: list[ToolSpec], max_tokens: int,
) -> ToolCompletion:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}, *messages],
        tools=[{"type": "function", "function": t} for t in tools],
    )
    message = response.choices[0].message
    calls = [
        ToolCall(c.function.name, _parse_arguments(c.function.arguments))
        for c in message.tool_calls or []
    ]
    return ToolCompletion(text=message.content or "", tool_calls=calls)


async def _tools_cohere(
    api_key: str, model: str, system: str, messages: list[dict], tools: list[ToolSpec], max_tokens: int,
) -> ToolCompletion:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}, *messages],
        tools=[{"type": "function", "function": t} for t in tools],
    )
    message = response.message
    calls = [
        ToolCall(c.function.name, _parse_arguments(c.function.arguments))
        for c in message.tool_calls or []
    ]
    text = "".join(c.text for c in message.content or [] if getattr(c, "text", None))
    return ToolCompletion(text=text, tool_calls=calls)


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}

_TOOL_PROVIDERS: dict[_ProviderFn, _ToolProviderFn] = {
    _complete_gemini: _tools_gemini,
    _complete_anthropic: _tools_anthropic,
    _complete_openai: _tools_openai,
    _complete_cohere: _tools_cohere,
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read settings and return (provider_fn, model, api_key)."""
    from src.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


# Lazy singleton — populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""
_tool_provider_fn: _ToolProviderFn | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str,
    user_message: str,
    max_tokens: int = 256,
    history: History | None = None,
) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises on API errors — callers should handle exceptions.
    """
    global _provider_fn, _model, _api_key

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    messages = _build_messages(history, user_message)
    return await _provider_fn(_api_key, _model, system, messages, max_tokens)


async def complete_with_tools(
    system: str,
    user_message: str,
    tools: list[ToolSpec],
    max_tokens: int = 512,
    history: History | None = None,
) -> ToolCompletion:
    """Offer `tools` to the configured provider and return its calls and text.

    Each tool is {"name", "description", "parameters"} with a JSON Schema
    for the parameters. Raises on API errors like `complete()`.
    """
    global _provider_fn, _model, _api_key, _tool_provider_fn

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()
    if _tool_provider_fn is None:
        _tool_provider_fn = _TOOL_PROVIDERS[_provider_fn]

    messages = _build_messages(history, user_message)
    result = await _tool_provider_fn(_api_key, _model, system, messages, tools, max_tokens)
    logger.debug("LLM tool calls: %s", [c.name for c in result.tool_calls])
    return result
