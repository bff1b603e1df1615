"""Utilities for calling self-hosted chat models (Ollama)."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib import error, request

from .config import Config

_CHAT_ENDPOINT = "/api/chat"


class LocalLLMError(RuntimeError):
    """Raised when a local LLM invocation fails."""


def _perform_ollama_request(
    payload: dict[str, Any],
    base_url: str,
    timeout: float,
) -> str:
    """Execute the blocking HTTP request against the Ollama REST API."""

    url = f"{base_url.rstrip('/')}{_CHAT_ENDPOINT}"
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise LocalLLMError(
            f"Ollama chat request failed with status {exc.code}: {body or exc.reason}"
        ) from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Could not reach Ollama at {url}: {exc.reason}") from exc
    except TimeoutError as exc:
        raise LocalLLMError(f"Ollama did not answer within {timeout:.0f}s") from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned non-JSON response.") from exc

    message = parsed.get("message") or {}
    content = message.get("content")
    if not content:
        raise LocalLLMError("Ollama response did not include assistant content.")

    return content


async def call_ollama_chat(
    *,
    messages: list[dict[str, str]],
    llm_model: str,
    base_url: str | None = None,
    timeout: float = 120.0,
    max_tokens: int | None = None,
) -> str:
    """Send a full chat history to a local Ollama model and return the reply.

    ``messages`` uses Ollama's roles (system/user/assistant); a system message,
    if any, is expected first.
    """

    if not messages:
        raise LocalLLMError("Cannot call Ollama with an empty message list.")

    resolved_base = (base_url or Config.OLLAMA_BASE_URL).rstrip("/")

    payload: dict[str, Any] = {
        "model": llm_model,
        "messages": messages,
        "stream": False,
    }
    if max_tokens:
        payload["options"] = {"num_predict": max_tokens}

    return await asyncio.to_thread(
        _perform_ollama_request,
        payload,
        resolved_base,
        timeout,
    )


__all__ = ["LocalLLMError", "call_ollama_chat"]
