"""
Provider abstraction: turn a message history plus system prompt into text.

Two variants sit behind one ``Provider`` interface:
- HostedProvider: hosted chat-completion APIs (Anthropic, OpenAI) called through
  Mirascope; the system prompt travels separately from the message list.
- LocalProvider: a self-hosted Ollama server; the system prompt is folded into
  the message list as its first entry.

Both surface every failure (network, timeout, non-2xx, unparsable or empty body)
as a single ``ProviderError`` and never retry on their own. Retrying is a
scheduling policy and belongs to the battle.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from mirascope import llm
from mirascope.core import BaseMessageParam

from .config import Config
from .local_llm import LocalLLMError, call_ollama_chat
from .prompts import DEFAULT_OPENING
from .schemas import AgentConfig, Message, ProviderKind

# Conversation roles as the chat APIs name them
ROLE_MAP = {"self": "assistant", "other": "user"}


class ProviderError(RuntimeError):
    """A chat call failed. ``provider`` names the backend, the message says why."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.reason = message
        super().__init__(f"{provider}: {message}")


def to_chat_messages(messages: Sequence[Message]) -> List[Dict[str, str]]:
    """Map self/other roles to assistant/user, merging consecutive same-role entries.

    With three or more agents several ``other`` turns arrive back to back;
    chat APIs expect alternating roles, so those are joined into one message.
    """
    merged: List[Dict[str, str]] = []
    for message in messages:
        role = ROLE_MAP[message.role]
        if merged and merged[-1]["role"] == role:
            merged[-1]["content"] = f"{merged[-1]['content']}\n\n{message.content}"
        else:
            merged.append({"role": role, "content": message.content})
    return merged


class Provider(ABC):
    """Pluggable chat backend bound to one model."""

    kind: ProviderKind

    def __init__(
        self,
        model: str,
        *,
        max_tokens: int = Config.DEFAULT_MAX_TOKENS,
        timeout: float = Config.LLM_TIMEOUT_SECONDS,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    @classmethod
    @abstractmethod
    def default_model(cls) -> str:
        """Model used when an agent config does not name one."""

    @abstractmethod
    async def chat(self, messages: Sequence[Message], system_prompt: Optional[str] = None) -> str:
        """
        Produce the next reply for the given history.

        Args:
            messages: Transcript from the responding agent's point of view
            system_prompt: System directive; None means send none

        Returns:
            Reply text

        Raises:
            ProviderError: On any failure to obtain a usable reply
        """

    @property
    def label(self) -> str:
        return f"{self.kind.value}:{self.model}"


class HostedProvider(Provider):
    """Hosted chat-completion API reached through Mirascope's provider-agnostic call."""

    def __init__(
        self,
        model: str,
        *,
        kind: ProviderKind = ProviderKind.ANTHROPIC,
        max_tokens: int = Config.DEFAULT_MAX_TOKENS,
        timeout: float = Config.LLM_TIMEOUT_SECONDS,
    ) -> None:
        if kind is ProviderKind.OLLAMA:
            raise ValueError("HostedProvider does not serve self-hosted models; use LocalProvider")
        super().__init__(model, max_tokens=max_tokens, timeout=timeout)
        self.kind = kind

    @classmethod
    def default_model(cls) -> str:
        return Config.DEFAULT_MODEL

    def build_params(
        self, messages: Sequence[Message], system_prompt: Optional[str]
    ) -> List[BaseMessageParam]:
        chat_messages = to_chat_messages(messages)
        # Hosted APIs want the conversation to open on a user message
        if chat_messages and chat_messages[0]["role"] == "assistant":
            chat_messages.insert(0, {"role": "user", "content": DEFAULT_OPENING})

        params: List[BaseMessageParam] = []
        if system_prompt:
            params.append(BaseMessageParam(role="system", content=system_prompt))
        params.extend(
            BaseMessageParam(role=item["role"], content=item["content"]) for item in chat_messages
        )
        return params

    async def _complete(self, params: List[BaseMessageParam]) -> str:
        @llm.call(
            provider=self.kind.value,
            model=self.model,
            call_params={"max_tokens": self.max_tokens},
        )
        async def _invoke() -> List[BaseMessageParam]:
            return params

        response = await _invoke()
        return response.content

    async def chat(self, messages: Sequence[Message], system_prompt: Optional[str] = None) -> str:
        params = self.build_params(messages, system_prompt)
        try:
            text = await asyncio.wait_for(self._complete(params), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(self.label, f"no response within {self.timeout:.0f}s") from exc
        except Exception as exc:
            raise ProviderError(self.label, str(exc) or exc.__class__.__name__) from exc

        if not text or not text.strip():
            raise ProviderError(self.label, "response contained no text")
        return text


class LocalProvider(Provider):
    """Self-hosted Ollama chat endpoint."""

    kind = ProviderKind.OLLAMA

    def __init__(
        self,
        model: str,
        *,
        endpoint: Optional[str] = None,
        max_tokens: int = Config.DEFAULT_MAX_TOKENS,
        timeout: float = Config.LLM_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(model, max_tokens=max_tokens, timeout=timeout)
        self.endpoint = endpoint or Config.OLLAMA_BASE_URL

    @classmethod
    def default_model(cls) -> str:
        return Config.DEFAULT_LOCAL_MODEL

    def build_messages(
        self, messages: Sequence[Message], system_prompt: Optional[str]
    ) -> List[Dict[str, str]]:
        payload: List[Dict[str, str]] = []
        if system_prompt:
            payload.append({"role": "system", "content": system_prompt})
        payload.extend(to_chat_messages(messages))
        return payload

    async def chat(self, messages: Sequence[Message], system_prompt: Optional[str] = None) -> str:
        try:
            return await call_ollama_chat(
                messages=self.build_messages(messages, system_prompt),
                llm_model=self.model,
                base_url=self.endpoint,
                timeout=self.timeout,
                max_tokens=self.max_tokens,
            )
        except LocalLLMError as exc:
            raise ProviderError(self.label, str(exc)) from exc


def create_provider(config: AgentConfig) -> Provider:
    """Build the provider variant an agent config asks for."""
    if config.provider is ProviderKind.OLLAMA:
        return LocalProvider(
            config.model or LocalProvider.default_model(),
            endpoint=config.endpoint,
            max_tokens=config.max_tokens,
        )
    return HostedProvider(
        config.model or HostedProvider.default_model(),
        kind=config.provider,
        max_tokens=config.max_tokens,
    )


__all__ = [
    "Provider",
    "ProviderError",
    "HostedProvider",
    "LocalProvider",
    "create_provider",
    "to_chat_messages",
]
