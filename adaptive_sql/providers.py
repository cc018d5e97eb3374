"""
LLM Providers
=============
Interchangeable completion backends and per-request provider selection.

Default resolution (``ProviderFactory.get_provider()``), re-evaluated on
every call:
    1. Azure OpenAI, when preferred in config and fully configured
    2. OpenAI, when configured
    3. ``FallbackProvider`` (offline, never fails to resolve)

Explicit resolution (``ProviderFactory.get_provider(name)``) never
substitutes: it raises instead.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional, Set

from llama_index.core.llms import ChatMessage, MessageRole

from adaptive_sql.config import AdaptiveConfig, LLMConfig
from adaptive_sql.models import CompletionOptions, StreamingResponse, StreamingResponseKind

logger = logging.getLogger("adaptive_sql.providers")

OPENAI = "openai"
AZURE_OPENAI = "azure_openai"
FALLBACK = "fallback"

_NOT_CONFIGURED_MESSAGE = (
    "No AI provider is configured. Set OPENAI_API_KEY, or set "
    "AZURE_OPENAI_API_KEY, AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_DEPLOYMENT "
    "(with PREFER_AZURE_OPENAI=true to prefer Azure), then retry."
)


class ProviderError(Exception):
    """Base class for provider resolution and invocation errors."""


class UnknownProviderError(ProviderError):
    """Raised when a provider name is not registered."""


class ProviderNotConfiguredError(ProviderError):
    """Raised when a provider lacks the configuration it needs."""


@dataclass(frozen=True)
class ProviderDescriptor:
    name: str
    is_configured: bool


class SQLProvider(ABC):
    """A backend that turns a prompt into a completion."""

    name: str = ""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        raise NotImplementedError

    def describe(self) -> ProviderDescriptor:
        return ProviderDescriptor(name=self.name, is_configured=self.is_configured)

    @abstractmethod
    async def complete(self, prompt: str, options: Optional[CompletionOptions] = None) -> str:
        raise NotImplementedError

    @abstractmethod
    def stream_complete(
        self,
        prompt: str,
        options: Optional[CompletionOptions] = None,
        kind: StreamingResponseKind = StreamingResponseKind.COMPLETION,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# LlamaIndex-backed providers
# ---------------------------------------------------------------------------

class LlamaIndexProvider(SQLProvider):
    """Shared chat/stream plumbing for LlamaIndex LLM integrations.

    Subclasses only decide whether they are configured and how to build
    the underlying LLM.
    """

    def __init__(self, config: LLMConfig) -> None:
        self._config = config

    @abstractmethod
    def _build_llm(self, options: CompletionOptions):
        raise NotImplementedError

    def _messages(self, prompt: str, options: CompletionOptions) -> list:
        messages = []
        if options.system_message:
            messages.append(ChatMessage(role=MessageRole.SYSTEM, content=options.system_message))
        messages.append(ChatMessage(role=MessageRole.USER, content=prompt))
        return messages

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise ProviderNotConfiguredError(
                f"Provider '{self.name}' is not configured. {_NOT_CONFIGURED_MESSAGE}"
            )

    async def complete(self, prompt: str, options: Optional[CompletionOptions] = None) -> str:
        self._require_configured()
        options = options or CompletionOptions()
        llm = self._build_llm(options)
        response = await llm.achat(self._messages(prompt, options))
        return response.message.content or ""

    async def stream_complete(
        self,
        prompt: str,
        options: Optional[CompletionOptions] = None,
        kind: StreamingResponseKind = StreamingResponseKind.COMPLETION,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        self._require_configured()
        options = options or CompletionOptions()
        llm = self._build_llm(options)

        index = 0
        stream = await llm.astream_chat(self._messages(prompt, options))
        async for partial in stream:
            if cancel is not None and cancel.is_set():
                logger.info("%s stream cancelled after %d chunk(s)", self.name, index)
                return
            if not partial.delta:
                continue
            yield StreamingResponse(kind=kind, content=partial.delta, chunk_index=index)
            index += 1

        if cancel is not None and cancel.is_set():
            return
        yield StreamingResponse(kind=kind, content="", is_complete=True, chunk_index=index)


class OpenAIProvider(LlamaIndexProvider):
    """Primary provider: OpenAI chat models."""

    name = OPENAI

    @property
    def is_configured(self) -> bool:
        return self._config.openai.is_complete

    def _build_llm(self, options: CompletionOptions):
        from llama_index.llms.openai import OpenAI as OpenAILLM

        return OpenAILLM(
            model=self._config.openai.model,
            api_key=self._config.openai.api_key,
            temperature=_pick(options.temperature, self._config.temperature),
            max_tokens=_pick(options.max_tokens, self._config.max_tokens),
            timeout=_pick(options.timeout_seconds, self._config.timeout),
        )


class AzureOpenAIProvider(LlamaIndexProvider):
    """Secondary-cloud provider: an Azure OpenAI deployment."""

    name = AZURE_OPENAI

    @property
    def is_configured(self) -> bool:
        return self._config.azure_openai.is_complete

    def _build_llm(self, options: CompletionOptions):
        from llama_index.llms.azure_openai import AzureOpenAI

        azure = self._config.azure_openai
        return AzureOpenAI(
            engine=azure.deployment_name,
            model=azure.model,
            api_key=azure.api_key,
            azure_endpoint=azure.endpoint,
            api_version=azure.api_version,
            temperature=_pick(options.temperature, self._config.temperature),
            max_tokens=_pick(options.max_tokens, self._config.max_tokens),
            timeout=_pick(options.timeout_seconds, self._config.timeout),
        )


def _pick(value, default):
    return default if value is None else value


# ---------------------------------------------------------------------------
# Offline fallback
# ---------------------------------------------------------------------------

class FallbackProvider(SQLProvider):
    """Always-available provider used when nothing real is configured.

    ``complete()`` raises :class:`ProviderNotConfiguredError` with a
    remediation message, since there is nothing left to fall back to.
    ``stream_complete()`` emits a fixed three-chunk placeholder sequence
    with a short delay before each chunk.
    """

    name = FALLBACK

    def __init__(self, chunk_delay: float = 0.1) -> None:
        self.chunk_delay = chunk_delay

    @property
    def is_configured(self) -> bool:
        return True

    async def complete(self, prompt: str, options: Optional[CompletionOptions] = None) -> str:
        raise ProviderNotConfiguredError(_NOT_CONFIGURED_MESSAGE)

    async def stream_complete(
        self,
        prompt: str,
        options: Optional[CompletionOptions] = None,
        kind: StreamingResponseKind = StreamingResponseKind.COMPLETION,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        chunks = (
            ("-- AI provider not configured; showing placeholder output\n", False),
            ("SELECT 1 AS placeholder;", False),
            ("", True),
        )
        for index, (content, is_complete) in enumerate(chunks):
            if await _cancelled_during(self.chunk_delay, cancel):
                logger.info("Fallback stream cancelled before chunk %d", index)
                return
            yield StreamingResponse(
                kind=kind, content=content, is_complete=is_complete, chunk_index=index
            )


async def _cancelled_during(delay: float, cancel: Optional[asyncio.Event]) -> bool:
    """Wait *delay* seconds, returning early with True once *cancel* is set."""
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    if cancel.is_set():
        return True
    try:
        await asyncio.wait_for(cancel.wait(), delay)
    except asyncio.TimeoutError:
        return False
    return True


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class ProviderFactory:
    """Resolves which provider serves a request.

    Nothing is cached between calls: configuration changes take effect on
    the next resolution.

    Args:
        config: ``AdaptiveConfig`` (uses the global singleton if None).
        providers: Registered providers by name. Defaults to OpenAI and
            Azure OpenAI built from *config*.
        fallback: Provider used when nothing registered is configured.
    """

    def __init__(
        self,
        config: Optional[AdaptiveConfig] = None,
        providers: Optional[Dict[str, SQLProvider]] = None,
        fallback: Optional[SQLProvider] = None,
    ) -> None:
        if config is None:
            from adaptive_sql.config import get_config
            config = get_config()
        self._config = config

        if providers is None:
            providers = {
                OPENAI: OpenAIProvider(config.llm),
                AZURE_OPENAI: AzureOpenAIProvider(config.llm),
            }
        self._providers: Dict[str, SQLProvider] = dict(providers)
        self._fallback = fallback or FallbackProvider(config.fallback.chunk_delay_seconds)

    @property
    def registered_names(self) -> Set[str]:
        return set(self._providers)

    def get_provider(self, name: Optional[str] = None) -> SQLProvider:
        """Resolve a provider by name, or by policy when *name* is None.

        Raises:
            ValueError: *name* is an empty string.
            UnknownProviderError: *name* is not registered.
            ProviderNotConfiguredError: *name* is registered but not
                configured.
        """
        if name is None:
            return self._select_default()

        if not name.strip():
            raise ValueError("Provider name must not be empty")

        provider = self._providers.get(name)
        if provider is None:
            raise UnknownProviderError(
                f"Unknown provider '{name}'. Registered: {sorted(self._providers)}"
            )
        if not provider.is_configured:
            raise ProviderNotConfiguredError(
                f"Provider '{name}' is not configured. {_NOT_CONFIGURED_MESSAGE}"
            )
        return provider

    def available_providers(self) -> Set[str]:
        """Names of registered providers that are configured right now."""
        available = set()
        for name, provider in self._providers.items():
            try:
                if provider.is_configured:
                    available.add(name)
            except Exception as e:
                logger.warning("Could not check provider %s: %s", name, e)
        return available

    def _select_default(self) -> SQLProvider:
        azure = self._providers.get(AZURE_OPENAI)
        if self._config.llm.prefer_azure_openai and azure is not None and azure.is_configured:
            logger.debug("Using %s (preferred)", AZURE_OPENAI)
            return azure

        openai = self._providers.get(OPENAI)
        if openai is not None and openai.is_configured:
            logger.debug("Using %s", OPENAI)
            return openai

        logger.warning("No AI provider configured, using offline fallback")
        return self._fallback
