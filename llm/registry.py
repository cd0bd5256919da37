"""
Chat provider registry.

Providers are looked up by id in an explicit table built from settings.
"""

import logging
from typing import Dict, Iterable, List, Optional

import requests

from common.config import Settings
from llm.anthropic_provider import AnthropicChatProvider
from llm.base import ChatProvider, SamplingParams
from llm.gemini_provider import GeminiChatProvider
from llm.openai_provider import OpenAIChatProvider
from llm.qwen_provider import QwenChatProvider
from rag.errors import ValidationError

logger = logging.getLogger(__name__)


class ChatProviderRegistry:
    """Maps provider ids to ChatProvider instances."""

    def __init__(self, providers: Iterable[ChatProvider] = (), default_id: Optional[str] = None):
        self._providers: Dict[str, ChatProvider] = {}
        for provider in providers:
            self.register(provider)
        self.default_id = default_id

    def register(self, provider: ChatProvider) -> None:
        if not provider.provider_id:
            raise ValueError("ChatProvider must define provider_id")
        self._providers[provider.provider_id] = provider

    def get(self, provider_id: Optional[str] = None) -> ChatProvider:
        """
        Resolve a provider by id, or the default one when ``provider_id`` is empty.

        Raises:
            ValidationError: Unknown provider id
        """
        key = (provider_id or self.default_id or "").strip().lower()
        if not key and len(self._providers) == 1:
            key = next(iter(self._providers))
        provider = self._providers.get(key)
        if provider is None:
            raise ValidationError(
                f"Unknown chat provider: {provider_id or key!r}. Known: {', '.join(self.ids()) or 'none'}"
            )
        return provider

    def ids(self) -> List[str]:
        return list(self._providers)

    def available(self) -> List[str]:
        """Ids of providers whose credentials are configured."""
        return [pid for pid, p in self._providers.items() if p.is_configured()]

    def describe(self) -> List[Dict[str, object]]:
        return [
            {
                "id": pid,
                "name": p.display_name,
                "model": p.model,
                "configured": p.is_configured(),
                "default": pid == self.default_id,
            }
            for pid, p in self._providers.items()
        ]


def build_chat_registry(config: Settings, session: Optional[requests.Session] = None) -> ChatProviderRegistry:
    """Build the registry for every id listed in ``chat_providers``."""
    sampling = SamplingParams(
        temperature=config.chat_temperature,
        max_tokens=config.chat_max_tokens,
        top_p=config.chat_top_p,
    )
    common = {"sampling": sampling, "timeout": config.provider_timeout, "session": session}
    factories = {
        "gpt": lambda: OpenAIChatProvider(
            config.openai_api_key, config.openai_chat_model, config.openai_base_url, **common
        ),
        "claude": lambda: AnthropicChatProvider(
            config.anthropic_api_key,
            config.anthropic_chat_model,
            config.anthropic_base_url,
            api_version=config.anthropic_version,
            **common,
        ),
        "gemini": lambda: GeminiChatProvider(
            config.gemini_api_key, config.gemini_chat_model, config.gemini_base_url, **common
        ),
        "qwen": lambda: QwenChatProvider(
            config.qwen_api_key, config.qwen_chat_model, config.qwen_base_url, **common
        ),
    }

    registry = ChatProviderRegistry(default_id=(config.default_chat_provider or "").strip().lower() or None)
    for provider_id in config.chat_providers_list:
        factory = factories.get(provider_id)
        if factory is None:
            logger.warning(f"Ignoring unknown chat provider in CHAT_PROVIDERS: {provider_id!r}")
            continue
        registry.register(factory())

    configured = registry.available()
    if configured:
        logger.info(f"Chat providers configured: {', '.join(configured)}")
    else:
        logger.warning("No chat provider has an API key; /api/chat will answer 503")
    return registry
