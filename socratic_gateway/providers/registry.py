"""Provider registry: one streaming client per configured provider name."""

import logging

from socratic_gateway.config.settings import Settings
from socratic_gateway.providers.anthropic import AnthropicProvider
from socratic_gateway.providers.base import ChatProvider, ProviderError
from socratic_gateway.providers.http_openai import HTTPOpenAIProvider
from socratic_gateway.providers.stub import StubProvider

logger = logging.getLogger("socratic.providers")


class ProviderRegistry:
    def __init__(self) -> None:
        self._providers: dict[str, ChatProvider] = {}

    def register(self, name: str, provider: ChatProvider) -> None:
        self._providers[name] = provider
        logger.info("provider_registered", extra={"provider": name})

    def get(self, name: str) -> ChatProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderError(
                status_code=500,
                code="provider_not_registered",
                message=f"No client registered for provider {name}",
            )
        return provider

    def names(self) -> list[str]:
        return sorted(self._providers)


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    registry = ProviderRegistry()
    if settings.anthropic_api_key:
        registry.register(
            "anthropic",
            AnthropicProvider(
                api_key=settings.anthropic_api_key,
                base_url=settings.anthropic_base_url,
                anthropic_version=settings.anthropic_version,
                timeout_s=settings.provider_timeout_s,
            ),
        )
    if settings.openai_api_key:
        registry.register(
            "openai",
            HTTPOpenAIProvider(
                base_url=settings.openai_base_url,
                api_key=settings.openai_api_key,
                timeout_s=settings.provider_timeout_s,
            ),
        )
    if settings.stub_provider_enabled:
        registry.register("stub", StubProvider())
    return registry
