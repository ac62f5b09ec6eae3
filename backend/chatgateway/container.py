"""Composition root: builds the gateway's services from Settings.

Everything that holds a connection pool or cache is owned here and closed by
``Gateway.aclose``. There is no module-level cache instance.
"""

import logging

import httpx

from chatgateway.config import Settings
from chatgateway.models.schemas import ProviderConfig
from chatgateway.services.llm import CompletionClient
from chatgateway.services.token_info import TokenInfoCache

logger = logging.getLogger(__name__)


class Gateway:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._timeout = httpx.Timeout(
            settings.completion_timeout_seconds,
            connect=settings.completion_connect_timeout_seconds,
        )
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=self._timeout)
        self.token_cache = TokenInfoCache(
            base_url=settings.market_data_base_url,
            timeout=settings.market_data_timeout_seconds,
        )

    def provider_config(self) -> ProviderConfig:
        s = self.settings
        return ProviderConfig(
            provider=s.ai_provider,
            api_key=s.ai_api_key,
            base_url=s.ai_base_url,
            model=s.ai_model,
            enabled=s.ai_enabled,
        )

    def completion_client(self, config: ProviderConfig | None = None) -> CompletionClient:
        """Client sharing the gateway's connection pool. Defaults to the settings' provider."""
        return CompletionClient(
            config or self.provider_config(),
            http_client=self._http_client,
            timeout=self._timeout,
        )

    async def aclose(self) -> None:
        await self.token_cache.aclose()
        if self._owns_client:
            await self._http_client.aclose()
        logger.debug("Gateway closed")

    async def __aenter__(self) -> "Gateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
