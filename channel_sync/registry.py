"""
Per-account client registry
Lazily builds and caches one ResilientClient (with its own limiter and breaker) per sync configuration
"""

import asyncio
from typing import Any, Callable, Dict, Optional

from channel_sync.client import ResilientClient
from channel_sync.config import SyncSettings
from channel_sync.storage.configurations import SyncConfigurationRepository, validate_configuration
from channel_sync.storage.models import SyncConfiguration
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.registry")

ClientBuilder = Callable[[SyncConfiguration, str], ResilientClient]


class ClientRegistry:
    """
    Mapping from configuration id to its ResilientClient.

    Clients are created on first use and reused for the life of the process,
    so rate-limit and breaker state accumulate per account. Pass the registry
    explicitly to the components that need remote access.
    """

    def __init__(
        self,
        settings: SyncSettings,
        configurations: SyncConfigurationRepository,
        builder: Optional[ClientBuilder] = None,
    ):
        self.settings = settings
        self.configurations = configurations
        self._builder = builder or self._default_builder
        self._clients: Dict[str, ResilientClient] = {}
        self._lock = asyncio.Lock()

    def _default_builder(self, config: SyncConfiguration, api_key: str) -> ResilientClient:
        return ResilientClient.from_settings(
            account=f"{config.hotel_id}:{config.remote_hotel_id}",
            base_url=config.base_url,
            api_key=api_key,
            settings=self.settings,
        )

    async def get(self, config: SyncConfiguration) -> ResilientClient:
        """Return the cached client for a configuration, building it if needed."""
        client = self._clients.get(config.id)
        if client is not None:
            return client

        async with self._lock:
            client = self._clients.get(config.id)
            if client is None:
                validate_configuration(config)
                api_key = self.configurations.decrypt_api_key(config)
                client = self._builder(config, api_key)
                self._clients[config.id] = client
                logger.info("remote_client_created", config_id=config.id, account=client.account)
        return client

    async def evict(self, config_id: str) -> None:
        """Drop a client, e.g. after its credentials changed."""
        async with self._lock:
            client = self._clients.pop(config_id, None)
        if client is not None:
            await client.aclose()
            logger.info("remote_client_evicted", config_id=config_id)

    def __contains__(self, config_id: str) -> bool:
        return config_id in self._clients

    def stats(self) -> Dict[str, Any]:
        return {config_id: client.stats() for config_id, client in self._clients.items()}

    async def aclose(self) -> None:
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.aclose()
