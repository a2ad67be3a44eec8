"""Named lookup of OAuth2 provider clients.

Populated once during application startup, then only read. Clients are
immutable, so the registry hands out the shared instance and concurrent
requests never contend on it.
"""

import logging
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Optional

import httpx

from codegrant.exceptions import ProviderConfigError, UnknownProviderError
from codegrant.schemas.oauth2 import ProviderConfig
from codegrant.services.oauth2_client import AuthorizationCodeClient
from codegrant.utils.security import sanitize_log_message
from codegrant.utils.url_validation import validate_endpoint_url

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Read-only mapping of provider name to AuthorizationCodeClient."""

    def __init__(self, clients: Optional[Dict[str, AuthorizationCodeClient]] = None):
        self._clients = MappingProxyType(dict(clients or {}))

    @classmethod
    def from_configs(
        cls,
        configs: Iterable[ProviderConfig],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        allow_insecure: bool = False,
    ) -> "ClientRegistry":
        """Build the registry from provider configurations.

        Args:
            configs: Provider configurations
            transport: Optional httpx transport shared by every client
            allow_insecure: Accept http endpoints on loopback hosts

        Raises:
            ProviderConfigError: On duplicate names or unsafe endpoints
        """
        clients: Dict[str, AuthorizationCodeClient] = {}
        for config in configs:
            if config.name in clients:
                raise ProviderConfigError(f"Provider '{config.name}' configured twice")
            for url in (config.authorize_url, config.token_url, config.profile_url):
                validate_endpoint_url(url, allow_insecure=allow_insecure)
            clients[config.name] = AuthorizationCodeClient(config, transport=transport)
            logger.info("Registered OAuth2 provider: %s", config.name)
        return cls(clients)

    def get(self, provider: str) -> AuthorizationCodeClient:
        """Look up the client for a provider.

        Raises:
            UnknownProviderError: If the provider is not configured
        """
        client = self._clients.get(provider)
        if client is None:
            logger.warning("Unknown OAuth2 provider requested: %s", sanitize_log_message(provider))
            raise UnknownProviderError(provider)
        return client

    def names(self) -> list[str]:
        return sorted(self._clients)

    def __contains__(self, provider: object) -> bool:
        return provider in self._clients

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._clients)
