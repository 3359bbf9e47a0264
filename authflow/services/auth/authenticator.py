"""
Authenticator.

Owns the provider integrations of the installation and routes incoming
requests to the one responsible for a host or callback path.
"""
from typing import Dict, Iterable, List, Optional

import structlog

from authflow.services.auth.context import AuthContext
from authflow.services.auth.oauth.profile import ProfileMapperRegistry
from authflow.services.auth.oauth.provider import GenericAuthProvider

logger = structlog.get_logger(__name__)


class Authenticator:
    """Registry of the configured auth providers."""

    def __init__(self, providers: Iterable[GenericAuthProvider] = ()):
        self._by_host: Dict[str, GenericAuthProvider] = {}
        for provider in providers:
            self.add(provider)

    @classmethod
    def from_context(
        cls,
        context: AuthContext,
        registry: Optional[ProfileMapperRegistry] = None,
    ) -> "Authenticator":
        """Build integrations for every provider of the settings."""
        providers = [
            GenericAuthProvider(config, context, registry=registry)
            for config in context.settings.AUTH_PROVIDERS
        ]
        return cls(providers)

    def add(self, provider: GenericAuthProvider) -> None:
        if provider.host in self._by_host:
            logger.warning("auth_provider_replaced", host=provider.host)
        self._by_host[provider.host] = provider

    def get_by_host(self, host: str) -> Optional[GenericAuthProvider]:
        return self._by_host.get(host)

    def get_by_callback_path(self, path: str) -> Optional[GenericAuthProvider]:
        for provider in self._by_host.values():
            if provider.callback_path == path:
                return provider
        return None

    @property
    def providers(self) -> List[GenericAuthProvider]:
        return list(self._by_host.values())
