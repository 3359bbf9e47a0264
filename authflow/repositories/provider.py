"""
Auth provider repository.
"""
from typing import Dict, Iterable, List, Optional

import structlog

from authflow.domain.interfaces.stores import IAuthProviderService
from authflow.domain.schemas.provider import ProviderConfig

logger = structlog.get_logger(__name__)


class InMemoryAuthProviderService(IAuthProviderService):
    """Holds the configured providers and their verification state."""

    def __init__(self, providers: Iterable[ProviderConfig] = ()):
        self._providers: Dict[str, ProviderConfig] = {p.id: p for p in providers}

    def get(self, id: str) -> Optional[ProviderConfig]:
        return self._providers.get(id)

    def get_by_host(self, host: str) -> Optional[ProviderConfig]:
        for provider in self._providers.values():
            if provider.host == host:
                return provider
        return None

    def all(self) -> List[ProviderConfig]:
        return list(self._providers.values())

    async def mark_as_verified(
        self,
        id: str,
        owner_id: Optional[str],
        new_owner_id: Optional[str] = None,
    ) -> None:
        provider = self._providers.get(id)
        if provider is None:
            raise KeyError(f"Unknown auth provider: {id}")
        if provider.owner_id != owner_id:
            raise PermissionError(f"Auth provider {id} is not owned by {owner_id}")
        provider.verified = True
        if new_owner_id:
            provider.owner_id = new_owner_id
        logger.info(
            "auth_provider_verified",
            auth_provider_id=id,
            owner_id=provider.owner_id,
        )
