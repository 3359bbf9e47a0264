"""
In-memory collaborator stores.
"""
from .provider import InMemoryAuthProviderService
from .session import InMemorySessionService
from .user import InMemoryUserStore

__all__ = ["InMemoryAuthProviderService", "InMemorySessionService", "InMemoryUserStore"]
