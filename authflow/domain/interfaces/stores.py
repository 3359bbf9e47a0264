"""
Collaborator interfaces consumed by the authentication flow.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from authflow.domain.schemas.provider import ProviderConfig
from authflow.domain.schemas.user import Identity, Token, User, UserEnvVar


class IUserStore(ABC):
    """Persistence of users, their identities, tokens and env vars."""

    @abstractmethod
    async def new_user(self) -> User:
        """Create an unsaved user with a fresh id."""
        pass

    @abstractmethod
    async def store_user(self, user: User) -> User:
        """Insert or update a user."""
        pass

    @abstractmethod
    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        """Get a user by id."""
        pass

    @abstractmethod
    async def find_user_by_identity(self, identity: Identity) -> Optional[User]:
        """Get the user owning (provider id, auth id)."""
        pass

    @abstractmethod
    async def find_users_by_email(self, email: str) -> List[User]:
        """Users with an identity using this e-mail, most recent login first."""
        pass

    @abstractmethod
    async def find_identities_by_name(self, auth_provider_id: str, auth_name: str) -> List[Identity]:
        """All identities of a provider carrying this account name."""
        pass

    @abstractmethod
    async def get_user_count(self) -> int:
        """Number of stored users."""
        pass

    @abstractmethod
    async def store_single_token(self, identity: Identity, token: Token) -> Token:
        """Replace the token of an identity."""
        pass

    @abstractmethod
    async def find_token_for_identity(self, identity: Identity) -> Optional[Token]:
        """Current token of an identity."""
        pass

    @abstractmethod
    async def get_env_vars(self, user_id: str) -> List[UserEnvVar]:
        """Env vars of a user."""
        pass

    @abstractmethod
    async def set_env_var(self, env_var: UserEnvVar) -> None:
        """Insert or update an env var."""
        pass


class IAuthProviderService(ABC):
    """Lookups and mutations on the provider catalog."""

    @abstractmethod
    def get_by_host(self, host: str) -> Optional[ProviderConfig]:
        """Provider configured for a host."""
        pass

    @abstractmethod
    async def mark_as_verified(
        self,
        id: str,
        owner_id: Optional[str],
        new_owner_id: Optional[str] = None,
    ) -> None:
        """Mark a provider verified, optionally transferring ownership."""
        pass


class ISessionService(ABC):
    """Session transport as seen by the flow."""

    @abstractmethod
    async def get_user(self, session_id: str) -> Optional[User]:
        """User logged in with this session."""
        pass

    @abstractmethod
    async def login(self, session_id: str, user: User, blocked: bool = False) -> None:
        """Establish a session for the user."""
        pass
