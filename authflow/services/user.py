"""
User service.

Account policy around the login flow: creating users for new identities,
the terms-of-service requirement and blocked user checks.
"""
from fnmatch import fnmatch
from typing import List, NamedTuple, Optional

import structlog

from authflow.core.config import Settings
from authflow.core.exceptions import AmbiguousIdentity
from authflow.domain.interfaces.stores import IAuthProviderService, IUserStore
from authflow.domain.schemas.provider import ProviderConfig
from authflow.domain.schemas.user import Identity, User

logger = structlog.get_logger(__name__)


class FindUserByIdentityStrResult(NamedTuple):
    user: User
    identity: Identity
    auth_host: str


class BlockedUserFilter:
    """Blocks e-mail addresses matching any of the configured patterns."""

    def __init__(self, patterns: List[str]):
        self.patterns = [p.lower() for p in patterns]

    def is_blocked(self, primary_email: str) -> bool:
        email = primary_email.lower()
        return any(fnmatch(email, pattern) for pattern in self.patterns)


class UserService:
    """User service."""

    def __init__(
        self,
        user_store: IUserStore,
        provider_service: IAuthProviderService,
        settings: Settings,
        blocked_user_filter: Optional[BlockedUserFilter] = None,
    ):
        self.user_store = user_store
        self.provider_service = provider_service
        self.settings = settings
        self.blocked_user_filter = blocked_user_filter or BlockedUserFilter(settings.BLOCKED_EMAIL_PATTERNS)

    async def find_user_by_identity_str(self, identity_str: str) -> Optional[FindUserByIdentityStrResult]:
        """
        Resolve a user from a string of the form <authHost>/<authName>.

        Args:
            identity_str: Host and account name separated by a slash

        Returns:
            User, identity and host if found

        Raises:
            AmbiguousIdentity: Several identities carry that account name
        """
        parts = identity_str.split("/")
        if len(parts) != 2:
            return None
        auth_host, auth_name = parts
        if not auth_host or not auth_name:
            return None
        provider = self.provider_service.get_by_host(auth_host)
        if not provider:
            return None

        identities = await self.user_store.find_identities_by_name(provider.id, auth_name)
        if not identities:
            return None
        if len(identities) > 1:
            # blocks the lookup until the stale account logs in again and gets its name updated
            logger.error(
                "ambiguous_identity_name",
                auth_provider_id=provider.id,
                auth_name=auth_name,
                count=len(identities),
            )
            raise AmbiguousIdentity(auth_name)

        identity = identities[0]
        user = await self.user_store.find_user_by_identity(identity)
        if not user:
            return None
        return FindUserByIdentityStrResult(user=user, identity=identity, auth_host=auth_host)

    async def create_user_for_identity(self, identity: Identity, block_user: bool = False) -> User:
        """
        Create and store a new user owning the given identity.

        Args:
            identity: The identity the user logged in with
            block_user: Whether the profile reader asked to block the user

        Returns:
            Created user
        """
        logger.debug(
            "creating_new_user",
            auth_provider_id=identity.auth_provider_id,
            auth_name=identity.auth_name,
            login_flow=True,
        )
        new_user = await self.user_store.new_user()
        new_user.blocked = block_user
        new_user.set_identity(identity)
        self._handle_new_user(new_user)
        return await self.user_store.store_user(new_user)

    def _handle_new_user(self, new_user: User) -> None:
        if self.settings.BLOCK_NEW_USERS:
            new_user.blocked = True
        if self.settings.MAKE_NEW_USERS_ADMIN:
            new_user.roles_or_permissions = ["admin"]

    async def check_terms_acceptance_required(
        self,
        config: ProviderConfig,
        identity: Optional[Identity] = None,
        user: Optional[User] = None,
    ) -> bool:
        """Whether the terms of service must be accepted before continuing."""
        if config.require_tos is False:
            return False
        user_count = await self.user_store.get_user_count()
        return user_count == 0

    async def check_is_blocked(
        self,
        primary_email: Optional[str] = None,
        user: Optional[User] = None,
    ) -> bool:
        if user and user.blocked:
            return True
        if primary_email:
            return self.blocked_user_filter.is_blocked(primary_email)
        return False
