"""
Identity Resolver

Reconciles the identity asserted by a provider with the local users: finds
the user by identity or by e-mail, creates one when policy allows, detects
scopes that a fresh grant would lose and links the identity to the user.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional

import structlog

from authflow.domain.interfaces.stores import IUserStore
from authflow.domain.schemas.provider import ProviderConfig
from authflow.domain.schemas.user import AuthUserSetup, Identity, User
from authflow.services.user import UserService

logger = structlog.get_logger(__name__)


@dataclass
class Resolution:
    """Outcome of a reconciliation."""
    identity: Identity
    user: Optional[User] = None
    terms_acceptance_required: bool = False
    is_blocked: bool = False
    elevate_scopes: Optional[List[str]] = None


def prev_scopes_are_missing(current_scopes: Iterable[str], prev_scopes: Iterable[str]) -> bool:
    """Whether a new grant drops any previously granted scope."""
    return bool(set(prev_scopes) - set(current_scopes))


class IdentityResolver:
    """Links a provider identity to a local user."""

    def __init__(self, config: ProviderConfig, user_store: IUserStore, user_service: UserService):
        self.config = config
        self.user_store = user_store
        self.user_service = user_service

    async def resolve(self, setup: AuthUserSetup, current_user: Optional[User] = None) -> Resolution:
        """
        Resolve the user for a freshly read profile.

        The returned user is updated in memory only; persisting it is left to
        the credential lifecycle.

        Args:
            setup: Profile and granted scopes read from the provider
            current_user: User of the current session, if any

        Returns:
            Resolution with the user (absent when terms must be accepted first)
        """
        auth_provider_id = self.config.id
        auth_user = setup.auth_user
        candidate = Identity(
            auth_provider_id=auth_provider_id,
            auth_id=auth_user.auth_id,
            auth_name=auth_user.auth_name,
            primary_email=auth_user.primary_email,
        )
        user = current_user

        if user is None:
            user = await self.user_store.find_user_by_identity(candidate)
            if user is None and auth_user.primary_email:
                # most recent login first; older duplicates are left to dry out
                users_with_same_email = await self.user_store.find_users_by_email(auth_user.primary_email)
                if users_with_same_email:
                    user = users_with_same_email[0]
        elif not user.has_identity_for(auth_user.auth_id):
            owner = await self.user_store.find_user_by_identity(candidate)
            if owner is not None:
                logger.info(
                    "identity_moved_to_session_user",
                    auth_provider_id=auth_provider_id,
                    auth_name=auth_user.auth_name,
                    from_user_id=owner.id,
                    to_user_id=user.id,
                )

        resolution = Resolution(identity=candidate)
        resolution.terms_acceptance_required = await self.user_service.check_terms_acceptance_required(
            self.config, identity=candidate, user=user,
        )
        if user is None and not resolution.terms_acceptance_required:
            user = await self.user_service.create_user_for_identity(candidate, setup.block_user)

        resolution.is_blocked = await self.user_service.check_is_blocked(
            primary_email=auth_user.primary_email, user=user,
        )
        if user is None:
            return resolution

        existing_identity = user.find_identity(candidate)
        if existing_identity is not None:
            candidate = existing_identity
            token = await self.user_store.find_token_for_identity(existing_identity)
            if token is not None and prev_scopes_are_missing(setup.current_scopes, token.scopes):
                logger.info(
                    "scope_elevation_required",
                    auth_provider_id=auth_provider_id,
                    user_id=user.id,
                    scopes=token.scopes,
                )
                resolution.elevate_scopes = list(token.scopes)

        # renamed account or changed e-mail
        candidate.primary_email = auth_user.primary_email
        candidate.auth_name = auth_user.auth_name
        user.set_identity(candidate)

        user.name = auth_user.auth_name or user.name
        user.avatar_url = auth_user.avatar_url or user.avatar_url

        resolution.user = user
        resolution.identity = candidate
        return resolution
