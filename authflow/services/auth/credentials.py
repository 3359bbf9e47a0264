"""
Credential Lifecycle Manager

Persists the outcome of a successful callback: the linked user, the new
token of its identity, the env vars delivered with the profile and, when a
proxy token is configured, a proxy identity for the public GitHub API.
"""
import asyncio
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

import structlog

from authflow.domain.interfaces.stores import IUserStore
from authflow.domain.schemas.provider import ProviderConfig
from authflow.domain.schemas.user import EnvVarValue, Identity, Token, TokenResponse, User, UserEnvVar

logger = structlog.get_logger(__name__)

PUBLIC_GITHUB_AUTH_PROVIDER_ID = "Public-GitHub"
PROXY_TOKEN_SCOPES = ["user:email"]


class CredentialLifecycleManager:
    """Stores users, tokens and the state derived from them."""

    def __init__(self, config: ProviderConfig, user_store: IUserStore):
        self.config = config
        self.user_store = user_store

    async def persist(
        self,
        user: User,
        identity: Identity,
        token_response: TokenResponse,
        scopes: List[str],
        env_vars: Optional[List[EnvVarValue]] = None,
        now: Optional[datetime] = None,
    ) -> Token:
        """
        Store the user and the new token of its identity.

        User and token are stored one after the other and failures propagate;
        env var sync and proxy identity creation follow.

        Args:
            user: Resolved user, identity already attached
            identity: The identity the token belongs to
            token_response: Answer of the token endpoint
            scopes: Scopes granted with this token
            env_vars: Env vars delivered by the profile read
            now: Issue time of the token

        Returns:
            The stored token
        """
        token = Token.from_token_response(token_response, scopes, now=now)

        await self.user_store.store_user(user)
        await self.user_store.store_single_token(identity, token)
        logger.info(
            "token_stored",
            auth_provider_id=identity.auth_provider_id,
            user_id=user.id,
            scopes=token.scopes,
            expiry_date=token.expiry_date.isoformat() if token.expiry_date else None,
        )

        await self.update_env_vars(user, env_vars)
        await self.create_proxy_identity_on_demand(user, identity)
        return token

    async def update_env_vars(self, user: User, env_vars: Optional[List[EnvVarValue]]) -> None:
        """Upsert env vars one by one; a failed item is logged and skipped."""
        if not env_vars:
            return
        try:
            current = await self.user_store.get_env_vars(user.id)
        except Exception as e:
            logger.error("env_var_read_failed", user_id=user.id, error=str(e))
            return
        for env_var in env_vars:
            existing = next(
                (
                    v for v in current
                    if v.name == env_var.name and v.repository_pattern == env_var.repository_pattern
                ),
                None,
            )
            if existing is not None:
                updated = existing.model_copy(update={"value": env_var.value})
            else:
                updated = UserEnvVar(
                    id=str(uuid4()),
                    user_id=user.id,
                    name=env_var.name,
                    value=env_var.value,
                    repository_pattern=env_var.repository_pattern,
                )
            try:
                await self.user_store.set_env_var(updated)
            except Exception as e:
                logger.error(
                    "env_var_update_failed",
                    user_id=user.id,
                    name=env_var.name,
                    repository_pattern=env_var.repository_pattern,
                    error=str(e),
                )

    async def create_proxy_identity_on_demand(self, user: User, original_identity: Identity) -> None:
        proxy_token = self.config.proxy_token
        if not proxy_token:
            return
        if user.get_identity(PUBLIC_GITHUB_AUTH_PROVIDER_ID) is not None:
            return

        # not readonly, so a real GitHub login can take it over later
        proxy_identity = Identity(
            auth_provider_id=PUBLIC_GITHUB_AUTH_PROVIDER_ID,
            auth_id=f"proxy-{original_identity.auth_id}",
            auth_name=f"proxy-{original_identity.auth_name}",
            primary_email=original_identity.primary_email,
            readonly=False,
        )
        user.set_identity(proxy_identity)
        token = Token(
            value=proxy_token,
            username="oauth2",
            scopes=list(PROXY_TOKEN_SCOPES),
            update_date=datetime.now(timezone.utc),
        )
        await asyncio.gather(
            self.user_store.store_user(user),
            self.user_store.store_single_token(proxy_identity, token),
        )
        logger.info("proxy_identity_created", user_id=user.id, auth_name=proxy_identity.auth_name)
