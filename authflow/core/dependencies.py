"""
Dependency injection for FastAPI.
"""
from functools import lru_cache
from typing import Optional
from uuid import uuid4

from fastapi import Depends, Request

from authflow.core.config import Settings, get_settings
from authflow.repositories import (
    InMemoryAuthProviderService,
    InMemorySessionService,
    InMemoryUserStore,
)
from authflow.services.auth.authenticator import Authenticator
from authflow.services.auth.context import AuthContext
from authflow.services.auth.oauth.state_manager import get_flow_state_store
from authflow.services.user import UserService


class SessionCookie:
    """Session id carried by the cookie, minted when the request has none."""

    def __init__(self, session_id: str, is_new: bool = False):
        self.session_id = session_id
        self.is_new = is_new


def build_auth_context(settings: Settings) -> AuthContext:
    """Wire the collaborator stores of a single process."""
    user_store = InMemoryUserStore()
    provider_service = InMemoryAuthProviderService(settings.AUTH_PROVIDERS)
    return AuthContext(
        settings=settings,
        user_store=user_store,
        user_service=UserService(user_store, provider_service, settings),
        provider_service=provider_service,
        sessions=InMemorySessionService(user_store),
        flow_states=get_flow_state_store(settings),
    )


@lru_cache
def get_auth_context() -> AuthContext:
    """
    Get the auth context of this process.

    Returns:
        AuthContext: Stores, policies and settings
    """
    return build_auth_context(get_settings())


@lru_cache
def get_authenticator() -> Authenticator:
    """Get the provider registry built from the settings."""
    return Authenticator.from_context(get_auth_context())


def get_session_cookie(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> SessionCookie:
    """
    Read the session id from the session cookie.

    Args:
        request: FastAPI request object
        settings: Application settings

    Returns:
        Session cookie, new when the request carried none
    """
    session_id: Optional[str] = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if session_id:
        return SessionCookie(session_id)
    return SessionCookie(uuid4().hex, is_new=True)
