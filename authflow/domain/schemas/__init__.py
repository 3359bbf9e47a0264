"""
Domain schemas for the authentication flow.
"""

from .flow import FlowState, PendingError, RequestType
from .provider import AuthProviderInfo, OAuthConfig, ProviderConfig
from .user import (
    AuthUser,
    AuthUserSetup,
    EnvVarValue,
    Identity,
    Token,
    TokenResponse,
    User,
    UserEnvVar,
)

__all__ = [
    # Flow schemas
    "FlowState",
    "PendingError",
    "RequestType",

    # Provider schemas
    "AuthProviderInfo",
    "OAuthConfig",
    "ProviderConfig",

    # User schemas
    "AuthUser",
    "AuthUserSetup",
    "EnvVarValue",
    "Identity",
    "Token",
    "TokenResponse",
    "User",
    "UserEnvVar",
]
