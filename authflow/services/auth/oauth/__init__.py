"""
OAuth2 integration of generic providers.

Token exchange, profile reading and flow state. The provider that ties
them into the login and authorize flows lives in `provider`, imported
directly so the auth context can depend on this package.
"""

from .client import ClientSettings, OAuth2Client, require_access_token
from .profile import FetchCapability, ProfileMapperRegistry, ProfileReader, profile_mappers
from .state_manager import (
    FlowStateStore,
    InMemoryFlowStateStore,
    RedisFlowStateStore,
    get_flow_state_store,
)

__all__ = [
    # Token exchange
    "ClientSettings",
    "OAuth2Client",
    "require_access_token",

    # Profile reading
    "FetchCapability",
    "ProfileMapperRegistry",
    "ProfileReader",
    "profile_mappers",

    # State management
    "FlowStateStore",
    "InMemoryFlowStateStore",
    "RedisFlowStateStore",
    "get_flow_state_store",
]
