"""
Capabilities handed to the flow functions.
"""
from dataclasses import dataclass, field

from authflow.core.config import Settings
from authflow.core.urls import HostUrl
from authflow.domain.interfaces.stores import IAuthProviderService, ISessionService, IUserStore
from authflow.services.auth.oauth.state_manager import FlowStateStore
from authflow.services.user import UserService


@dataclass
class AuthContext:
    """Stores, policies and settings used by a provider integration."""
    settings: Settings
    user_store: IUserStore
    user_service: UserService
    provider_service: IAuthProviderService
    sessions: ISessionService
    flow_states: FlowStateStore
    host_url: HostUrl = field(init=False)

    def __post_init__(self):
        self.host_url = HostUrl(self.settings.HOST_URL, self.settings.API_V1_PREFIX)
