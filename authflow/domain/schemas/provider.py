"""
Auth provider configuration schemas.
"""
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field


class OAuthConfig(BaseModel):
    """OAuth2 endpoints and client credentials of a provider."""
    client_id: str
    client_secret: str
    callback_url: str
    authorization_url: str
    token_url: str
    scope: Optional[str] = None
    scope_separator: Optional[str] = None
    authorization_params: Dict[str, str] = Field(default_factory=dict)
    settings_url: Optional[str] = None

    # Profile fetch: either a URL answering with the user setup or the
    # name of a registered mapping callback.
    config_url: Optional[str] = None
    profile_mapper: Optional[str] = None


class ProviderConfig(BaseModel):
    """An auth provider as configured for this installation."""
    id: str
    host: str
    type: str = "generic"
    builtin: bool = True
    verified: bool = True
    owner_id: Optional[str] = None
    require_tos: bool = True
    params: Dict[str, Any] = Field(default_factory=dict)
    oauth: OAuthConfig

    @property
    def scopes(self) -> List[str]:
        """Configured scopes split by the provider's separator."""
        if not self.oauth.scope:
            return []
        separator = self.oauth.scope_separator or " "
        return [s.strip() for s in self.oauth.scope.split(separator) if s.strip()]

    @property
    def callback_path(self) -> str:
        return urlparse(self.oauth.callback_url).path

    @property
    def user_agent(self) -> str:
        return urlparse(self.oauth.callback_url).hostname or ""

    @property
    def strategy_name(self) -> str:
        return f"Auth-With-{self.host}"

    @property
    def proxy_token(self) -> Optional[str]:
        return self.params.get("proxy_token")


class AuthProviderInfo(BaseModel):
    """Public description of a provider."""
    model_config = ConfigDict(populate_by_name=True)

    auth_provider_id: str = Field(alias="authProviderId")
    auth_provider_type: str = Field(alias="authProviderType")
    host: str
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    verified: bool
    scopes: List[str] = Field(default_factory=list)
    settings_url: Optional[str] = Field(default=None, alias="settingsUrl")
    requirements: Dict[str, List[str]] = Field(default_factory=dict)
