"""
User, identity and credential schemas.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """An external account as known to one provider."""
    auth_provider_id: str
    auth_id: str
    auth_name: str
    primary_email: Optional[str] = None
    readonly: bool = False
    deleted: bool = False

    @staticmethod
    def equals(a: "Identity", b: "Identity") -> bool:
        return a.auth_provider_id == b.auth_provider_id and a.auth_id == b.auth_id


class User(BaseModel):
    """Local user. Holds at most one identity per provider."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    creation_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_login: Optional[datetime] = None
    blocked: bool = False
    roles_or_permissions: List[str] = Field(default_factory=list)
    identities: Dict[str, Identity] = Field(default_factory=dict)

    def get_identity(self, auth_provider_id: str) -> Optional[Identity]:
        return self.identities.get(auth_provider_id)

    def set_identity(self, identity: Identity) -> None:
        """Attach an identity, evicting any other for the same provider."""
        self.identities[identity.auth_provider_id] = identity

    def has_identity_for(self, auth_id: str) -> bool:
        return any(i.auth_id == auth_id for i in self.identities.values())

    def find_identity(self, candidate: Identity) -> Optional[Identity]:
        identity = self.identities.get(candidate.auth_provider_id)
        if identity and Identity.equals(identity, candidate):
            return identity
        return None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles_or_permissions


class Token(BaseModel):
    """Access credential of one identity."""
    value: str
    scopes: List[str] = Field(default_factory=list)
    username: str = "oauth2"
    refresh_token: Optional[str] = None
    update_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expiry_date: Optional[datetime] = None

    @classmethod
    def from_token_response(
        cls,
        response: "TokenResponse",
        scopes: List[str],
        now: Optional[datetime] = None,
    ) -> "Token":
        """Build a token, turning the relative `expires_in` into a date."""
        now = now or datetime.now(timezone.utc)
        return cls(
            value=response.access_token,
            scopes=list(scopes),
            refresh_token=response.refresh_token,
            update_date=now,
            expiry_date=expiry_from(response.expires_in, now),
        )


def expiry_from(expires_in: Any, now: datetime) -> Optional[datetime]:
    # only numeric lifetimes count; "3600" or 0 leave the expiry unset
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or not expires_in:
        return None
    return now + timedelta(seconds=expires_in)


class TokenResponse(BaseModel):
    """Token endpoint answer for both code exchange and refresh."""
    model_config = ConfigDict(extra="allow")

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[Any] = None
    scope: Optional[str] = None
    token_type: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class UserEnvVar(BaseModel):
    """Environment value kept per user and repository pattern."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str
    value: str
    repository_pattern: str = "*/*"


class EnvVarValue(BaseModel):
    """Environment value as delivered by a profile reader."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    value: str
    repository_pattern: str = Field(default="*/*", alias="repositoryPattern")


class AuthUser(BaseModel):
    """User profile as asserted by the provider."""
    model_config = ConfigDict(populate_by_name=True)

    auth_id: str = Field(alias="authId")
    auth_name: str = Field(alias="authName")
    primary_email: Optional[str] = Field(default=None, alias="primaryEmail")
    name: Optional[str] = None
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")


class AuthUserSetup(BaseModel):
    """Result of a profile read: who the user is and what they granted."""
    model_config = ConfigDict(populate_by_name=True)

    auth_user: AuthUser = Field(alias="authUser")
    current_scopes: List[str] = Field(default_factory=list, alias="currentScopes")
    env_vars: Optional[List[EnvVarValue]] = Field(default=None, alias="envVars")
    block_user: bool = Field(default=False, alias="blockUser")
