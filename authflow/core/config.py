"""
Application configuration management using Pydantic Settings.
"""
from functools import lru_cache
from typing import Annotated, Any, List, Optional

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from authflow.domain.schemas.provider import ProviderConfig


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    APP_NAME: str = "authflow"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = Field(default="development", pattern="^(development|staging|production)$")

    # API
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "authflow API"

    # Public base URL for dashboard, sorry and terms pages
    HOST_URL: str = "http://localhost:8000"

    # Session transport
    SESSION_COOKIE_NAME: str = "_authflow_session"

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_URL: Optional[RedisDsn] = Field(default=None, validate_default=True)

    # Flow state
    FLOW_STATE_BACKEND: str = Field(default="memory", pattern="^(memory|redis)$")
    FLOW_STATE_TTL_SECONDS: int = 600  # 10 minutes

    # Profile mapping callbacks run under this wall-clock budget
    PROFILE_MAPPER_TIMEOUT_SECONDS: float = 5.0

    # Total timeout for provider HTTP calls; unset keeps the client default
    OAUTH_HTTP_TIMEOUT_SECONDS: Optional[float] = None

    # Account policy
    BLOCK_NEW_USERS: bool = False
    MAKE_NEW_USERS_ADMIN: bool = False
    BLOCKED_EMAIL_PATTERNS: Annotated[List[str], NoDecode] = Field(default_factory=list)

    # Appended as `state` to authorization requests of preview deployments
    DEV_BRANCH: Optional[str] = None

    # Auth providers
    AUTH_PROVIDERS: List[ProviderConfig] = Field(default_factory=list)

    @field_validator("REDIS_URL", mode="before")
    @classmethod
    def assemble_redis_connection(cls, v: Optional[str], info) -> str:
        if v:
            return v
        values = info.data
        host = values.get("REDIS_HOST", "localhost")
        port = values.get("REDIS_PORT", 6379)
        db = values.get("REDIS_DB", 0)
        password = values.get("REDIS_PASSWORD")
        if password:
            return f"redis://:{password}@{host}:{port}/{db}"
        return f"redis://{host}:{port}/{db}"

    @field_validator("BLOCKED_EMAIL_PATTERNS", mode="before")
    @classmethod
    def assemble_blocked_patterns(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == "development"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()


# Create a settings instance for easy import
settings = get_settings()
