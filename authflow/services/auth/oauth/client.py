"""
OAuth2 Token Exchange Client

Talks to the provider's authorization and token endpoints: builds the
consent redirect, exchanges authorization codes and refreshes tokens.
Refresh runs with its own client settings but the same credentials and
endpoints as the code exchange.
"""
import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

import aiohttp
import structlog

from authflow.core.exceptions import (
    OAuthTransportError,
    ProviderError,
    RefreshFailure,
    TokenExchangeFailure,
)
from authflow.domain.schemas.provider import ProviderConfig
from authflow.domain.schemas.user import TokenResponse

logger = structlog.get_logger(__name__)


@dataclass
class ClientSettings:
    """Transport policy of one OAuth2 client instance."""
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None


def parse_token_body(text: str) -> Dict[str, Any]:
    """Parse a token endpoint body; some providers answer form encoded."""
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError:
        return dict(parse_qsl(text))
    return data if isinstance(data, dict) else {}


def require_access_token(response: TokenResponse) -> TokenResponse:
    """
    Normalize a token response whose status looked fine.

    Providers don't always signal errors explicitly, so a body with neither
    an error nor an access token counts as a failed exchange.

    Raises:
        ProviderError: The body carries an error field
        TokenExchangeFailure: The body carries no access token
    """
    if response.error:
        raise ProviderError(response.error, response.error_description)
    if not response.access_token:
        raise TokenExchangeFailure(data=response.model_dump(exclude_none=True))
    return response


class OAuth2Client:
    """OAuth2 client for one provider."""

    def __init__(
        self,
        config: ProviderConfig,
        dev_branch: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.config = config
        self.oauth = config.oauth
        self.dev_branch = dev_branch
        self.scope_separator = self.oauth.scope_separator or " "

        headers = {"User-Agent": config.user_agent, "Accept": "application/json"}
        self.exchange_settings = ClientSettings(
            headers=dict(headers),
            timeout=timeout,
        )
        # second client for refresh, configured separately
        self.refresh_settings = ClientSettings(
            headers=dict(headers),
            timeout=timeout,
        )

    @property
    def name(self) -> str:
        return self.config.strategy_name

    def authorization_params(self) -> Dict[str, str]:
        params = dict(self.oauth.authorization_params)
        if self.dev_branch:
            params["state"] = self.dev_branch
        return params

    def build_authorization_url(self, scopes: Optional[List[str]] = None) -> str:
        """
        Generate the provider's consent URL.

        Args:
            scopes: Scopes overriding the configured ones (elevation)

        Returns:
            Authorization URL
        """
        scopes = scopes if scopes is not None else self.config.scopes
        params = {
            "response_type": "code",
            "client_id": self.oauth.client_id,
            "redirect_uri": self.oauth.callback_url,
        }
        if scopes:
            params["scope"] = self.scope_separator.join(scopes)
        params.update(self.authorization_params())

        separator = "&" if "?" in self.oauth.authorization_url else "?"
        url = f"{self.oauth.authorization_url}{separator}{urlencode(params)}"
        logger.info(
            "oauth_authorization_url_generated",
            provider=self.config.id,
            scopes=scopes,
        )
        return url

    async def exchange_code(self, code: str) -> TokenResponse:
        """
        Exchange an authorization code for a token.

        Raises:
            ProviderError: The provider rejected the code
            TokenExchangeFailure: No usable token in a successful answer
            OAuthTransportError: Network failure or server error
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.oauth.callback_url,
            "client_id": self.oauth.client_id,
            "client_secret": self.oauth.client_secret,
        }
        status, body = await self._request_token(data, self.exchange_settings)
        response = self._classify(status, body)
        response = require_access_token(response)
        logger.info(
            "oauth_tokens_obtained",
            provider=self.config.id,
            has_refresh_token=bool(response.refresh_token),
            expires_in=response.expires_in,
        )
        return response

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """
        Request a new access token with a refresh token.

        Raises:
            RefreshFailure: Any failure of the refresh request
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.oauth.client_id,
            "client_secret": self.oauth.client_secret,
        }
        try:
            status, body = await self._request_token(data, self.refresh_settings)
            response = require_access_token(self._classify(status, body))
        except (ProviderError, TokenExchangeFailure, OAuthTransportError) as e:
            logger.error(
                "oauth_token_refresh_failed",
                provider=self.config.id,
                error_type=type(e).__name__,
                error=e.message,
            )
            raise RefreshFailure(
                f"Cannot refresh token for {self.config.id}: {e.message}",
                auth_provider_id=self.config.id,
            ) from e
        return response

    def _classify(self, status: int, body: Dict[str, Any]) -> TokenResponse:
        response = TokenResponse.model_validate(body)
        if status >= 400:
            if response.error:
                logger.info(
                    "oauth_token_error",
                    provider=self.config.id,
                    status=status,
                    error=response.error,
                )
                raise ProviderError(response.error, response.error_description)
            logger.error("oauth_token_request_failed", provider=self.config.id, status=status)
            raise OAuthTransportError("Failed to obtain access token", status=status)
        return response

    async def _request_token(self, data: Dict[str, str], settings: ClientSettings) -> Tuple[int, Dict[str, Any]]:
        headers = dict(settings.headers)
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        try:
            async with aiohttp.ClientSession(**self._session_kwargs(settings)) as session:
                async with session.post(self.oauth.token_url, data=data, headers=headers) as response:
                    text = await response.text()
                    return response.status, parse_token_body(text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("oauth_token_request_error", provider=self.config.id, error=str(e))
            raise OAuthTransportError(f"Failed to connect to {self.config.host}: {e}") from e

    def _session_kwargs(self, settings: ClientSettings) -> Dict[str, Any]:
        if settings.timeout is None:
            return {}
        return {"timeout": aiohttp.ClientTimeout(total=settings.timeout)}
