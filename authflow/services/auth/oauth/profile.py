"""
Profile readers.

After the token exchange the flow needs to know who the user is. A provider
either names a URL that answers with the user setup, or a mapping callback
registered in code. Mapping callbacks run under a wall-clock budget and only
receive a fetch capability; nothing configured at runtime is evaluated.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import aiohttp
import structlog
from pydantic import ValidationError

from authflow.core.exceptions import ConfigurationError, ProfileFetchFailure
from authflow.domain.schemas.provider import ProviderConfig
from authflow.domain.schemas.user import AuthUserSetup

logger = structlog.get_logger(__name__)

MapperResult = Union[AuthUserSetup, Dict[str, Any]]
ProfileMapper = Callable[[str, Dict[str, Any], "FetchCapability"], Awaitable[MapperResult]]


class FetchCapability:
    """JSON over HTTP, and nothing else, for profile mappers."""

    def __init__(self, user_agent: str, timeout: Optional[float] = None):
        self.user_agent = user_agent
        self.timeout = timeout

    async def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        return await self._request("GET", url, headers=headers)

    async def post_json(self, url: str, body: Any, headers: Optional[Dict[str, str]] = None) -> Any:
        return await self._request("POST", url, headers=headers, json=body)

    async def _request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> Any:
        request_headers = {"Accept": "application/json", "User-Agent": self.user_agent}
        request_headers.update(headers or {})
        session_kwargs = {}
        if self.timeout is not None:
            session_kwargs["timeout"] = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(**session_kwargs) as session:
            async with session.request(method, url, headers=request_headers, **kwargs) as response:
                if response.status >= 400:
                    raise ProfileFetchFailure(f"{method} {url} answered {response.status}")
                return await response.json(content_type=None)


class ProfileMapperRegistry:
    """Named profile mapping callbacks."""

    def __init__(self):
        self._mappers: Dict[str, ProfileMapper] = {}

    def register(self, name: str) -> Callable[[ProfileMapper], ProfileMapper]:
        def decorator(fn: ProfileMapper) -> ProfileMapper:
            self._mappers[name] = fn
            return fn
        return decorator

    def get(self, name: str) -> Optional[ProfileMapper]:
        return self._mappers.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._mappers


profile_mappers = ProfileMapperRegistry()


def ensure_is_object(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


class ProfileReader:
    """Reads the user setup of one provider."""

    def __init__(
        self,
        config: ProviderConfig,
        registry: Optional[ProfileMapperRegistry] = None,
        mapper_timeout: float = 5.0,
        http_timeout: Optional[float] = None,
    ):
        self.config = config
        self.mapper_timeout = mapper_timeout
        self.http_timeout = http_timeout
        self.name = config.strategy_name
        registry = registry or profile_mappers

        oauth = config.oauth
        self._mapper: Optional[ProfileMapper] = None
        if oauth.config_url:
            return
        if oauth.profile_mapper:
            self._mapper = registry.get(oauth.profile_mapper)
            if self._mapper is None:
                raise ConfigurationError(
                    f"({self.name}) unknown profile mapper: {oauth.profile_mapper}"
                )
            return
        raise ConfigurationError(
            f"({self.name}) is missing configuration for reading of user information."
        )

    async def read(self, access_token: str, token_response: Any) -> AuthUserSetup:
        """
        Read the user setup for a freshly obtained token.

        Raises:
            ProfileFetchFailure: The read failed, timed out or returned garbage
        """
        token_response = ensure_is_object(token_response)
        if self._mapper is not None:
            result = await self._run_mapper(access_token, token_response)
        else:
            result = await self._fetch_from_url(access_token, token_response)
        try:
            return AuthUserSetup.model_validate(result)
        except ValidationError as e:
            logger.error("profile_invalid", provider=self.config.id, error=str(e))
            raise ProfileFetchFailure() from e

    async def _run_mapper(self, access_token: str, token_response: Dict[str, Any]) -> MapperResult:
        fetch = FetchCapability(self.config.user_agent, timeout=self.http_timeout)
        try:
            return await asyncio.wait_for(
                self._mapper(access_token, dict(token_response), fetch),
                timeout=self.mapper_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "profile_mapper_timeout",
                provider=self.config.id,
                mapper=self.config.oauth.profile_mapper,
                timeout=self.mapper_timeout,
            )
            raise ProfileFetchFailure() from e
        except ProfileFetchFailure:
            raise
        except Exception as e:
            logger.error(
                "profile_mapper_failed",
                provider=self.config.id,
                mapper=self.config.oauth.profile_mapper,
                error=str(e),
            )
            raise ProfileFetchFailure() from e

    async def _fetch_from_url(self, access_token: str, token_response: Dict[str, Any]) -> Any:
        config_url = self.config.oauth.config_url
        session_kwargs = {}
        if self.http_timeout is not None:
            session_kwargs["timeout"] = aiohttp.ClientTimeout(total=self.http_timeout)
        try:
            async with aiohttp.ClientSession(**session_kwargs) as session:
                async with session.post(
                    config_url,
                    json={"accessToken": access_token, "tokenResponse": token_response},
                    headers={"Accept": "application/json", "Content-Type": "application/json"},
                ) as response:
                    if response.status >= 400:
                        text = await response.text()
                        raise ProfileFetchFailure(f"Profile URL answered {response.status}: {text[:200]}")
                    return await response.json(content_type=None)
        except ProfileFetchFailure as e:
            logger.error("profile_fetch_failed", provider=self.config.id, config_url=config_url, error=e.message)
            raise ProfileFetchFailure() from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("profile_fetch_failed", provider=self.config.id, config_url=config_url, error=str(e))
            raise ProfileFetchFailure() from e
