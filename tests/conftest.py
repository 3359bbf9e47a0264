"""
Shared fixtures for authflow tests.
"""
import pytest
import pytest_asyncio

from authflow.core.config import Settings
from authflow.core.dependencies import build_auth_context
from authflow.domain.schemas.flow import RequestType
from authflow.services.auth.oauth.provider import GenericAuthProvider
from tests.fixtures.auth import AuthTestData, make_provider_config
from tests.mocks.oauth_providers import MockOAuthProvider


@pytest.fixture
def provider_config():
    """Provider reading profiles from the profile URL."""
    return make_provider_config()


@pytest.fixture
def test_settings(provider_config):
    """Settings with a single provider and in-memory flow states."""
    return Settings(
        _env_file=None,
        HOST_URL=AuthTestData.HOST_URL,
        FLOW_STATE_BACKEND="memory",
        AUTH_PROVIDERS=[provider_config],
    )


@pytest.fixture
def auth_context(test_settings):
    """Fresh in-memory stores per test."""
    return build_auth_context(test_settings)


@pytest.fixture
def mock_provider():
    """Mock provider answering token and profile requests."""
    provider = MockOAuthProvider()
    provider.add("POST", AuthTestData.TOKEN_URL, body=AuthTestData.TOKEN_RESPONSE)
    provider.add("POST", AuthTestData.PROFILE_URL, body=AuthTestData.PROFILE)
    with provider.patch():
        yield provider


@pytest.fixture
def auth_provider(provider_config, auth_context):
    return GenericAuthProvider(provider_config, auth_context)


@pytest_asyncio.fixture
async def login_flow(auth_context):
    """Session with a login flow started."""
    await auth_context.flow_states.begin(
        AuthTestData.SESSION_ID,
        RequestType.LOGIN,
        "https://authflow.example.com/workspaces",
        AuthTestData.PROVIDER_HOST,
    )
    return AuthTestData.SESSION_ID

