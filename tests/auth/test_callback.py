"""
Tests for the generic auth provider.

Drives the initiator, the callback dispatcher and token refresh against a
mock provider and in-memory stores.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest

from authflow.core.exceptions import ConfigurationError, RefreshFailure
from authflow.domain.schemas.flow import RequestType
from authflow.domain.schemas.user import Identity, Token, User
from authflow.services.auth.oauth.provider import FlowRequest, FlowResponse, is_oauth_error
from tests.fixtures.auth import (
    AuthTestData,
    make_profile,
    make_provider_config,
    run_callback,
    sorry_message,
)

RETURN_TO = "https://authflow.example.com/workspaces"
DASHBOARD = "https://authflow.example.com/"


def linked_identity():
    return Identity(
        auth_provider_id=AuthTestData.PROVIDER_ID,
        auth_id="4711",
        auth_name="octo",
        primary_email="octo@example.com",
    )


async def begin_flow(auth_context, request_type=RequestType.LOGIN):
    await auth_context.flow_states.begin(
        AuthTestData.SESSION_ID, request_type, RETURN_TO, AuthTestData.PROVIDER_HOST,
    )


class TestInitiator:
    """Test starting login and authorize flows."""

    @pytest.mark.asyncio
    async def test_login_redirects_to_provider(self, auth_provider, auth_context):
        """Test a login flow is recorded and the consent page requested."""
        # Arrange
        response = FlowResponse()

        # Act
        await auth_provider.authorize(
            FlowRequest(session_id=AuthTestData.SESSION_ID), response, RequestType.LOGIN, RETURN_TO,
        )

        # Assert
        assert response.location.startswith(AuthTestData.AUTHORIZATION_URL)
        state = await auth_context.flow_states.get(AuthTestData.SESSION_ID)
        assert state.request_type == RequestType.LOGIN
        assert state.return_to == RETURN_TO
        assert state.host == AuthTestData.PROVIDER_HOST

    @pytest.mark.asyncio
    async def test_login_when_logged_in(self, auth_provider, auth_context):
        """Test logged in sessions go straight to the dashboard."""
        await auth_context.sessions.login(AuthTestData.SESSION_ID, User())
        response = FlowResponse()

        await auth_provider.authorize(
            FlowRequest(session_id=AuthTestData.SESSION_ID), response, RequestType.LOGIN, RETURN_TO,
        )

        assert response.location == DASHBOARD
        assert await auth_context.flow_states.get(AuthTestData.SESSION_ID) is None

    @pytest.mark.asyncio
    async def test_authorize_requires_login(self, auth_provider, auth_context):
        response = FlowResponse()

        await auth_provider.authorize(
            FlowRequest(session_id=AuthTestData.SESSION_ID), response, RequestType.AUTHORIZE, RETURN_TO,
        )

        assert "/sorry#" in response.location
        assert await auth_context.flow_states.get(AuthTestData.SESSION_ID) is None

    @pytest.mark.asyncio
    async def test_authorize_with_scopes(self, auth_provider, auth_context):
        """Test elevation scopes override the configured ones."""
        # Arrange
        await auth_context.sessions.login(AuthTestData.SESSION_ID, User())
        response = FlowResponse()

        # Act
        await auth_provider.authorize(
            FlowRequest(session_id=AuthTestData.SESSION_ID),
            response,
            RequestType.AUTHORIZE,
            RETURN_TO,
            scopes=["read_user", "api", "admin"],
        )

        # Assert
        query = parse_qs(urlparse(response.location).query)
        assert query["scope"] == ["read_user api admin"]
        state = await auth_context.flow_states.get(AuthTestData.SESSION_ID)
        assert state.request_type == RequestType.AUTHORIZE

    @pytest.mark.asyncio
    async def test_existing_flow_kept(self, auth_provider, auth_context):
        """Test a matching flow is reused with its patched fields."""
        await begin_flow(auth_context)
        await auth_context.flow_states.replace(AuthTestData.SESSION_ID, elevate_scopes=["api"])

        await auth_provider.authorize(
            FlowRequest(session_id=AuthTestData.SESSION_ID), FlowResponse(), RequestType.LOGIN, RETURN_TO,
        )

        state = await auth_context.flow_states.get(AuthTestData.SESSION_ID)
        assert state.elevate_scopes == ["api"]


class TestCallbackGuards:
    """Test the checks before any token exchange."""

    @pytest.mark.asyncio
    async def test_duplicate_callback_is_noop(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test a callback with a response already sent changes nothing."""
        # Arrange
        response = FlowResponse()
        response.redirect(RETURN_TO)
        before = await auth_context.flow_states.get(AuthTestData.SESSION_ID)

        # Act
        await auth_provider.callback(
            FlowRequest(session_id=AuthTestData.SESSION_ID, query_params={"code": "auth-code"}),
            response,
        )

        # Assert
        assert response.location == RETURN_TO
        assert mock_provider.calls == []
        assert await auth_context.flow_states.get(AuthTestData.SESSION_ID) == before
        assert await auth_context.user_store.get_user_count() == 0

    @pytest.mark.asyncio
    async def test_already_logged_in_without_flow(self, auth_provider, auth_context, mock_provider):
        await auth_context.sessions.login(AuthTestData.SESSION_ID, User())

        response = await run_callback(auth_provider, code="auth-code")

        assert response.location == DASHBOARD
        assert mock_provider.calls == []

    @pytest.mark.asyncio
    async def test_already_logged_in_with_login_flow(self, auth_provider, auth_context, mock_provider, login_flow):
        await auth_context.sessions.login(AuthTestData.SESSION_ID, User())

        response = await run_callback(auth_provider, code="auth-code")

        assert response.location == DASHBOARD

    @pytest.mark.asyncio
    async def test_missing_flow_state(self, auth_provider, mock_provider):
        """Test a callback without flow is sent to the sorry page."""
        response = await run_callback(auth_provider, code="auth-code")

        assert response.location.startswith("https://authflow.example.com/sorry#")
        assert sorry_message(response.location) == "Please allow Cookies in your browser and try to log in again."
        assert mock_provider.calls == []

    @pytest.mark.asyncio
    async def test_provider_error(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test access_denied keeps the flow, records the error and skips the exchange."""
        # Act
        response = await run_callback(auth_provider, error="access_denied")

        # Assert
        assert sorry_message(response.location) == "OAuth2 error. (access_denied)"
        assert mock_provider.calls == []
        state = await auth_context.flow_states.get(AuthTestData.SESSION_ID)
        assert state is not None
        assert state.request_type == RequestType.LOGIN
        assert state.return_to == RETURN_TO
        assert state.pending_error.code == "access_denied"
        assert state.pending_error.message == "OAuth2 error. (access_denied)"

    @pytest.mark.asyncio
    async def test_missing_code(self, auth_provider, mock_provider, login_flow):
        response = await run_callback(auth_provider)

        assert "/sorry#" in response.location
        assert mock_provider.calls == []


class TestLoginCallback:
    """Test the login path."""

    @pytest.mark.asyncio
    async def test_new_visitor_login(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test a new visitor gets a user, a token and a session."""
        # Act
        response = await run_callback(auth_provider, code="auth-code")

        # Assert
        assert response.location == RETURN_TO
        user = await auth_context.sessions.get_user(AuthTestData.SESSION_ID)
        assert user is not None
        assert user.get_identity(AuthTestData.PROVIDER_ID).auth_name == "octo"
        assert user.is_admin
        token = await auth_context.user_store.find_token_for_identity(linked_identity())
        assert token.value == "access-token-1"
        assert token.scopes == ["read_user", "api"]
        assert token.expiry_date is not None
        assert await auth_context.flow_states.get(AuthTestData.SESSION_ID) is None

    @pytest.mark.asyncio
    async def test_existing_user_login(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test a returning user is logged in without a new account."""
        # Arrange
        store = auth_context.user_store
        await store.store_user(User(name="first"))
        existing = User()
        existing.set_identity(linked_identity())
        existing = await store.store_user(existing)

        # Act
        response = await run_callback(auth_provider, code="auth-code")

        # Assert
        assert response.location == RETURN_TO
        user = await auth_context.sessions.get_user(AuthTestData.SESSION_ID)
        assert user.id == existing.id
        assert not user.is_admin
        assert await store.get_user_count() == 2

    @pytest.mark.asyncio
    async def test_token_exchange_without_access_token(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test an empty token answer never logs in."""
        mock_provider.add("POST", AuthTestData.TOKEN_URL, body={"token_type": "bearer"})

        response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "OAuth Error. Please try again."
        assert await auth_context.sessions.get_user(AuthTestData.SESSION_ID) is None
        assert mock_provider.calls_to(AuthTestData.PROFILE_URL) == []

    @pytest.mark.asyncio
    async def test_rejected_code(self, auth_provider, mock_provider, login_flow):
        mock_provider.add("POST", AuthTestData.TOKEN_URL, status=400, body={"error": "invalid_grant"})

        response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "OAuth Error. Please try again."

    @pytest.mark.asyncio
    async def test_profile_failure(self, auth_provider, auth_context, mock_provider, login_flow):
        mock_provider.add("POST", AuthTestData.PROFILE_URL, status=500, text="boom")

        response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "Authorization failed. Please try again."
        assert await auth_context.user_store.get_user_count() == 0

    @pytest.mark.asyncio
    async def test_unexpected_failure(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test unexpected errors end on the sorry page instead of escaping."""
        with patch.object(
            auth_context.user_store, "store_single_token", AsyncMock(side_effect=RuntimeError("disk full")),
        ):
            response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "Authorization failed. Please try again."
        assert await auth_context.sessions.get_user(AuthTestData.SESSION_ID) is None

    @pytest.mark.asyncio
    async def test_scope_elevation(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test a grant losing a scope redirects to re-consent."""
        # Arrange
        store = auth_context.user_store
        existing = User()
        existing.set_identity(linked_identity())
        await store.store_user(existing)
        await store.store_single_token(linked_identity(), Token(value="old", scopes=["read_user", "api", "admin"]))

        # Act
        response = await run_callback(auth_provider, code="auth-code")

        # Assert
        parsed = urlparse(response.location)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://authflow.example.com/api/v1/authorize"
        query = parse_qs(parsed.query)
        assert query["returnTo"] == [RETURN_TO]
        assert query["host"] == [AuthTestData.PROVIDER_HOST]
        assert query["scopes"] == ["read_user,api,admin"]
        assert await auth_context.sessions.get_user(AuthTestData.SESSION_ID) is not None
        assert await auth_context.flow_states.get(AuthTestData.SESSION_ID) is None

    @pytest.mark.asyncio
    async def test_blocked_user_session(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test blocked users get a session flagged as blocked."""
        existing = User(blocked=True)
        existing.set_identity(linked_identity())
        await auth_context.user_store.store_user(existing)

        response = await run_callback(auth_provider, code="auth-code")

        assert response.location == RETURN_TO
        assert auth_context.sessions.is_blocked(AuthTestData.SESSION_ID)

    @pytest.mark.asyncio
    async def test_flow_lost_during_login(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test the flow is re-read after login."""
        sessions = auth_context.sessions
        original_login = sessions.login

        async def login_and_drop_flow(session_id, user, blocked=False):
            await original_login(session_id, user, blocked=blocked)
            await auth_context.flow_states.clear(session_id)

        with patch.object(sessions, "login", side_effect=login_and_drop_flow):
            response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "Session not found."

    @pytest.mark.asyncio
    async def test_env_var_read_failure_keeps_login(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test failing env var sync never aborts an otherwise stored login."""
        # Arrange
        profile = make_profile()
        profile["envVars"] = [{"name": "TOKEN", "value": "secret"}]
        mock_provider.add("POST", AuthTestData.PROFILE_URL, body=profile)

        # Act
        with patch.object(
            auth_context.user_store, "get_env_vars", AsyncMock(side_effect=RuntimeError("db down")),
        ):
            response = await run_callback(auth_provider, code="auth-code")

        # Assert
        assert response.location == RETURN_TO
        assert await auth_context.sessions.get_user(AuthTestData.SESSION_ID) is not None
        token = await auth_context.user_store.find_token_for_identity(linked_identity())
        assert token.value == "access-token-1"

    @pytest.mark.asyncio
    async def test_flow_store_failure_redirects(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test a flow store outage after login still ends on the sorry page."""
        with patch.object(
            auth_context.flow_states, "clear", AsyncMock(side_effect=ConnectionError("redis gone")),
        ):
            response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "Authorization failed. Please try again."

    @pytest.mark.asyncio
    async def test_flow_store_failure_before_exchange(self, auth_provider, auth_context, mock_provider, login_flow):
        with patch.object(
            auth_context.flow_states, "get", AsyncMock(side_effect=ConnectionError("redis gone")),
        ):
            response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "Authorization failed. Please try again."
        assert mock_provider.calls == []

    @pytest.mark.asyncio
    async def test_configuration_error_propagates(self, auth_provider, mock_provider, login_flow):
        """Test a broken provider setup is not hidden behind a redirect."""
        with patch.object(
            auth_provider.profile_reader, "read", AsyncMock(side_effect=ConfigurationError("no profile source")),
        ):
            with pytest.raises(ConfigurationError):
                await run_callback(auth_provider, code="auth-code")


class TestTermsAcceptance:
    """Test the detour to the terms page."""

    @pytest.fixture
    def provider_config(self):
        return make_provider_config(require_tos=True)

    @pytest.mark.asyncio
    async def test_terms_required(self, auth_provider, auth_context, mock_provider, login_flow):
        """Test the first visitor is sent to the terms with the identity kept."""
        # Act
        response = await run_callback(auth_provider, code="auth-code")

        # Assert
        assert response.location == "https://authflow.example.com/tos"
        state = await auth_context.flow_states.get(AuthTestData.SESSION_ID)
        assert state.pending_error.code == "terms_required"
        assert state.pending_error.identity.auth_id == "4711"
        assert await auth_context.sessions.get_user(AuthTestData.SESSION_ID) is None
        assert await auth_context.user_store.get_user_count() == 0


class TestFirstUserBootstrap:
    """Test the first user of a fresh installation."""

    @pytest.fixture
    def provider_config(self):
        return make_provider_config(builtin=False, verified=False, owner_id=None)

    @pytest.mark.asyncio
    async def test_first_user_owns_provider(self, auth_provider, auth_context, provider_config, mock_provider, login_flow):
        response = await run_callback(auth_provider, code="auth-code")

        user = await auth_context.sessions.get_user(AuthTestData.SESSION_ID)
        assert response.location == RETURN_TO
        assert user.is_admin
        assert provider_config.verified is True
        assert provider_config.owner_id == user.id


class TestAuthorizeCallback:
    """Test the authorize path."""

    OWNER_ID = "owner-user-1"

    @pytest.fixture
    def provider_config(self):
        return make_provider_config(builtin=False, verified=False, owner_id=self.OWNER_ID)

    async def login_session_user(self, auth_context, user_id):
        user = User(id=user_id)
        await auth_context.sessions.login(AuthTestData.SESSION_ID, user)
        await begin_flow(auth_context, RequestType.AUTHORIZE)
        return user

    @pytest.mark.asyncio
    async def test_owner_verifies_provider(self, auth_provider, auth_context, provider_config, mock_provider):
        """Test the bootstrap owner's authorize marks the provider verified."""
        # Arrange
        await self.login_session_user(auth_context, self.OWNER_ID)
        login = AsyncMock(wraps=auth_context.sessions.login)

        # Act
        with patch.object(auth_context.sessions, "login", login):
            response = await run_callback(auth_provider, code="auth-code")

        # Assert
        assert response.location == RETURN_TO
        assert provider_config.verified is True
        login.assert_not_awaited()
        user = await auth_context.sessions.get_user(AuthTestData.SESSION_ID)
        assert user.id == self.OWNER_ID
        assert user.get_identity(AuthTestData.PROVIDER_ID).auth_id == "4711"

    @pytest.mark.asyncio
    async def test_other_user_leaves_provider_unverified(self, auth_provider, auth_context, provider_config, mock_provider):
        await self.login_session_user(auth_context, "someone-else")

        response = await run_callback(auth_provider, code="auth-code")

        assert response.location == RETURN_TO
        assert provider_config.verified is False

    @pytest.mark.asyncio
    async def test_authorize_failure(self, auth_provider, auth_context, mock_provider):
        await self.login_session_user(auth_context, self.OWNER_ID)
        mock_provider.add("POST", AuthTestData.TOKEN_URL, status=503, text="unavailable")

        response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "OAuth Error. Please try again."

    @pytest.mark.asyncio
    async def test_authorize_profile_failure(self, auth_provider, auth_context, mock_provider):
        await self.login_session_user(auth_context, self.OWNER_ID)
        mock_provider.add("POST", AuthTestData.PROFILE_URL, status=500, text="boom")

        response = await run_callback(auth_provider, code="auth-code")

        assert sorry_message(response.location) == "Authorization failed. Please try again."


class TestRefreshToken:
    """Test renewing stored tokens."""

    async def store_linked_user(self, auth_context, token):
        user = User()
        user.set_identity(linked_identity())
        user = await auth_context.user_store.store_user(user)
        if token is not None:
            await auth_context.user_store.store_single_token(linked_identity(), token)
        return user

    @pytest.mark.asyncio
    async def test_refresh_success(self, auth_provider, auth_context, mock_provider):
        """Test the new token keeps the scopes and gets a new expiry."""
        # Arrange
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        mock_provider.add("POST", AuthTestData.TOKEN_URL, body=AuthTestData.REFRESH_RESPONSE)
        user = await self.store_linked_user(auth_context, Token(
            value="access-token-1",
            scopes=["read_user", "api"],
            refresh_token="refresh-token-1",
            expiry_date=now,
        ))

        # Act
        token = await auth_provider.refresh_token(user, now=now)

        # Assert
        stored = await auth_context.user_store.find_token_for_identity(linked_identity())
        assert stored == token
        assert stored.value == "access-token-2"
        assert stored.refresh_token == "refresh-token-2"
        assert stored.scopes == ["read_user", "api"]
        assert stored.expiry_date == now + timedelta(seconds=7200)
        assert mock_provider.calls[0]["data"]["refresh_token"] == "refresh-token-1"

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, auth_provider, auth_context, mock_provider):
        """Test the store is untouched when there is nothing to refresh with."""
        # Arrange
        original = Token(value="access-token-1", scopes=["api"], expiry_date=datetime.now(timezone.utc))
        user = await self.store_linked_user(auth_context, original)

        # Act & Assert
        with pytest.raises(RefreshFailure):
            await auth_provider.refresh_token(user)

        assert await auth_context.user_store.find_token_for_identity(linked_identity()) == original
        assert mock_provider.calls == []

    @pytest.mark.asyncio
    async def test_refresh_without_expiry(self, auth_provider, auth_context, mock_provider):
        user = await self.store_linked_user(auth_context, Token(value="a", refresh_token="r"))

        with pytest.raises(RefreshFailure):
            await auth_provider.refresh_token(user)

        assert mock_provider.calls == []

    @pytest.mark.asyncio
    async def test_refresh_without_token(self, auth_provider, auth_context):
        user = await self.store_linked_user(auth_context, None)

        with pytest.raises(RefreshFailure) as exc:
            await auth_provider.refresh_token(user)

        assert "Cannot find any current token" in exc.value.message

    @pytest.mark.asyncio
    async def test_refresh_without_identity(self, auth_provider):
        with pytest.raises(RefreshFailure) as exc:
            await auth_provider.refresh_token(User())

        assert "Cannot find an identity" in exc.value.message

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, auth_provider, auth_context, mock_provider):
        """Test a provider rejection leaves the old token in place."""
        mock_provider.add("POST", AuthTestData.TOKEN_URL, status=400, body={"error": "invalid_grant"})
        original = Token(value="a", refresh_token="r", expiry_date=datetime.now(timezone.utc))
        user = await self.store_linked_user(auth_context, original)

        with pytest.raises(RefreshFailure):
            await auth_provider.refresh_token(user)

        assert await auth_context.user_store.find_token_for_identity(linked_identity()) == original


class TestErrorClassification:
    def test_is_oauth_error(self):
        from authflow.core.exceptions import OAuthTransportError, ProfileFetchFailure, TokenExchangeFailure

        assert is_oauth_error(TokenExchangeFailure())
        assert is_oauth_error(OAuthTransportError("down", status=503))
        assert not is_oauth_error(ProfileFetchFailure())
        assert not is_oauth_error(None)
