"""
Generic OAuth2 auth provider.

The flow follows the phases of the authorization code grant:

1. `authorize` starts a login or authorize flow: it records a flow state
   for the session and redirects to the provider's consent page.
2. `callback` handles the provider's redirect back. It exchanges the code,
   reads the user profile, reconciles it with the local users and finally
   logs the session in (login) or returns to the caller (authorize).
3. `refresh_token` renews the stored token of a user, when the provider
   handed out a refresh token and an expiry.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import structlog

from authflow.core.errors import ErrorCode, ErrorMessages
from authflow.core.exceptions import (
    AuthException,
    AuthFlowException,
    ConfigurationError,
    OAuthTransportError,
    ProviderError,
    RefreshFailure,
    SessionMissing,
    TokenExchangeFailure,
    VerifyException,
)
from authflow.core.logging import log_error_details
from authflow.domain.schemas.flow import FlowState, PendingError, RequestType
from authflow.domain.schemas.provider import AuthProviderInfo, ProviderConfig
from authflow.domain.schemas.user import Token, TokenResponse, User
from authflow.services.auth.context import AuthContext
from authflow.services.auth.credentials import CredentialLifecycleManager
from authflow.services.auth.errors import AuthErrorHandler
from authflow.services.auth.identity_resolver import IdentityResolver, Resolution
from authflow.services.auth.oauth.client import OAuth2Client
from authflow.services.auth.oauth.profile import ProfileMapperRegistry, ProfileReader

logger = structlog.get_logger(__name__)


@dataclass
class FlowRequest:
    """What the flow needs to know about an incoming request."""
    session_id: str
    query_params: Mapping[str, str] = field(default_factory=dict)
    url: str = ""


class FlowResponse:
    """Collects the single redirect a flow request answers with."""

    def __init__(self):
        self.headers_sent = False
        self.location: Optional[str] = None

    def redirect(self, url: str) -> None:
        if self.headers_sent:
            raise RuntimeError("Response already sent")
        self.location = url
        self.headers_sent = True


def is_oauth_error(err: Optional[BaseException]) -> bool:
    """Failures talking to the provider's token endpoint."""
    return isinstance(err, (ProviderError, OAuthTransportError, TokenExchangeFailure))


class GenericAuthProvider:
    """OAuth2 integration of one configured provider."""

    def __init__(
        self,
        config: ProviderConfig,
        context: AuthContext,
        registry: Optional[ProfileMapperRegistry] = None,
        client: Optional[OAuth2Client] = None,
    ):
        self.config = config
        self.context = context
        settings = context.settings
        self.client = client or OAuth2Client(
            config,
            dev_branch=settings.DEV_BRANCH,
            timeout=settings.OAUTH_HTTP_TIMEOUT_SECONDS,
        )
        self.profile_reader = ProfileReader(
            config,
            registry=registry,
            mapper_timeout=settings.PROFILE_MAPPER_TIMEOUT_SECONDS,
            http_timeout=settings.OAUTH_HTTP_TIMEOUT_SECONDS,
        )
        self.identity_resolver = IdentityResolver(config, context.user_store, context.user_service)
        self.credentials = CredentialLifecycleManager(config, context.user_store)
        self.auth_error_handler = AuthErrorHandler(context.host_url)
        logger.info(
            "auth_provider_initialized",
            auth_provider_id=config.id,
            host=config.host,
            callback_path=config.callback_path,
        )

    @property
    def auth_provider_id(self) -> str:
        return self.config.id

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def strategy_name(self) -> str:
        return self.config.strategy_name

    @property
    def callback_path(self) -> str:
        return self.config.callback_path

    @property
    def info(self) -> AuthProviderInfo:
        scopes = self.config.scopes
        return AuthProviderInfo(
            auth_provider_id=self.config.id,
            auth_provider_type=self.config.type,
            host=self.config.host,
            owner_id=self.config.owner_id,
            verified=self.config.verified,
            scopes=scopes,
            settings_url=self.config.oauth.settings_url,
            requirements={"default": scopes, "publicRepo": scopes, "privateRepo": scopes},
        )

    def sorry(self, message: str) -> str:
        return self.context.host_url.as_sorry(message)

    async def authorize(
        self,
        request: FlowRequest,
        response: FlowResponse,
        request_type: RequestType,
        return_to: str,
        scopes: Optional[List[str]] = None,
    ) -> None:
        """
        Start a flow and redirect to the provider's consent page.

        Args:
            request: Incoming request
            response: Response to redirect
            request_type: login or authorize
            return_to: Redirect target once the flow completes
            scopes: Scopes overriding the configured ones
        """
        session_id = request.session_id
        flow_states = self.context.flow_states
        current_user = await self.context.sessions.get_user(session_id)

        if request_type == RequestType.LOGIN and current_user is not None:
            logger.info(
                "already_logged_in",
                auth_provider_id=self.auth_provider_id,
                user_id=current_user.id,
            )
            response.redirect(self.context.host_url.as_dashboard())
            return
        if request_type == RequestType.AUTHORIZE and current_user is None:
            response.redirect(self.sorry(ErrorMessages.get(ErrorCode.AUTH_NOT_LOGGED_IN)))
            return
        if not self.config.oauth.authorization_url:
            logger.error("auth_provider_misconfigured", auth_provider_id=self.auth_provider_id)
            response.redirect(self.sorry(ErrorMessages.get(ErrorCode.SYS_CONFIGURATION_ERROR)))
            return

        state = await flow_states.get(session_id)
        if (
            state is None
            or state.request_type != request_type
            or state.host != self.host
            or state.return_to != return_to
        ):
            await flow_states.begin(session_id, request_type, return_to, self.host)

        response.redirect(self.client.build_authorization_url(scopes))

    async def callback(self, request: FlowRequest, response: FlowResponse) -> None:
        """
        Handle the provider's redirect back to the callback path.

        Every outcome is a redirect on `response`: the dashboard, the sorry
        page, the terms page, a scope elevation or the flow's `return_to`.
        """
        log_context = {"auth_provider_id": self.auth_provider_id, "session": request.session_id[:8]}
        if response.headers_sent:
            logger.warning("callback_called_repeatedly", **log_context)
            return
        logger.info("oauth_callback_received", url=request.url, **log_context)

        try:
            await self._dispatch(request, response, log_context)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("oauth_callback_failed", **log_error_details(e, **log_context))
            if not response.headers_sent:
                response.redirect(self.sorry(ErrorMessages.get(ErrorCode.AUTH_AUTHORIZATION_FAILED)))

    async def _dispatch(self, request: FlowRequest, response: FlowResponse, log_context: Dict[str, Any]) -> None:
        session_id = request.session_id
        current_user = await self.context.sessions.get_user(session_id)
        state = await self.context.flow_states.get(session_id)
        if current_user is not None and (state is None or state.request_type == RequestType.LOGIN):
            logger.warning("callback_already_logged_in", user_id=current_user.id, **log_context)
            response.redirect(self.context.host_url.as_dashboard())
            return

        if state is None:
            logger.error("callback_flow_state_missing", **log_error_details(SessionMissing(), **log_context))
            response.redirect(self.sorry(ErrorMessages.get(ErrorCode.AUTH_SESSION_MISSING)))
            return
        log_context["request_type"] = state.request_type.value

        error = request.query_params.get("error")
        if error:
            message = ErrorMessages.get(ErrorCode.AUTH_PROVIDER_ERROR, error=error)
            logger.info("oauth_provider_error", error=error, **log_context)
            await self.context.flow_states.replace(
                session_id,
                pending_error=PendingError(code=error, message=message),
            )
            response.redirect(self.sorry(message))
            return

        code = request.query_params.get("code")
        if not code:
            logger.error("oauth_callback_missing_code", **log_context)
            response.redirect(self.sorry(ErrorMessages.get(ErrorCode.AUTH_MISSING_CODE)))
            return

        err: Optional[AuthFlowException] = None
        resolution: Optional[Resolution] = None
        try:
            token_response = await self.client.exchange_code(code)
            resolution = await self.verify(token_response, current_user)
        except ConfigurationError:
            raise
        except AuthFlowException as e:
            err = e
        except Exception as e:
            err = VerifyException()
            err.__cause__ = e
        if isinstance(err, ProviderError):
            logger.info("oauth_token_exchange_denied", error=err.error, **log_context)
        elif err is not None:
            logger.error("oauth_verify_failed", **log_error_details(err, **log_context))

        if state.request_type == RequestType.LOGIN:
            await self.login_callback_handler(state, request, response, err, resolution)
        else:
            await self.authorize_callback_handler(state, response, err, resolution)

    async def verify(self, token_response: TokenResponse, current_user: Optional[User]) -> Resolution:
        """
        Read the profile for a new token and link it to a user.

        When a user is resolved, user and token are persisted before this
        returns.
        """
        token_response_object = token_response.model_dump(exclude_none=True)
        setup = await self.profile_reader.read(token_response.access_token, token_response_object)
        logger.info(
            "verify_called",
            auth_provider_id=self.auth_provider_id,
            auth_name=setup.auth_user.auth_name,
        )

        resolution = await self.identity_resolver.resolve(setup, current_user)
        if resolution.user is None:
            return resolution

        await self.credentials.persist(
            resolution.user,
            resolution.identity,
            token_response,
            setup.current_scopes,
            env_vars=setup.env_vars,
        )
        return resolution

    async def authorize_callback_handler(
        self,
        state: FlowState,
        response: FlowResponse,
        err: Optional[AuthFlowException],
        resolution: Optional[Resolution],
    ) -> None:
        user = resolution.user if resolution else None
        log_context = {"auth_provider_id": self.auth_provider_id, "user_id": user.id if user else None}
        logger.info("oauth_callback_authorize", **log_context)

        if err is not None or user is None:
            if is_oauth_error(err):
                message = ErrorMessages.get(ErrorCode.AUTH_OAUTH_ERROR)
            else:
                message = ErrorMessages.get(ErrorCode.AUTH_AUTHORIZATION_FAILED)
            logger.error("oauth_authorize_failed", message=message, **log_context)
            response.redirect(self.sorry(message))
            return

        if not self.config.verified and user.id == self.config.owner_id:
            try:
                await self.context.provider_service.mark_as_verified(self.config.id, self.config.owner_id)
            except Exception as e:
                logger.error("auth_provider_verify_failed", **log_error_details(e, **log_context))

        response.redirect(state.return_to)

    async def login_callback_handler(
        self,
        state: FlowState,
        request: FlowRequest,
        response: FlowResponse,
        err: Optional[AuthFlowException],
        resolution: Optional[Resolution],
    ) -> None:
        session_id = request.session_id
        flow_states = self.context.flow_states
        user = resolution.user if resolution else None
        log_context = {"auth_provider_id": self.auth_provider_id, "user_id": user.id if user else None}
        logger.info("oauth_callback_login", **log_context)

        handled = self.auth_error_handler.check(resolution) if err is None else None
        if handled is not None:
            await flow_states.replace(session_id, pending_error=handled)
            logger.info("handled_auth_error", code=handled.code, redirect_to=handled.redirect_to_url, **log_context)
            response.redirect(handled.redirect_to_url)
            return

        if err is not None:
            message = ErrorMessages.get(ErrorCode.AUTH_AUTHORIZATION_FAILED)
            if isinstance(err, AuthException):
                message = ErrorMessages.get(ErrorCode.AUTH_LOGIN_INTERRUPTED, reason=err.message)
            if is_oauth_error(err):
                message = ErrorMessages.get(ErrorCode.AUTH_OAUTH_ERROR)
            logger.error("oauth_login_failed", message=message, **log_context)
            response.redirect(self.sorry(message))
            return

        if user is None:
            logger.error("oauth_login_no_user", **log_context)
            response.redirect(self.sorry(ErrorMessages.get(ErrorCode.AUTH_LOGIN_FAILED)))
            return

        user_count = await self.context.user_store.get_user_count()
        if user_count == 1:
            # the single user was just created
            user.roles_or_permissions = ["admin"]
            user = await self.context.user_store.store_user(user)
            if self.config.builtin is False and not self.config.verified:
                try:
                    await self.context.provider_service.mark_as_verified(
                        self.config.id, self.config.owner_id, new_owner_id=user.id,
                    )
                except Exception as e:
                    logger.error("auth_provider_verify_failed", **log_error_details(e, **log_context))

        if resolution.elevate_scopes:
            await flow_states.replace(session_id, elevate_scopes=resolution.elevate_scopes)

        await self.context.sessions.login(session_id, user, blocked=resolution.is_blocked)

        state = await flow_states.get(session_id)
        if state is None or state.request_type != RequestType.LOGIN:
            response.redirect(self.sorry(ErrorMessages.get(ErrorCode.AUTH_SESSION_NOT_FOUND)))
            return

        return_to = state.return_to
        if state.elevate_scopes:
            return_to = self.context.host_url.as_elevation(return_to, state.host, state.elevate_scopes)
        logger.info("user_logged_in", redirect_to=return_to, blocked=resolution.is_blocked, **log_context)

        await flow_states.clear(session_id)
        response.redirect(return_to)

    async def refresh_token(self, user: User, now: Optional[datetime] = None) -> Token:
        """
        Renew the stored token of the user's identity for this provider.

        Raises:
            RefreshFailure: No identity, token, refresh token or expiry, or the
                provider rejected the refresh
        """
        logger.info("token_refresh_requested", auth_provider_id=self.auth_provider_id, user_id=user.id)
        identity = user.get_identity(self.auth_provider_id)
        if identity is None:
            raise RefreshFailure(
                f"Cannot find an identity for {self.auth_provider_id}",
                auth_provider_id=self.auth_provider_id,
            )
        user_store = self.context.user_store
        token = await user_store.find_token_for_identity(identity)
        if token is None:
            raise RefreshFailure(
                f"Cannot find any current token for {self.auth_provider_id}",
                auth_provider_id=self.auth_provider_id,
            )
        if not token.refresh_token or not token.expiry_date:
            raise RefreshFailure(
                f"Cannot refresh token for {self.auth_provider_id}",
                auth_provider_id=self.auth_provider_id,
            )

        response = await self.client.refresh(token.refresh_token)
        new_token = Token.from_token_response(
            response,
            token.scopes,
            now=now or datetime.now(timezone.utc),
        )
        await user_store.store_single_token(identity, new_token)
        logger.info(
            "token_refreshed",
            auth_provider_id=self.auth_provider_id,
            user_id=user.id,
            update_date=new_token.update_date.isoformat(),
            expiry_date=new_token.expiry_date.isoformat() if new_token.expiry_date else None,
        )
        return new_token
