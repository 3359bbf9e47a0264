"""
OAuth flow endpoints.

Login and authorize start a flow against the provider configured for a
host; the provider redirects back to its callback path under /auth.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from authflow.core.config import Settings, get_settings
from authflow.core.dependencies import SessionCookie, get_authenticator, get_session_cookie
from authflow.domain.schemas.flow import RequestType
from authflow.services.auth.authenticator import Authenticator
from authflow.services.auth.oauth.provider import FlowRequest, FlowResponse, GenericAuthProvider

logger = structlog.get_logger(__name__)
router = APIRouter()


def _get_provider(authenticator: Authenticator, host: str) -> GenericAuthProvider:
    provider = authenticator.get_by_host(host)
    if provider is None:
        logger.warning("auth_provider_not_found", host=host)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No auth provider for host: {host}",
        )
    return provider


def _to_response(flow_response: FlowResponse, cookie: SessionCookie, settings: Settings) -> Response:
    if flow_response.location is None:
        response: Response = Response(status_code=status.HTTP_204_NO_CONTENT)
    else:
        response = RedirectResponse(url=flow_response.location, status_code=status.HTTP_302_FOUND)
    if cookie.is_new:
        response.set_cookie(
            settings.SESSION_COOKIE_NAME,
            cookie.session_id,
            httponly=True,
            samesite="lax",
            secure=settings.is_production,
        )
    return response


def _parse_scopes(scopes: Optional[str]) -> Optional[List[str]]:
    if not scopes:
        return None
    return [s.strip() for s in scopes.split(",") if s.strip()]


@router.get("/auth-providers")
async def list_auth_providers(
    authenticator: Authenticator = Depends(get_authenticator),
) -> List[Dict[str, Any]]:
    """
    Describe the configured auth providers.

    Returns:
        Provider infos
    """
    return [p.info.model_dump(by_alias=True) for p in authenticator.providers]


@router.get("/login")
async def login(
    request: Request,
    host: str = Query(...),
    return_to: Optional[str] = Query(None, alias="returnTo"),
    cookie: SessionCookie = Depends(get_session_cookie),
    authenticator: Authenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_settings),
) -> Response:
    """
    Start a login flow.

    Args:
        request: FastAPI request object
        host: Provider host
        return_to: Redirect target once logged in
        cookie: Session cookie
        authenticator: Provider registry
        settings: Application settings

    Returns:
        Redirect to the provider, or to the dashboard when already logged in
    """
    provider = _get_provider(authenticator, host)
    return_to = return_to or provider.context.host_url.as_dashboard()
    flow_response = FlowResponse()
    await provider.authorize(
        FlowRequest(session_id=cookie.session_id, url=str(request.url)),
        flow_response,
        RequestType.LOGIN,
        return_to,
    )
    logger.info(
        "oauth_login_initiated",
        host=host,
        session=cookie.session_id[:8],
        new_session=cookie.is_new,
    )
    return _to_response(flow_response, cookie, settings)


@router.get("/authorize")
async def authorize(
    request: Request,
    host: str = Query(...),
    return_to: Optional[str] = Query(None, alias="returnTo"),
    scopes: Optional[str] = Query(None),
    cookie: SessionCookie = Depends(get_session_cookie),
    authenticator: Authenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_settings),
) -> Response:
    """
    Start an authorize flow for the logged in user, optionally for more scopes.

    Returns:
        Redirect to the provider, or to the sorry page when not logged in
    """
    provider = _get_provider(authenticator, host)
    return_to = return_to or provider.context.host_url.as_dashboard()
    flow_response = FlowResponse()
    await provider.authorize(
        FlowRequest(session_id=cookie.session_id, url=str(request.url)),
        flow_response,
        RequestType.AUTHORIZE,
        return_to,
        scopes=_parse_scopes(scopes),
    )
    logger.info(
        "oauth_authorize_initiated",
        host=host,
        scopes=scopes,
        session=cookie.session_id[:8],
    )
    return _to_response(flow_response, cookie, settings)


@router.get("/auth/{path:path}")
async def callback(
    path: str,
    request: Request,
    cookie: SessionCookie = Depends(get_session_cookie),
    authenticator: Authenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_settings),
) -> Response:
    """
    Handle the redirect back from a provider.

    The provider is the one whose callback URL has this request's path.
    """
    provider = authenticator.get_by_callback_path(request.url.path)
    if provider is None:
        logger.warning("auth_callback_path_unknown", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    flow_response = FlowResponse()
    await provider.callback(
        FlowRequest(
            session_id=cookie.session_id,
            query_params=dict(request.query_params),
            url=request.url.path,
        ),
        flow_response,
    )
    return _to_response(flow_response, cookie, settings)
