"""
Auth error handler.

Turns login outcomes that need a detour, like pending terms acceptance,
into a pending error and the page the user is sent to.
"""
from typing import Optional

import structlog

from authflow.core.errors import ErrorCode, ErrorMessages
from authflow.core.urls import HostUrl
from authflow.domain.schemas.flow import PendingError
from authflow.services.auth.identity_resolver import Resolution

logger = structlog.get_logger(__name__)


class AuthErrorHandler:
    """Classifies resolutions the login path must not complete."""

    def __init__(self, host_url: HostUrl):
        self.host_url = host_url

    def check(self, resolution: Optional[Resolution]) -> Optional[PendingError]:
        if resolution is None or resolution.user is not None:
            return None
        if resolution.terms_acceptance_required:
            logger.info(
                "terms_acceptance_pending",
                auth_provider_id=resolution.identity.auth_provider_id,
                auth_name=resolution.identity.auth_name,
            )
            return PendingError(
                code="terms_required",
                message=ErrorMessages.get(ErrorCode.AUTH_TERMS_REQUIRED),
                redirect_to_url=self.host_url.as_tos(),
                identity=resolution.identity,
            )
        return None
