"""
Standardized error message catalog for the authentication flow.

Every failed callback ends on the sorry page; this module centralizes the
messages handed to it so provider internals never leak to the user.
"""
from enum import Enum
from typing import Dict


class ErrorCode(str, Enum):
    """Error codes for redirects produced by the callback."""

    AUTH_SESSION_MISSING = "AUTH_001"
    AUTH_OAUTH_ERROR = "AUTH_002"
    AUTH_PROVIDER_ERROR = "AUTH_003"
    AUTH_AUTHORIZATION_FAILED = "AUTH_004"
    AUTH_LOGIN_FAILED = "AUTH_005"
    AUTH_LOGIN_INTERRUPTED = "AUTH_006"
    AUTH_SESSION_NOT_FOUND = "AUTH_007"
    AUTH_NOT_LOGGED_IN = "AUTH_008"
    AUTH_TERMS_REQUIRED = "AUTH_009"
    AUTH_MISSING_CODE = "AUTH_011"

    SYS_CONFIGURATION_ERROR = "SYS_001"


class ErrorMessages:
    """Centralized error message definitions."""

    _messages: Dict[ErrorCode, str] = {
        ErrorCode.AUTH_SESSION_MISSING: "Please allow Cookies in your browser and try to log in again.",
        ErrorCode.AUTH_OAUTH_ERROR: "OAuth Error. Please try again.",
        ErrorCode.AUTH_PROVIDER_ERROR: "OAuth2 error. ({error})",
        ErrorCode.AUTH_AUTHORIZATION_FAILED: "Authorization failed. Please try again.",
        ErrorCode.AUTH_LOGIN_FAILED: "Login with failed.",
        ErrorCode.AUTH_LOGIN_INTERRUPTED: "Login was interrupted: {reason}",
        ErrorCode.AUTH_SESSION_NOT_FOUND: "Session not found.",
        ErrorCode.AUTH_NOT_LOGGED_IN: "Please log in before authorizing additional access.",
        ErrorCode.AUTH_TERMS_REQUIRED: "Please accept the terms of service to continue.",
        ErrorCode.AUTH_MISSING_CODE: "Authorization code is missing. Please try again.",
        ErrorCode.SYS_CONFIGURATION_ERROR: "Error with the Auth Provider Configuration.",
    }

    @classmethod
    def get(cls, code: ErrorCode, **kwargs) -> str:
        """
        Get error message for a given error code.

        Args:
            code: Error code
            **kwargs: Additional context for formatting

        Returns:
            Formatted error message
        """
        base_message = cls._messages.get(code, "An error occurred")

        if kwargs:
            try:
                return base_message.format(**kwargs)
            except KeyError:
                return base_message

        return base_message
