"""
Custom exceptions for the authentication flow.
"""
from typing import Any, Dict, Optional


class AuthFlowException(Exception):
    """Base exception for all authflow exceptions."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class SessionMissing(AuthFlowException):
    """No flow state for the session when the provider called back."""

    def __init__(self, message: str = "No flow state found for session"):
        super().__init__(message, status_code=400)


class ProviderError(AuthFlowException):
    """The provider signaled a failure or the user denied consent."""

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        message = f"{error}: {description}" if description else error
        super().__init__(message, status_code=400, details={"error": error})


class OAuthTransportError(AuthFlowException):
    """The provider could not be reached or answered with a server error."""

    def __init__(self, message: str, status: Optional[int] = None):
        details = {"status": status} if status is not None else {}
        super().__init__(message, status_code=502, details=details)


class TokenExchangeFailure(AuthFlowException):
    """Token endpoint answered without an error but also without a token."""

    def __init__(self, message: str = "No access token in token response", data: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=502, details={"data": data or {}})


class RefreshFailure(AuthFlowException):
    """Refreshing a stored credential is impossible or was rejected."""

    def __init__(self, message: str, auth_provider_id: Optional[str] = None):
        details = {"auth_provider_id": auth_provider_id} if auth_provider_id else {}
        super().__init__(message, status_code=401, details=details)


class ProfileFetchFailure(AuthFlowException):
    """Reading the user profile from the provider failed or timed out."""

    def __init__(self, message: str = "Error while reading user profile."):
        super().__init__(message, status_code=502)


class ConfigurationError(AuthFlowException):
    """The provider integration is missing a required mechanism."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class VerifyException(AuthFlowException):
    """Unexpected failure while reconciling identity and user."""

    def __init__(self, message: str = "Exception in verify function"):
        super().__init__(message, status_code=500)


class AmbiguousIdentity(AuthFlowException):
    """More than one identity shares the same external account name."""

    def __init__(self, auth_name: str):
        super().__init__(
            f"Multiple identities with name: {auth_name}",
            status_code=409,
            details={"auth_name": auth_name},
        )


class AuthException(AuthFlowException):
    """Login interrupted for a reason the user may be shown."""

    def __init__(self, message: str, code: str = "auth_interrupted", payload: Optional[Dict[str, Any]] = None):
        self.code = code
        self.payload = payload or {}
        super().__init__(message, status_code=403, details={"code": code})
