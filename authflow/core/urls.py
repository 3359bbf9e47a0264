"""
Redirect targets of the authentication flow.
"""
from typing import List
from urllib.parse import quote, urlencode


class HostUrl:
    """Builds URLs relative to the public base URL of the installation."""

    def __init__(self, base_url: str, api_prefix: str = "/api/v1"):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix

    def with_path(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def as_dashboard(self) -> str:
        return self.with_path("/")

    def as_sorry(self, message: str) -> str:
        """Error display page; the message travels in the fragment."""
        return f"{self.with_path('/sorry')}#{quote(message)}"

    def as_tos(self) -> str:
        return self.with_path("/tos")

    def as_elevation(self, return_to: str, host: str, scopes: List[str]) -> str:
        """
        Re-run the authorize flow for scopes that would otherwise be lost.

        Args:
            return_to: Final redirect target once consent is given
            host: Provider host
            scopes: Scopes to re-consent to, sent comma joined

        Returns:
            Elevation URL
        """
        query = urlencode(
            {"returnTo": return_to, "host": host, "scopes": ",".join(scopes)},
            safe=",",
        )
        return f"{self.with_path(self.api_prefix + '/authorize')}?{query}"
