"""
authflow - OAuth2 login and authorization flows against third-party identity providers.
"""

__version__ = "0.1.0"
