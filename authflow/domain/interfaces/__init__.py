from .stores import IAuthProviderService, ISessionService, IUserStore

__all__ = ["IAuthProviderService", "ISessionService", "IUserStore"]
