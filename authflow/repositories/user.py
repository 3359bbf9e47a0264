"""
User repository.
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from authflow.domain.interfaces.stores import IUserStore
from authflow.domain.schemas.user import Identity, Token, User, UserEnvVar

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryUserStore(IUserStore):
    """
    Process-local user store.

    Objects are copied on the way in and out so callers never share state
    with the store; a stored token replaces the previous one in one step.
    """

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._tokens: Dict[Tuple[str, str], Token] = {}
        self._env_vars: Dict[str, Dict[str, UserEnvVar]] = {}
        self._lock = asyncio.Lock()

    async def new_user(self) -> User:
        return User()

    async def store_user(self, user: User) -> User:
        async with self._lock:
            # an identity is owned by exactly one user
            for other in self._users.values():
                if other.id == user.id:
                    continue
                for provider_id, identity in list(other.identities.items()):
                    owned = user.get_identity(provider_id)
                    if owned and Identity.equals(owned, identity):
                        del other.identities[provider_id]
            self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def find_user_by_identity(self, identity: Identity) -> Optional[User]:
        for user in self._users.values():
            if user.find_identity(identity):
                return user.model_copy(deep=True)
        return None

    async def find_users_by_email(self, email: str) -> List[User]:
        if not email:
            return []
        email = email.lower()
        matches = [
            user for user in self._users.values()
            if any(
                (i.primary_email or "").lower() == email and not i.deleted
                for i in user.identities.values()
            )
        ]
        matches.sort(key=lambda u: u.last_login or _EPOCH, reverse=True)
        return [u.model_copy(deep=True) for u in matches]

    async def find_identities_by_name(self, auth_provider_id: str, auth_name: str) -> List[Identity]:
        result = []
        for user in self._users.values():
            identity = user.get_identity(auth_provider_id)
            if identity and not identity.deleted and identity.auth_name == auth_name:
                result.append(identity.model_copy())
        return result

    async def get_user_count(self) -> int:
        return len(self._users)

    async def store_single_token(self, identity: Identity, token: Token) -> Token:
        key = (identity.auth_provider_id, identity.auth_id)
        self._tokens[key] = token.model_copy(deep=True)
        return token

    async def find_token_for_identity(self, identity: Identity) -> Optional[Token]:
        token = self._tokens.get((identity.auth_provider_id, identity.auth_id))
        return token.model_copy(deep=True) if token else None

    async def get_env_vars(self, user_id: str) -> List[UserEnvVar]:
        return [v.model_copy() for v in self._env_vars.get(user_id, {}).values()]

    async def set_env_var(self, env_var: UserEnvVar) -> None:
        self._env_vars.setdefault(env_var.user_id, {})[env_var.id] = env_var.model_copy()
