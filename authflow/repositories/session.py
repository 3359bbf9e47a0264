"""
Session repository.
"""
from datetime import datetime, timezone
from typing import Dict, Optional

from authflow.domain.interfaces.stores import ISessionService, IUserStore
from authflow.domain.schemas.user import User


class InMemorySessionService(ISessionService):
    """Maps session ids to logged in users."""

    def __init__(self, user_store: IUserStore):
        self.user_store = user_store
        self._sessions: Dict[str, str] = {}
        self._blocked: Dict[str, bool] = {}

    async def get_user(self, session_id: str) -> Optional[User]:
        user_id = self._sessions.get(session_id)
        if not user_id:
            return None
        return await self.user_store.find_user_by_id(user_id)

    async def login(self, session_id: str, user: User, blocked: bool = False) -> None:
        user.last_login = datetime.now(timezone.utc)
        await self.user_store.store_user(user)
        self._sessions[session_id] = user.id
        self._blocked[session_id] = blocked

    def is_blocked(self, session_id: str) -> bool:
        return self._blocked.get(session_id, False)
