"""
Flow State Manager

Keeps the transient per-session record that correlates a provider callback
with the request that started the flow. The session id is the only
reference handed across the redirect; the record itself never leaves the
server.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import structlog
from redis.exceptions import RedisError

from authflow.core.config import Settings
from authflow.core.exceptions import AuthException, SessionMissing
from authflow.domain.schemas.flow import FlowState, RequestType
from authflow.infrastructure.cache import get_redis_client

logger = structlog.get_logger(__name__)


class FlowStateStore(ABC):
    """Begin, read, patch and clear the flow state of a session."""

    async def begin(
        self,
        session_id: str,
        request_type: RequestType,
        return_to: str,
        host: str,
        elevate_scopes: Optional[List[str]] = None,
    ) -> FlowState:
        """
        Start a flow for the session, replacing any earlier attempt.

        Args:
            session_id: Session the flow is bound to
            request_type: login or authorize, fixed for the whole attempt
            return_to: Redirect target once the flow completes
            host: Provider host
            elevate_scopes: Scopes to re-consent to, if any

        Returns:
            The stored flow state
        """
        state = FlowState(
            request_type=request_type,
            return_to=return_to,
            host=host,
            elevate_scopes=elevate_scopes,
        )
        await self._save(session_id, state)
        logger.info(
            "flow_state_created",
            session=session_id[:8],
            request_type=state.request_type.value,
            host=host,
        )
        return state

    async def get(self, session_id: str) -> Optional[FlowState]:
        if not session_id:
            return None
        return await self._load(session_id)

    async def replace(self, session_id: str, **patch: Any) -> FlowState:
        """
        Patch fields of the current flow state, keeping the others.

        Raises:
            SessionMissing: No flow state for the session
            AuthException: The patch tries to change the request type
        """
        state = await self.get(session_id)
        if state is None:
            raise SessionMissing()

        requested_type = patch.get("request_type")
        if requested_type is not None and RequestType(requested_type) != state.request_type:
            logger.warning(
                "flow_state_request_type_change_rejected",
                session=session_id[:8],
                current=state.request_type.value,
                requested=str(requested_type),
            )
            raise AuthException("Flow request type cannot change.", code="flow_tampered")

        updated = FlowState.model_validate({**state.model_dump(), **patch})
        await self._save(session_id, updated)
        return updated

    async def clear(self, session_id: str) -> None:
        await self._delete(session_id)
        logger.debug("flow_state_cleared", session=session_id[:8])

    @abstractmethod
    async def _load(self, session_id: str) -> Optional[FlowState]:
        pass

    @abstractmethod
    async def _save(self, session_id: str, state: FlowState) -> None:
        pass

    @abstractmethod
    async def _delete(self, session_id: str) -> None:
        pass


class InMemoryFlowStateStore(FlowStateStore):
    """Process-local flow states, for development and tests."""

    def __init__(self):
        self._states: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def _load(self, session_id: str) -> Optional[FlowState]:
        data = self._states.get(session_id)
        return FlowState.model_validate_json(data) if data else None

    async def _save(self, session_id: str, state: FlowState) -> None:
        async with self._lock:
            self._states[session_id] = state.model_dump_json()

    async def _delete(self, session_id: str) -> None:
        async with self._lock:
            self._states.pop(session_id, None)


class RedisFlowStateStore(FlowStateStore):
    """Flow states in Redis with a TTL, shared across workers."""

    def __init__(self, state_ttl_seconds: int = 600):
        self.state_ttl = state_ttl_seconds
        self.state_prefix = "authflow:flow"

    def _key(self, session_id: str) -> str:
        return f"{self.state_prefix}:{session_id}"

    async def _load(self, session_id: str) -> Optional[FlowState]:
        try:
            redis = await get_redis_client()
            data = await redis.get(self._key(session_id))
        except RedisError as e:
            logger.error("flow_state_get_error", error=str(e), session=session_id[:8])
            raise
        if not data:
            return None
        return FlowState.model_validate_json(data)

    async def _save(self, session_id: str, state: FlowState) -> None:
        try:
            redis = await get_redis_client()
            await redis.setex(self._key(session_id), self.state_ttl, state.model_dump_json())
        except RedisError as e:
            logger.error("flow_state_store_error", error=str(e), session=session_id[:8])
            raise

    async def _delete(self, session_id: str) -> None:
        try:
            redis = await get_redis_client()
            await redis.delete(self._key(session_id))
        except RedisError as e:
            logger.error("flow_state_delete_error", error=str(e), session=session_id[:8])
            raise


def get_flow_state_store(settings: Settings) -> FlowStateStore:
    """Pick the flow state backend configured for this installation."""
    if settings.FLOW_STATE_BACKEND == "redis":
        return RedisFlowStateStore(state_ttl_seconds=settings.FLOW_STATE_TTL_SECONDS)
    return InMemoryFlowStateStore()
