"""
Flow state schemas.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from authflow.domain.schemas.user import Identity


class RequestType(str, Enum):
    """Purpose of a flow."""
    LOGIN = "login"
    AUTHORIZE = "authorize"


class PendingError(BaseModel):
    """A classified error carried across an internal redirect."""
    code: str
    message: str
    redirect_to_url: Optional[str] = None
    identity: Optional[Identity] = None


class FlowState(BaseModel):
    """Session-scoped record of one in-flight flow."""
    request_type: RequestType
    return_to: str
    host: str
    elevate_scopes: Optional[List[str]] = None
    pending_error: Optional[PendingError] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
