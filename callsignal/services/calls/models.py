"""Call record models."""
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional
from pydantic import BaseModel, ConfigDict


class CallStatus(str, Enum):
    """Lifecycle states of a call record."""

    PENDING = "pending"  # awaiting the receiver's decision
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ENDED = "ended"
    MISSED = "missed"

    def __str__(self) -> str:
        return self.value


class CallType(str, Enum):
    """Media kind requested by the caller."""

    VOICE = "voice"
    VIDEO = "video"

    def __str__(self) -> str:
        return self.value


class CallRecord(BaseModel):
    """A durable call record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    caller_id: str
    receiver_id: str
    status: CallStatus = CallStatus.PENDING
    call_type: CallType = CallType.VOICE
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_change(cls, record: Mapping[str, Any]) -> "CallRecord":
        """Build a record from a change-event payload."""
        return cls.model_validate(dict(record))


class CallerProfile(BaseModel):
    """Display profile of the calling party."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_online: bool = False


class IncomingCall(CallRecord):
    """A pending call enriched with the caller's profile, when it resolved."""

    caller: Optional[CallerProfile] = None
