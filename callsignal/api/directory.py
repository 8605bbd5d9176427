"""Profile and message endpoints feeding caller display and counters."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from callsignal.core.dependencies import get_messages, get_profiles
from callsignal.services.calls.models import CallerProfile
from callsignal.services.store.messages import MessageStore
from callsignal.services.store.profiles import ProfileRepository

router = APIRouter()
logger = logging.getLogger(__name__)


class ProfileRequest(BaseModel):
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_online: bool = False


class SendMessageRequest(BaseModel):
    sender_id: str
    receiver_id: str
    content: str


@router.put("/api/profiles/{user_id}", response_model=CallerProfile)
async def put_profile(
    user_id: str,
    body: ProfileRequest,
    profiles: ProfileRepository = Depends(get_profiles),
):
    """Create or replace a user's display profile."""
    return await profiles.upsert_profile(
        user_id,
        full_name=body.full_name,
        avatar_url=body.avatar_url,
        is_online=body.is_online,
    )


@router.post("/api/messages", status_code=201)
async def send_message(body: SendMessageRequest, messages: MessageStore = Depends(get_messages)):
    """Send a direct message (unread until marked read)."""
    logger.info(f"[MESSAGES API] {body.sender_id} -> {body.receiver_id}")
    return await messages.create_message(body.sender_id, body.receiver_id, body.content)


@router.post("/api/messages/{message_id}/read", status_code=204)
async def mark_message_read(message_id: str, messages: MessageStore = Depends(get_messages)):
    """Mark a message as read."""
    if not await messages.mark_read(message_id):
        raise HTTPException(status_code=404, detail=f"Message {message_id} not found")
