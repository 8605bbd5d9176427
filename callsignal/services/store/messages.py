"""Message store, used by the notification counters."""
import logging
from typing import Any, Dict
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callsignal.db.models import Message
from callsignal.services.store.events import ChangeEvent, ChangeKind
from callsignal.services.store.feed import ChangeFeed

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "sender_id": message.sender_id,
        "receiver_id": message.receiver_id,
        "content": message.content,
        "is_read": message.is_read,
        "created_at": message.created_at,
    }


class MessageStore:
    """Persists direct messages and publishes their changes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed):
        self.session_factory = session_factory
        self.feed = feed

    async def create_message(self, sender_id: str, receiver_id: str, content: str) -> Dict[str, Any]:
        """Insert an unread message."""
        async with self.session_factory() as db:
            message = Message(sender_id=sender_id, receiver_id=receiver_id, content=content)
            db.add(message)
            await db.commit()
            await db.refresh(message)
            payload = message_to_dict(message)

        self.feed.publish(ChangeEvent(kind=ChangeKind.INSERT, table=MESSAGES_TABLE, record=payload))
        return payload

    async def mark_read(self, message_id: str) -> bool:
        """Mark a message as read. Returns False if it does not exist."""
        async with self.session_factory() as db:
            message = await db.get(Message, message_id)
            if message is None:
                return False
            message.is_read = True
            await db.commit()
            await db.refresh(message)
            payload = message_to_dict(message)

        self.feed.publish(ChangeEvent(kind=ChangeKind.UPDATE, table=MESSAGES_TABLE, record=payload))
        return True

    async def count_unread(self, receiver_id: str) -> int:
        """Count unread messages addressed to ``receiver_id``."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(Message.id)).where(
                    Message.receiver_id == receiver_id,
                    Message.is_read.is_(False),
                )
            )
            return result.scalar() or 0
