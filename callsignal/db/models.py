"""Database models."""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class Call(Base):
    """Call record model."""

    __tablename__ = "calls"

    id = Column(String(36), primary_key=True, default=_new_id)
    caller_id = Column(String, index=True, nullable=False)
    receiver_id = Column(String, index=True, nullable=False)
    status = Column(String, default="pending", nullable=False)  # pending, accepted, rejected, ended, missed
    call_type = Column(String, default="voice", nullable=False)  # voice, video
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Profile(Base):
    """User display profile."""

    __tablename__ = "profiles"

    user_id = Column(String, primary_key=True)
    full_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    is_online = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Message(Base):
    """Direct message model, used for unread counters."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    sender_id = Column(String, index=True, nullable=False)
    receiver_id = Column(String, index=True, nullable=False)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
