"""Chat and Message SQLModel definitions.

Models:
- Chat: conversation thread owned by exactly one user
- Message: one turn in a chat, append-only except for its reaction
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

DEFAULT_CHAT_TITLE = "New Chat"
MAX_TITLE_LENGTH = 100

SENDER_USER = "user"
SENDER_AI = "ai"
SENDERS = (SENDER_USER, SENDER_AI)

REACTION_LIKE = "like"
REACTION_DISLIKE = "dislike"
REACTIONS = (REACTION_LIKE, REACTION_DISLIKE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class AwareDateTime(TypeDecorator):
    """
    Timezone-aware datetime column stored as UTC.

    Backends without offset support (SQLite) hand back naive values;
    those are read as UTC so callers always see aware datetimes.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Chat(SQLModel, table=True):
    """
    Conversation thread.

    Ownership: each chat belongs to exactly one user via user_id.
    All queries MUST filter by user_id.
    is_secret is fixed at creation; messages of secret chats are never stored.
    """
    __tablename__ = "chat"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    user_id: str = Field(index=True, nullable=False)
    title: str = Field(default=DEFAULT_CHAT_TITLE, max_length=MAX_TITLE_LENGTH)
    created_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime())
    last_updated_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime(), index=True)
    is_secret: bool = Field(default=False)


class Message(SQLModel, table=True):
    """
    Message entity for chats.

    Sender: "user" or "ai". Reaction: "like", "dislike" or None.
    Denormalized user_id for ownership checks.
    file_name/file_path describe an attachment; nothing populates them yet.
    """
    __tablename__ = "message"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    chat_id: str = Field(foreign_key="chat.id", index=True, nullable=False)
    user_id: str = Field(index=True, nullable=False)
    sender: str = Field(default=SENDER_USER, max_length=8)
    text: str = Field()
    sent_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime())
    reaction: Optional[str] = Field(default=None, max_length=8)
    file_name: Optional[str] = Field(default=None)
    file_path: Optional[str] = Field(default=None)
