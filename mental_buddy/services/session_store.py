"""Chat/message storage with live, snapshot-delivering queries.

Handles:
- Chat create/rename/touch/delete (delete removes the chat's messages too)
- Message append and reaction updates
- Live queries: full ordered snapshots re-delivered after every write
- Write timestamps assigned by the store, strictly increasing
"""
import asyncio
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, Generic, Iterator, List, Optional, Set, Tuple, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from mental_buddy.core.errors import NotFoundError, PersistenceError, SubscriptionError
from mental_buddy.models.conversation import (
    DEFAULT_CHAT_TITLE,
    REACTIONS,
    SENDERS,
    Chat,
    Message,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Scope = Tuple[str, str]


class LiveQuery(Generic[T]):
    """
    Lazy async stream of full-collection snapshots.

    Nothing is registered until the first iteration, which yields the
    current contents. Each later iteration waits for a change in scope and
    yields the refreshed contents; bursts of writes collapse into one
    snapshot. The stream ends only on close(). A failed fetch closes the
    stream and raises SubscriptionError as its terminal event.
    """

    def __init__(self, store: "SessionStore", scope: Scope, fetch: Callable[[], List[T]]):
        self._store = store
        self.scope = scope
        self._fetch = fetch
        self._changed = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._started = False
        self.closed = False

    def __aiter__(self) -> "LiveQuery[T]":
        return self

    async def __anext__(self) -> List[T]:
        if self.closed:
            raise StopAsyncIteration

        if not self._started:
            self._started = True
            self._loop = asyncio.get_running_loop()
            self._store._register(self)
        else:
            await self._changed.wait()
            if self.closed:
                raise StopAsyncIteration
        self._changed.clear()

        try:
            return self._fetch()
        except PersistenceError as e:
            self.close()
            raise SubscriptionError(f"Live query {self.scope[0]} failed: {e.message}") from e

    def notify(self) -> None:
        """Mark the query dirty; safe to call from any thread."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._changed.set)

    def close(self) -> None:
        """Stop delivering. Pending and future iterations end the stream."""
        if self.closed:
            return
        self.closed = True
        self._store._unregister(self)
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._changed.set)

    def restart(self) -> "LiveQuery[T]":
        """Return a fresh, unstarted query over the same scope."""
        return LiveQuery(self._store, self.scope, self._fetch)


class SessionStore:
    """
    Storage adapter for chats and messages.

    Constructed once per process with an explicit engine and shared by the
    HTTP layer and chat controllers. Every method filters by user_id.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._watchers: Dict[Scope, Set[LiveQuery]] = {}
        self._lock = threading.Lock()
        self._last_stamp: Optional[datetime] = None

    # ---- infrastructure ----

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        """Open a session, translating driver errors into PersistenceError."""
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Storage error while trying to {action}: {str(e)}")
            raise PersistenceError(f"Failed to {action}") from e

    def _now(self) -> datetime:
        """Write time; never equal to or before the previous one issued."""
        with self._lock:
            now = utcnow()
            if self._last_stamp is not None and now <= self._last_stamp:
                now = self._last_stamp + timedelta(microseconds=1)
            self._last_stamp = now
            return now

    def _register(self, query: LiveQuery) -> None:
        with self._lock:
            self._watchers.setdefault(query.scope, set()).add(query)

    def _unregister(self, query: LiveQuery) -> None:
        with self._lock:
            watchers = self._watchers.get(query.scope)
            if watchers is None:
                return
            watchers.discard(query)
            if not watchers:
                del self._watchers[query.scope]

    def _notify(self, *scopes: Scope) -> None:
        with self._lock:
            queries = [q for scope in scopes for q in self._watchers.get(scope, ())]
        for query in queries:
            query.notify()

    @staticmethod
    def _chats_scope(user_id: str) -> Scope:
        return ("chats", user_id)

    @staticmethod
    def _messages_scope(chat_id: str) -> Scope:
        return ("messages", chat_id)

    def _owned_chat(self, session: Session, user_id: str, chat_id: str) -> Chat:
        statement = select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
        chat = session.exec(statement).first()
        if not chat:
            raise NotFoundError(f"Chat {chat_id} not found")
        return chat

    # ---- chats ----

    def create_chat(
        self,
        user_id: str,
        *,
        is_secret: bool = False,
        title: str = DEFAULT_CHAT_TITLE,
    ) -> Chat:
        """
        Create a chat with store-assigned timestamps.

        Args:
            user_id: Owner
            is_secret: Secret flag, fixed for the chat's lifetime
            title: Initial title

        Returns:
            The stored Chat
        """
        now = self._now()
        with self._session("create chat") as session:
            chat = Chat(
                user_id=user_id,
                title=title,
                is_secret=is_secret,
                created_at=now,
                last_updated_at=now,
            )
            session.add(chat)
            session.commit()
            session.refresh(chat)

        logger.info(f"Chat created: user={user_id}, chat={chat.id}, secret={is_secret}")
        self._notify(self._chats_scope(user_id))
        return chat

    def get_chat(self, user_id: str, chat_id: str) -> Optional[Chat]:
        with self._session("load chat") as session:
            statement = select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
            return session.exec(statement).first()

    def list_chats(self, user_id: str) -> List[Chat]:
        """User's chats, most recently updated first."""
        with self._session("load chats") as session:
            statement = (
                select(Chat)
                .where(Chat.user_id == user_id)
                .order_by(Chat.last_updated_at.desc(), Chat.created_at.desc())
            )
            return list(session.exec(statement).all())

    def update_chat(
        self,
        user_id: str,
        chat_id: str,
        *,
        title: Optional[str] = None,
        touch: bool = False,
    ) -> Chat:
        """
        Update a chat's title and/or refresh its last-updated time.

        Raises:
            NotFoundError: If the chat does not exist or is not owned by user
        """
        with self._session("update chat") as session:
            chat = self._owned_chat(session, user_id, chat_id)
            if title is not None:
                chat.title = title
            if touch:
                chat.last_updated_at = self._now()
            session.add(chat)
            session.commit()
            session.refresh(chat)

        self._notify(self._chats_scope(user_id))
        return chat

    def rename_chat(self, user_id: str, chat_id: str, title: str) -> Chat:
        return self.update_chat(user_id, chat_id, title=title, touch=True)

    def touch_chat(self, user_id: str, chat_id: str) -> Chat:
        return self.update_chat(user_id, chat_id, touch=True)

    def delete_chat(self, user_id: str, chat_id: str) -> None:
        """
        Delete a chat and all of its messages in one transaction.

        Raises:
            NotFoundError: If the chat does not exist or is not owned by user
        """
        with self._session("delete chat") as session:
            chat = self._owned_chat(session, user_id, chat_id)
            messages = session.exec(select(Message).where(Message.chat_id == chat_id)).all()
            for message in messages:
                session.delete(message)
            session.delete(chat)
            session.commit()

        logger.info(f"Chat deleted: user={user_id}, chat={chat_id}")
        self._notify(self._chats_scope(user_id), self._messages_scope(chat_id))

    # ---- messages ----

    def add_message(
        self,
        user_id: str,
        chat_id: str,
        sender: str,
        text: str,
        file_name: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> Message:
        """
        Append a message to a chat.

        Raises:
            ValueError: If sender is unknown
            NotFoundError: If the chat does not exist or is not owned by user
            PersistenceError: If the chat is secret
        """
        if sender not in SENDERS:
            raise ValueError(f"Unknown sender {sender!r}")

        with self._session("save message") as session:
            chat = self._owned_chat(session, user_id, chat_id)
            if chat.is_secret:
                raise PersistenceError("Messages of secret chats are not stored")
            message = Message(
                chat_id=chat_id,
                user_id=user_id,
                sender=sender,
                text=text,
                sent_at=self._now(),
                file_name=file_name,
                file_path=file_path,
            )
            session.add(message)
            session.commit()
            session.refresh(message)

        self._notify(self._messages_scope(chat_id))
        return message

    def list_messages(self, user_id: str, chat_id: str) -> List[Message]:
        """Messages of a chat in send order."""
        with self._session("load messages") as session:
            statement = (
                select(Message)
                .where(Message.chat_id == chat_id, Message.user_id == user_id)
                .order_by(Message.sent_at, Message.id)
            )
            return list(session.exec(statement).all())

    def get_message(self, user_id: str, chat_id: str, message_id: str) -> Optional[Message]:
        with self._session("load message") as session:
            statement = select(Message).where(
                Message.id == message_id,
                Message.chat_id == chat_id,
                Message.user_id == user_id,
            )
            return session.exec(statement).first()

    def set_reaction(
        self,
        user_id: str,
        chat_id: str,
        message_id: str,
        reaction: Optional[str],
    ) -> Message:
        """
        Set or clear a message's reaction.

        Raises:
            ValueError: If reaction is not like, dislike or None
            NotFoundError: If the message does not exist or is not owned by user
        """
        if reaction is not None and reaction not in REACTIONS:
            raise ValueError(f"Unknown reaction {reaction!r}")

        with self._session("save reaction") as session:
            statement = select(Message).where(
                Message.id == message_id,
                Message.chat_id == chat_id,
                Message.user_id == user_id,
            )
            message = session.exec(statement).first()
            if not message:
                raise NotFoundError(f"Message {message_id} not found")
            message.reaction = reaction
            session.add(message)
            session.commit()
            session.refresh(message)

        self._notify(self._messages_scope(chat_id))
        return message

    # ---- live queries ----

    def watch_chats(self, user_id: str) -> LiveQuery[Chat]:
        return LiveQuery(self, self._chats_scope(user_id), lambda: self.list_chats(user_id))

    def watch_messages(self, user_id: str, chat_id: str) -> LiveQuery[Message]:
        return LiveQuery(
            self,
            self._messages_scope(chat_id),
            lambda: self.list_messages(user_id, chat_id),
        )
