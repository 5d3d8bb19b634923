"""Live views over the session store for one signed-in user.

A LiveCollection mirrors one LiveQuery into plain state (items, loading,
error). SessionStoreAdapter owns the chats view and the active chat's
messages view and rebinds them whenever the user or active chat changes.
"""
import asyncio
import logging
from typing import Callable, Generic, List, Optional, TypeVar

from mental_buddy.core.errors import SubscriptionError
from mental_buddy.models.conversation import Chat, Message
from mental_buddy.services.session_store import LiveQuery, SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LiveCollection(Generic[T]):
    """
    Consumer state fed by at most one live query at a time.

    items: last delivered snapshot
    loading: True from attach until the first delivery or failure
    error: set when the query terminates with SubscriptionError
    """

    def __init__(self, name: str, on_change: Optional[Callable[["LiveCollection[T]"], None]] = None):
        self.name = name
        self.items: List[T] = []
        self.loading = False
        self.error: Optional[SubscriptionError] = None
        self._on_change = on_change
        self._query: Optional[LiveQuery[T]] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def bound(self) -> bool:
        return self._query is not None

    def attach(self, query: Optional[LiveQuery[T]]) -> None:
        """
        Replace the current query; None detaches and clears the view.

        The old query is closed and its consumer task cancelled before the
        new one starts, so stale snapshots never land in this view.
        """
        self.detach()
        if query is None:
            return
        self._query = query
        self.loading = True
        self._task = asyncio.get_running_loop().create_task(self._consume(query))

    def detach(self) -> None:
        if self._query is not None:
            self._query.close()
        if self._task is not None:
            self._task.cancel()
        self._query = None
        self._task = None
        self.items = []
        self.loading = False
        self.error = None

    def retry(self) -> None:
        """Manual refresh: resubscribe to the same scope after a failure."""
        if self._query is not None:
            self.attach(self._query.restart())

    async def _consume(self, query: LiveQuery[T]) -> None:
        try:
            async for snapshot in query:
                if self._query is not query:
                    return
                self.items = snapshot
                self.loading = False
                self._changed()
        except SubscriptionError as e:
            if self._query is not query:
                return
            logger.error(f"{self.name} view failed: {e.message}")
            self.error = e
            self.loading = False
            self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)


class SessionStoreAdapter:
    """
    Exposes a user's chats (newest activity first) and the active chat's
    messages (oldest first) as live collections.
    """

    def __init__(
        self,
        store: SessionStore,
        on_chats: Optional[Callable[[LiveCollection[Chat]], None]] = None,
        on_messages: Optional[Callable[[LiveCollection[Message]], None]] = None,
    ):
        self.store = store
        self.chats: LiveCollection[Chat] = LiveCollection("chats", on_chats)
        self.messages: LiveCollection[Message] = LiveCollection("messages", on_messages)
        self.user_id: Optional[str] = None
        self.chat_id: Optional[str] = None

    def bind(self, user_id: Optional[str], chat_id: Optional[str] = None) -> None:
        """
        Point the views at a user and optional chat.

        Views whose inputs did not change keep their subscription. Messages
        are only watched for persisted (non-secret) chats; pass chat_id=None
        for secret chats.
        """
        if user_id != self.user_id or (user_id is not None and not self.chats.bound):
            self.chats.attach(self.store.watch_chats(user_id) if user_id else None)

        messages_changed = user_id != self.user_id or chat_id != self.chat_id
        self.user_id = user_id
        self.chat_id = chat_id if user_id else None

        if messages_changed or (self.chat_id is not None and not self.messages.bound):
            if self.chat_id is None:
                self.messages.attach(None)
            else:
                self.messages.attach(self.store.watch_messages(user_id, self.chat_id))

    def close(self) -> None:
        self.chats.detach()
        self.messages.detach()
        self.user_id = None
        self.chat_id = None
