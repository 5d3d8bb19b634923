"""Chat session controller.

Owns the client-side state of one signed-in user:
- which chat is active, whether secret mode is on, which chats await a reply
- create/select/rename/delete of chats
- the send-message workflow (store user turn, ask the relay, store reply,
  derive a title)
- reactions and copy-to-clipboard

Persisted chats and messages are read only through live views; the
controller keeps no authoritative cache of its own. Every failure is turned
into a notification, nothing is re-raised to the caller.
"""
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from mental_buddy.core.errors import BuddyError, PersistenceError, RelayInternalError
from mental_buddy.models.conversation import (
    DEFAULT_CHAT_TITLE,
    MAX_TITLE_LENGTH,
    REACTIONS,
    SENDER_AI,
    SENDER_USER,
    Chat,
    Message,
    utcnow,
)
from mental_buddy.services.live_view import LiveCollection, SessionStoreAdapter
from mental_buddy.services.notifications import Notifier
from mental_buddy.services.relay import MessageRelay
from mental_buddy.services.session_store import SessionStore
from mental_buddy.utils import generate_chat_title

logger = logging.getLogger(__name__)

ConfirmHandler = Callable[[str], Union[bool, Awaitable[bool]]]
ClipboardHandler = Callable[[str], Union[None, Awaitable[None]]]

ACTION_COPY = "copy"
DELETE_PROMPT = "Delete this chat? This cannot be undone."
EMPTY_REPLY = "Received an empty reply from the AI"


@dataclass
class Attachment:
    """A file the user picked. Never uploaded or sent to the model."""
    name: str
    content_type: str = "application/octet-stream"
    size: int = 0


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ChatSessionController:
    """
    State machine behind the chat screen.

    Args:
        store: Shared session store
        relay: Message relay used for AI replies
        notifier: Toast sink; a fresh Notifier when omitted
        confirm: Asked before destructive actions; declines when omitted
        clipboard: Receives copied text; copying fails when omitted
        mobile: Collapse the sidebar after creating or selecting a chat
    """

    def __init__(
        self,
        store: SessionStore,
        relay: MessageRelay,
        *,
        notifier: Optional[Notifier] = None,
        confirm: Optional[ConfirmHandler] = None,
        clipboard: Optional[ClipboardHandler] = None,
        mobile: bool = False,
    ):
        self.store = store
        self.relay = relay
        self.notifier = notifier or Notifier()
        self.confirm = confirm
        self.clipboard = clipboard
        self.mobile = mobile
        self.sidebar_open = not mobile

        self.adapter = SessionStoreAdapter(store, on_chats=self._on_chats)
        self.user_id: Optional[str] = None
        self.active_chat_id: Optional[str] = None
        self.secret_mode_enabled = False

        self._auto_selected = False
        self._in_flight: Set[str] = set()
        # Secret chats only: messages shown for this session, never stored
        self._transcripts: Dict[str, List[Message]] = {}

    # ---- observable state ----

    @property
    def chats(self) -> List[Chat]:
        return self.adapter.chats.items

    @property
    def chats_loading(self) -> bool:
        return self.adapter.chats.loading

    @property
    def chats_error(self) -> Optional[BuddyError]:
        return self.adapter.chats.error

    @property
    def active_chat(self) -> Optional[Chat]:
        if self.user_id is None or self.active_chat_id is None:
            return None
        for chat in self.chats:
            if chat.id == self.active_chat_id:
                return chat
        return self.store.get_chat(self.user_id, self.active_chat_id)

    @property
    def messages(self) -> List[Message]:
        """Messages of the active chat, oldest first."""
        if self.active_chat_id is None:
            return []
        if self.active_chat_id in self._transcripts:
            return list(self._transcripts[self.active_chat_id])
        return self.adapter.messages.items

    @property
    def messages_loading(self) -> bool:
        return self.adapter.messages.loading

    @property
    def messages_error(self) -> Optional[BuddyError]:
        return self.adapter.messages.error

    @property
    def ai_request_in_flight(self) -> bool:
        """True while the active chat waits for its AI reply."""
        return self.active_chat_id is not None and self.active_chat_id in self._in_flight

    # ---- identity ----

    async def set_user(self, user_id: Optional[str]) -> None:
        """
        React to the signed-in identity changing.

        Subscribes to the new user's chats, or tears everything down when
        the user signs out. The most recently updated chat is selected
        once, when the first snapshot arrives and nothing is active yet.
        """
        if user_id == self.user_id:
            return

        self.user_id = user_id
        self.active_chat_id = None
        self._auto_selected = False
        self._transcripts.clear()
        self.adapter.bind(user_id, None)
        logger.info(f"Session user changed: user={user_id}")

    async def sign_out(self) -> None:
        key = "sign-out"
        self.notifier.loading("Signing out...", key)
        await self.set_user(None)
        self.notifier.success("Signed out successfully.", key)

    def _on_chats(self, collection: LiveCollection[Chat]) -> None:
        if collection.error is not None or self.user_id is None:
            return
        if self.active_chat_id is None and not self._auto_selected and collection.items:
            self._auto_selected = True
            self._activate(collection.items[0])

    # ---- navigation ----

    def _activate(self, chat: Chat) -> None:
        self.active_chat_id = chat.id
        if chat.is_secret:
            self._transcripts.setdefault(chat.id, [])
        self.adapter.bind(self.user_id, None if chat.is_secret else chat.id)

    def _collapse_sidebar(self) -> None:
        if self.mobile:
            self.sidebar_open = False

    def toggle_sidebar(self) -> None:
        self.sidebar_open = not self.sidebar_open

    def toggle_secret_mode(self) -> bool:
        """Flip secret mode for chats created from now on."""
        self.secret_mode_enabled = not self.secret_mode_enabled
        if self.secret_mode_enabled:
            self.notifier.info("Secret mode on: new chats won't be saved.", "secret-mode")
        else:
            self.notifier.info("Secret mode off: new chats will be saved.", "secret-mode")
        return self.secret_mode_enabled

    async def create_chat(self) -> Optional[Chat]:
        """Create a chat in the current secret mode and make it active."""
        if self.user_id is None:
            self.notifier.error("Please sign in first.")
            return None

        key = "create-chat"
        self.notifier.loading("Creating chat...", key)
        try:
            chat = self.store.create_chat(self.user_id, is_secret=self.secret_mode_enabled)
        except PersistenceError:
            self.notifier.error("Failed to create chat.", key)
            return None

        self._auto_selected = True
        self._activate(chat)
        self._collapse_sidebar()
        self.notifier.success("Secret chat started." if chat.is_secret else "New chat created.", key)
        return chat

    async def select_chat(self, chat_id: str) -> bool:
        if self.user_id is None:
            return False
        if chat_id == self.active_chat_id:
            return True

        try:
            chat = self.store.get_chat(self.user_id, chat_id)
        except PersistenceError:
            self.notifier.error("Failed to open chat.")
            return False
        if chat is None:
            self.notifier.error("Chat not found.")
            return False

        self._auto_selected = True
        self._activate(chat)
        self._collapse_sidebar()
        return True

    async def rename_chat(self, chat_id: str, new_title: str) -> bool:
        """Rename a chat; the title is trimmed and cut to 100 characters."""
        if self.user_id is None:
            return False
        title = new_title.strip() if isinstance(new_title, str) else ""
        if not title:
            self.notifier.error("Title cannot be empty.")
            return False

        key = f"rename-{chat_id}"
        try:
            self.store.rename_chat(self.user_id, chat_id, title[:MAX_TITLE_LENGTH])
        except PersistenceError:
            self.notifier.error("Failed to rename chat.", key)
            return False
        self.notifier.success("Chat renamed.", key)
        return True

    async def delete_chat(self, chat_id: str) -> bool:
        """
        Delete a chat and its messages after confirmation.

        When the active chat goes away, the most recently updated remaining
        chat becomes active, or none if no chats are left.
        """
        if self.user_id is None:
            return False
        if not await self._confirm(DELETE_PROMPT):
            return False

        user_id = self.user_id
        key = f"delete-{chat_id}"
        self.notifier.loading("Deleting chat...", key)
        try:
            self.store.delete_chat(user_id, chat_id)
        except PersistenceError:
            self.notifier.error("Failed to delete chat.", key)
            return False

        self._transcripts.pop(chat_id, None)
        if self.active_chat_id == chat_id:
            try:
                remaining = self.store.list_chats(user_id)
            except PersistenceError:
                remaining = []
            if remaining:
                self._activate(remaining[0])
            else:
                self.active_chat_id = None
                self.adapter.bind(user_id, None)

        self.notifier.success("Chat deleted.", key)
        return True

    async def _confirm(self, prompt: str) -> bool:
        if self.confirm is None:
            logger.warning("No confirmation handler configured, declining destructive action")
            return False
        return bool(await _resolve(self.confirm(prompt)))

    # ---- messaging ----

    async def send_message(self, text: str, attachment: Optional[Attachment] = None) -> bool:
        """
        Send a user message to the active chat and record the AI reply.

        Normal chats store the user turn, bump the chat's last-updated time,
        store the reply and derive a title. Secret chats store nothing; both
        turns live only in this session's transcript. Only one request per
        chat may be in flight; a concurrent send for the same chat is
        rejected.

        Returns:
            True if an AI reply was received and recorded
        """
        text = text.strip() if isinstance(text, str) else ""
        if self.user_id is None or self.active_chat_id is None:
            return False
        if not text and attachment is None:
            return False

        chat_id = self.active_chat_id
        if chat_id in self._in_flight:
            self.notifier.info("Please wait for the current reply.", f"busy-{chat_id}")
            return False

        self._in_flight.add(chat_id)
        try:
            return await self._send(self.user_id, chat_id, text, attachment)
        finally:
            self._in_flight.discard(chat_id)

    async def _send(
        self,
        user_id: str,
        chat_id: str,
        text: str,
        attachment: Optional[Attachment],
    ) -> bool:
        try:
            chat = self.store.get_chat(user_id, chat_id)
        except PersistenceError:
            chat = None
        if chat is None:
            self.notifier.error("Failed to send message.")
            return False

        if attachment is not None:
            if chat.is_secret:
                self.notifier.info("File attachments are ignored in secret chats.")
            else:
                self.notifier.error("File attachments are not supported yet.")
            if not text:
                return False

        if chat.is_secret:
            self._remember(chat, SENDER_USER, text)
        else:
            try:
                self.store.add_message(user_id, chat_id, SENDER_USER, text)
                self.store.touch_chat(user_id, chat_id)
            except PersistenceError:
                self.notifier.error("Failed to send message.")
                return False

        try:
            reply = await self.relay.reply(text)
            if not isinstance(reply, str) or not reply.strip():
                raise RelayInternalError(EMPTY_REPLY)
        except BuddyError as e:
            self._report_failure(e.message)
            return False
        except Exception as e:
            logger.exception(f"Unexpected relay failure for chat {chat_id}: {str(e)}")
            self._report_failure("Unknown AI error")
            return False

        if chat.is_secret:
            self._remember(chat, SENDER_AI, reply)
            return True

        try:
            self.store.add_message(user_id, chat_id, SENDER_AI, reply)
        except PersistenceError:
            self.notifier.error("Failed to save the AI reply.")
            return False

        try:
            history = self.store.list_messages(user_id, chat_id)
        except PersistenceError:
            history = []
        await self.update_title_if_default(chat_id, history)
        return True

    def _remember(self, chat: Chat, sender: str, text: str) -> None:
        self._transcripts.setdefault(chat.id, []).append(
            Message(chat_id=chat.id, user_id=chat.user_id, sender=sender, text=text, sent_at=utcnow())
        )

    def _report_failure(self, reason: str) -> None:
        # Nothing is stored for a failed reply, secret or not
        self.notifier.error(f"AI Error: {reason or 'Unknown AI error'}")

    async def update_title_if_default(self, chat_id: str, messages: Sequence[Message]) -> bool:
        """
        Replace the default title with one derived from the first user message.

        No-op once the stored title differs from "New Chat".

        Returns:
            True if a new title was stored
        """
        if self.user_id is None:
            return False
        first = next(
            (m for m in messages if m.sender == SENDER_USER and isinstance(m.text, str)),
            None,
        )
        if first is None:
            return False

        try:
            chat = self.store.get_chat(self.user_id, chat_id)
            if chat is None or chat.title != DEFAULT_CHAT_TITLE:
                return False
            title = generate_chat_title(first.text)
            if title == DEFAULT_CHAT_TITLE:
                return False
            self.store.update_chat(self.user_id, chat_id, title=title)
        except PersistenceError:
            logger.warning(f"Could not update title of chat {chat_id}")
            return False

        logger.info(f"Chat {chat_id} titled {title!r}")
        return True

    # ---- reactions ----

    async def set_reaction(self, message_id: str, action: str) -> bool:
        """
        Apply a message action: like/dislike toggle, or copy its text.

        Copy works everywhere, secret chats included. Likes and dislikes
        are rejected for secret chats; repeating the current reaction
        clears it.
        """
        if self.user_id is None or self.active_chat_id is None:
            return False
        if action == ACTION_COPY:
            return await self._copy(message_id)
        if action not in REACTIONS:
            self.notifier.error(f"Unknown action {action!r}.")
            return False

        key = f"reaction-{message_id}"
        try:
            chat = self.active_chat
            if chat is None:
                return False
            if chat.is_secret:
                self.notifier.info("Reactions are disabled for secret chats.", key)
                return False

            message = self.store.get_message(self.user_id, chat.id, message_id)
            if message is None:
                self.notifier.error("Message not found.", key)
                return False
            reaction = None if message.reaction == action else action
            self.store.set_reaction(self.user_id, chat.id, message_id, reaction)
        except PersistenceError:
            self.notifier.error("Failed to save reaction.", key)
            return False
        return True

    async def _copy(self, message_id: str) -> bool:
        message = next((m for m in self.messages if m.id == message_id), None)
        if message is None or not message.text:
            return False
        if self.clipboard is None:
            self.notifier.error("Failed to copy.")
            return False
        try:
            await _resolve(self.clipboard(message.text))
        except Exception as e:
            logger.warning(f"Clipboard write failed: {str(e)}")
            self.notifier.error("Failed to copy.")
            return False
        self.notifier.success("Copied to clipboard!")
        return True

    def close(self) -> None:
        """Tear down live views."""
        self.adapter.close()
