import asyncio
from datetime import timedelta

import pytest

from mental_buddy.core.errors import NotFoundError, PersistenceError, SubscriptionError
from mental_buddy.services.live_view import LiveCollection, SessionStoreAdapter
from mental_buddy.services.session_store import LiveQuery

from conftest import USER_ID, settle


def test_create_chat_defaults(store):
    chat = store.create_chat(USER_ID)

    assert chat.id
    assert chat.user_id == USER_ID
    assert chat.title == "New Chat"
    assert chat.is_secret is False
    assert chat.created_at == chat.last_updated_at


def test_stored_times_are_utc_aware(store):
    chat = store.create_chat(USER_ID)
    store.add_message(USER_ID, chat.id, "user", "hi")

    stored = store.get_chat(USER_ID, chat.id)
    message = store.list_messages(USER_ID, chat.id)[0]
    for value in (stored.created_at, stored.last_updated_at, message.sent_at):
        assert value.tzinfo is not None
        assert value.utcoffset() == timedelta(0)
    assert message.sent_at > stored.created_at


def test_chats_ordered_by_last_update(store):
    first = store.create_chat(USER_ID)
    second = store.create_chat(USER_ID)
    store.touch_chat(USER_ID, first.id)

    assert [c.id for c in store.list_chats(USER_ID)] == [first.id, second.id]


def test_chats_are_scoped_to_owner(store):
    chat = store.create_chat(USER_ID)

    assert store.list_chats("someone-else") == []
    assert store.get_chat("someone-else", chat.id) is None
    with pytest.raises(NotFoundError):
        store.rename_chat("someone-else", chat.id, "Mine now")


def test_write_times_strictly_increase(store):
    chat = store.create_chat(USER_ID)
    stamps = [store.touch_chat(USER_ID, chat.id).last_updated_at for _ in range(5)]

    assert stamps == sorted(set(stamps))
    assert stamps[0] > chat.last_updated_at


def test_messages_in_send_order(store):
    chat = store.create_chat(USER_ID)
    store.add_message(USER_ID, chat.id, "user", "hi")
    store.add_message(USER_ID, chat.id, "ai", "hello")

    messages = store.list_messages(USER_ID, chat.id)
    assert [(m.sender, m.text) for m in messages] == [("user", "hi"), ("ai", "hello")]
    assert messages[0].reaction is None
    assert messages[0].file_name is None


def test_secret_chat_refuses_messages(store):
    chat = store.create_chat(USER_ID, is_secret=True)

    with pytest.raises(PersistenceError):
        store.add_message(USER_ID, chat.id, "user", "hi")
    assert store.list_messages(USER_ID, chat.id) == []


def test_unknown_sender_and_reaction_rejected(store):
    chat = store.create_chat(USER_ID)
    message = store.add_message(USER_ID, chat.id, "user", "hi")

    with pytest.raises(ValueError):
        store.add_message(USER_ID, chat.id, "assistant", "hi")
    with pytest.raises(ValueError):
        store.set_reaction(USER_ID, chat.id, message.id, "love")


def test_reaction_set_and_clear(store):
    chat = store.create_chat(USER_ID)
    message = store.add_message(USER_ID, chat.id, "ai", "hello")

    assert store.set_reaction(USER_ID, chat.id, message.id, "like").reaction == "like"
    assert store.set_reaction(USER_ID, chat.id, message.id, None).reaction is None
    with pytest.raises(NotFoundError):
        store.set_reaction(USER_ID, chat.id, "missing", "like")


def test_delete_chat_removes_its_messages(store):
    doomed = store.create_chat(USER_ID)
    kept = store.create_chat(USER_ID)
    store.add_message(USER_ID, doomed.id, "user", "bye")
    store.add_message(USER_ID, kept.id, "user", "stay")

    store.delete_chat(USER_ID, doomed.id)

    assert store.get_chat(USER_ID, doomed.id) is None
    assert store.list_messages(USER_ID, doomed.id) == []
    assert len(store.list_messages(USER_ID, kept.id)) == 1
    with pytest.raises(NotFoundError):
        store.delete_chat(USER_ID, doomed.id)


def test_live_query_delivers_full_snapshots(store):
    async def scenario():
        query = store.watch_chats(USER_ID)
        assert await query.__anext__() == []

        store.create_chat(USER_ID)
        store.create_chat(USER_ID)
        snapshot = await asyncio.wait_for(query.__anext__(), 1)
        assert len(snapshot) == 2

        query.close()
        with pytest.raises(StopAsyncIteration):
            await query.__anext__()

    asyncio.run(scenario())


def test_live_query_ignores_other_scopes(store):
    async def scenario():
        query = store.watch_chats(USER_ID)
        await query.__anext__()

        store.create_chat("someone-else")
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(query.__anext__(), 0.05)
        query.close()

    asyncio.run(scenario())


def test_live_query_failure_is_terminal(store):
    def failing():
        raise PersistenceError("Failed to load chats")

    async def scenario():
        query = LiveQuery(store, ("chats", USER_ID), failing)
        with pytest.raises(SubscriptionError):
            await query.__anext__()
        assert query.closed
        with pytest.raises(StopAsyncIteration):
            await query.__anext__()

        restarted = query.restart()
        assert not restarted.closed

    asyncio.run(scenario())


def test_live_collection_surfaces_subscription_error(store):
    def failing():
        raise PersistenceError("permission denied")

    async def scenario():
        collection = LiveCollection("chats")
        collection.attach(LiveQuery(store, ("chats", USER_ID), failing))
        assert collection.loading
        await settle()

        assert collection.loading is False
        assert isinstance(collection.error, SubscriptionError)
        assert collection.items == []
        collection.detach()

    asyncio.run(scenario())


def test_adapter_rebinding_drops_stale_chat(store):
    first = store.create_chat(USER_ID)
    second = store.create_chat(USER_ID)

    async def scenario():
        adapter = SessionStoreAdapter(store)
        adapter.bind(USER_ID, first.id)
        await settle()
        adapter.bind(USER_ID, second.id)
        store.add_message(USER_ID, first.id, "user", "old chat")
        await settle()

        assert adapter.messages.items == []
        assert [c.id for c in adapter.chats.items] == [second.id, first.id]

        store.add_message(USER_ID, second.id, "user", "new chat")
        await settle()
        assert [m.text for m in adapter.messages.items] == ["new chat"]

        adapter.bind(None)
        assert adapter.chats.items == []
        assert adapter.messages.items == []
        adapter.close()

    asyncio.run(scenario())
