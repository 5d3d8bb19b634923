from mental_buddy.config import settings
from mental_buddy.core.errors import InvalidInputError, ProviderError

from conftest import USER_ID

CHATS_URL = f"/api/{USER_ID}/chats"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_relay_reply(client, relay):
    response = client.post("/api/chat", json={"message": "I feel stuck"})

    assert response.status_code == 200
    assert response.json() == {"reply": "I'm here for you."}
    assert relay.prompts == ["I feel stuck"]


def test_relay_missing_message(client, relay):
    relay.error = InvalidInputError("Message is required")

    response = client.post("/api/chat", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Message is required"}


def test_relay_provider_status_is_mirrored(client, relay):
    relay.error = ProviderError("quota exceeded", status_code=429)

    response = client.post("/api/chat", json={"message": "hello"})

    assert response.status_code == 429
    assert response.json() == {"error": "quota exceeded"}


def test_list_chats_most_recent_first(client, store):
    older = store.create_chat(USER_ID)
    newer = store.create_chat(USER_ID)
    store.create_chat("someone-else")

    response = client.get(CHATS_URL)

    assert response.status_code == 200
    body = response.json()
    assert [c["id"] for c in body] == [newer.id, older.id]
    assert all(c["updated_label"].endswith(("AM", "PM")) for c in body)


def test_create_chat(client):
    response = client.post(CHATS_URL, json={"is_secret": True})

    assert response.status_code == 201
    body = response.json()
    assert body["title"] == "New Chat"
    assert body["is_secret"] is True


def test_rename_chat(client, store):
    chat = store.create_chat(USER_ID)

    response = client.patch(f"{CHATS_URL}/{chat.id}", json={"title": "  Sleep troubles  "})
    assert response.status_code == 200
    assert response.json()["title"] == "Sleep troubles"

    response = client.patch(f"{CHATS_URL}/{chat.id}", json={"title": "   "})
    assert response.status_code == 400

    response = client.patch(f"{CHATS_URL}/missing", json={"title": "Anything"})
    assert response.status_code == 404


def test_delete_chat(client, store):
    chat = store.create_chat(USER_ID)
    store.add_message(USER_ID, chat.id, "user", "bye")

    response = client.delete(f"{CHATS_URL}/{chat.id}")
    assert response.status_code == 204
    assert store.list_messages(USER_ID, chat.id) == []

    response = client.delete(f"{CHATS_URL}/{chat.id}")
    assert response.status_code == 404


def test_list_messages(client, store):
    chat = store.create_chat(USER_ID)
    store.add_message(USER_ID, chat.id, "user", "hi")
    store.add_message(USER_ID, chat.id, "ai", "hello")

    response = client.get(f"{CHATS_URL}/{chat.id}/messages")

    assert response.status_code == 200
    assert [(m["sender"], m["text"]) for m in response.json()] == [("user", "hi"), ("ai", "hello")]
    assert client.get(f"{CHATS_URL}/missing/messages").status_code == 404


def test_set_reaction(client, store):
    chat = store.create_chat(USER_ID)
    message = store.add_message(USER_ID, chat.id, "ai", "hello")
    url = f"{CHATS_URL}/{chat.id}/messages/{message.id}/reaction"

    response = client.put(url, json={"reaction": "like"})
    assert response.status_code == 200
    assert response.json()["reaction"] == "like"

    response = client.put(url, json={"reaction": None})
    assert response.json()["reaction"] is None

    assert client.put(url, json={"reaction": "love"}).status_code == 422


def test_reaction_rejected_for_secret_chat(client, store):
    chat = store.create_chat(USER_ID, is_secret=True)

    response = client.put(f"{CHATS_URL}/{chat.id}/messages/anything/reaction", json={"reaction": "like"})

    assert response.status_code == 400


def test_user_mismatch(client):
    response = client.get("/api/someone-else/chats")

    assert response.status_code == 401
    assert response.json()["detail"] == "User ID mismatch"


def test_upload_stores_file(client, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))

    response = client.post("/api/upload", files={"file": ("notes.txt", b"feeling better", "text/plain")})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["fileName"] == "notes.txt"
    assert body["filePath"].startswith("/uploads/")
    assert body["filePath"].endswith(".txt")
    stored = tmp_path / body["filePath"].rsplit("/", 1)[1]
    assert stored.read_bytes() == b"feeling better"


def test_upload_rejects_invalid_type(client, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))

    response = client.post("/api/upload", files={"file": ("run.sh", b"echo", "application/x-sh")})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid file type: application/x-sh"}
    assert list(tmp_path.iterdir()) == []


def test_upload_rejects_oversize(client, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "UPLOAD_MAX_BYTES", 1024 * 1024)

    data = b"x" * (1024 * 1024 + 1)
    response = client.post("/api/upload", files={"file": ("big.txt", data, "text/plain")})

    assert response.status_code == 400
    assert response.json() == {"error": "File size exceeds limit (1MB)"}


def test_upload_without_file(client):
    response = client.post("/api/upload")

    assert response.status_code == 400
    assert response.json() == {"error": "No file provided."}


def test_chat_label_uses_local_time(client, store):
    chat = store.create_chat(USER_ID)

    body = client.get(CHATS_URL).json()

    expected = chat.last_updated_at.astimezone().strftime("%I:%M %p").lstrip("0")
    assert body[0]["updated_label"] == expected
