import uvicorn

from mental_buddy import __main__ as entry
from mental_buddy.config import settings


def test_server_address_comes_from_settings(monkeypatch):
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setattr(settings, "HOST", "127.0.0.1")
    monkeypatch.setattr(settings, "PORT", 9100)

    entry.main()

    assert calls == [("mental_buddy.main:app", {"host": "127.0.0.1", "port": 9100})]
