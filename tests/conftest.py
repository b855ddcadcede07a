"""Shared pytest fixtures.

Provides:
- A file-based SQLite record store in a temporary directory
- A fake notification sink recording every send
- A FastAPI test client with admin and cron credentials
- Manifest and origin factories
"""

import os

# Settings are read at import time, so required values must exist first
os.environ.setdefault("SHIPTRACK_SECRET_KEY", "test-secret")
os.environ.setdefault("SHIPTRACK_CRON_SECRET", "cron-secret")
os.environ.setdefault("SHIPTRACK_SCHEDULER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from shiptrack.config import settings
from shiptrack.models.shipment import Manifest, OriginMessageRef
from shiptrack.services import whatsapp
from shiptrack.storage import database


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the record store at a fresh database file."""
    monkeypatch.setattr(settings, "data_dir", str(tmp_path))
    database.init_db()
    return tmp_path


class FakeSink:
    """Stands in for the WhatsApp sink; set `succeed` to control the outcome."""

    def __init__(self):
        self.succeed = True
        self.calls: list[tuple[str, str | None, str]] = []

    async def __call__(self, recipient_handle, reply_to_message_id, text, **kwargs):
        self.calls.append((recipient_handle, reply_to_message_id, text))
        return self.succeed


@pytest.fixture
def sink(monkeypatch):
    fake = FakeSink()
    monkeypatch.setattr(whatsapp, "send_text", fake)
    return fake


@pytest.fixture
def manifest() -> Manifest:
    return Manifest(
        sender_name="B",
        sender_country="NG",
        receiver_name="A",
        receiver_address="1 Main St",
        receiver_country="US",
        receiver_phone="+1555",
        receiver_email="a@example.com",
    )


@pytest.fixture
def origin() -> OriginMessageRef:
    return OriginMessageRef(message_id="wamid.ABC123", sender_handle="15550001111")


@pytest.fixture
def client(db, sink) -> TestClient:
    from shiptrack.main import app

    return TestClient(app)


@pytest.fixture
def admin_client(client) -> TestClient:
    return TestClient(client.app, cookies={"shiptrack_session": settings.secret_key})


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.cron_secret}"}
