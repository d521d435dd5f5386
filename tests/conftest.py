"""
Pytest configuration for Communication Gateway tests.
Points the data directory and database at a temp dir before any imports.
"""

import os
import tempfile

# Must be set before commgate.config is imported
_test_data_dir = tempfile.mkdtemp(prefix="commgate_test_")
os.environ.setdefault("COMMGATE_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("COMMGATE_APIKEY_HMAC_SECRET", "test-pepper-not-for-production")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete

from commgate.core.database import get_engine, init_db
from commgate.models import (
    AllowlistEntry,
    ContactConsent,
    ContentFilter,
    GatewayApiKey,
    QueueEntry,
)
from commgate.services.content_filter import seed_default_filters

# Schema via the same path the server uses (alembic upgrade head)
init_db()

# Load error registry so GatewayError returns correct HTTP status codes
from commgate.core.errors.registry import error_registry
error_registry.load()


@pytest.fixture(autouse=True)
def clean_db():
    """Empty every table and restore the default content filters."""
    with get_engine().begin() as conn:
        for model in (QueueEntry, AllowlistEntry, ContactConsent, GatewayApiKey, ContentFilter):
            conn.execute(delete(model.__table__))
    seed_default_filters()
    yield


class RecordingSender:
    """Channel sender double: records calls, optionally raises."""

    def __init__(self, error: Exception = None):
        self.calls = []
        self.error = error

    def send(self, recipient, subject, body):
        self.calls.append((recipient, subject, body))
        if self.error is not None:
            raise self.error


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def api_key():
    """(raw_key, record) for a fresh key with default limits."""
    from commgate.services import key_store

    return key_store.create_key("test-agent")


def make_client(app, host="127.0.0.1"):
    from commgate.core.local_only_guard import get_client_host

    app.dependency_overrides[get_client_host] = lambda: host
    return TestClient(app)


@pytest.fixture
def app(sender):
    from commgate.main import create_app
    from commgate.services.webhook_notifier import WebhookNotifier

    return create_app(
        senders={"email": sender, "sms": sender, "imessage": sender},
        notifier=WebhookNotifier(timeout=1.0, max_workers=1),
    )


@pytest.fixture
def client(app):
    with make_client(app) as c:
        yield c


@pytest.fixture
def remote_client(app):
    with make_client(app, host="192.168.1.50") as c:
        yield c
