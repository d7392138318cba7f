import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("API_URL", "http://api.test/v1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402

from finhub.api.client import AuthContext  # noqa: E402
from finhub.web import app as flask_app  # noqa: E402


@pytest.fixture()
def app():
    flask_app.config.update(TESTING=True, WTF_CSRF_ENABLED=False)
    yield flask_app


@pytest.fixture()
def fake_api(monkeypatch):
    api = MagicMock()
    api.categories.list.return_value = []
    api.payment_methods.list.return_value = []
    api.attachments.list.return_value = []
    api.expenses.tags.return_value = []
    api.expenses.vendors.return_value = []
    monkeypatch.setattr("finhub.web.build_api", lambda auth: api)
    return api


@pytest.fixture()
def client(app, fake_api):
    return app.test_client()


@pytest.fixture()
def logged_in(client):
    with client.session_transaction() as sess:
        sess[AuthContext.SESSION_KEY] = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "csrf_token": "csrf-1",
            "user": {"id": "u1", "email": "owner@example.com"},
        }
    return client


@pytest.fixture()
def flashed(client):
    """Messages flashed so far in the test client session"""
    def read():
        with client.session_transaction() as sess:
            return [message for _, message in sess.get("_flashes", [])]
    return read
