"""
Pytest fixtures for the invoice manager.

Every test that touches storage gets a fresh app bound to an in-memory
SQLite database, with the overdue scheduler switched off.
"""

import logging
from datetime import date

import pytest
from sqlalchemy import select

from invoice_manager import db_manager
from invoice_manager.app import create_app
from invoice_manager.logging_config import configure_logging, reset_logging
from invoice_manager.models import Counter, db

OWNER = "owner-1"
OTHER_OWNER = "owner-2"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'SCHEDULER_ENABLED': False,
    'LOG_LEVEL': 'DEBUG',
}

SAMPLE_ITEMS = [
    {"description": "Dev", "quantity": 10, "rate": 75},
    {"description": "Consulting", "quantity": 5, "rate": 100},
]


def counter_value(bucket):
    """Sequence for ``bucket`` as the test session sees it, None before first use."""
    return db.session.execute(select(Counter.seq).where(Counter.bucket == bucket)).scalar_one_or_none()


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured_logs():
    """Records emitted under the ``invoice_manager`` logger during the test."""
    handler = _ListHandler()
    logger = logging.getLogger("invoice_manager")
    logger.addHandler(handler)
    yield handler.records
    logger.removeHandler(handler)


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


class ApiClient:
    """Flask test client that always sends an owner header."""

    def __init__(self, client, owner_id):
        self._client = client
        self.owner_id = owner_id

    def _headers(self, headers):
        merged = {'X-Owner-Id': self.owner_id}
        merged.update(headers or {})
        return merged

    def get(self, url, headers=None, **kwargs):
        return self._client.get(url, headers=self._headers(headers), **kwargs)

    def post(self, url, headers=None, **kwargs):
        return self._client.post(url, headers=self._headers(headers), **kwargs)

    def patch(self, url, headers=None, **kwargs):
        return self._client.patch(url, headers=self._headers(headers), **kwargs)

    def delete(self, url, headers=None, **kwargs):
        return self._client.delete(url, headers=self._headers(headers), **kwargs)


@pytest.fixture
def api(app):
    return ApiClient(app.test_client(), OWNER)


@pytest.fixture
def other_api(app):
    return ApiClient(app.test_client(), OTHER_OWNER)


# =============================================================================
# Record factories
# =============================================================================


@pytest.fixture
def make_client(app):
    def _make(owner_id=OWNER, **overrides):
        data = {"name": "Acme Corp", "email": "Billing@Acme.test", "company": "Acme"}
        data.update(overrides)
        return db_manager.add_client(owner_id, data)
    return _make


@pytest.fixture
def make_project(app, make_client):
    def _make(owner_id=OWNER, client=None, **overrides):
        client = client or make_client(owner_id=owner_id)
        data = {"title": "Website rebuild", "client_id": client.id, "category": "development"}
        data.update(overrides)
        return db_manager.add_project(owner_id, data)
    return _make


@pytest.fixture
def make_invoice(app, make_project):
    def _make(owner_id=OWNER, project=None, items=None, **overrides):
        project = project or make_project(owner_id=owner_id)
        data = {
            "project_id": project.id,
            "items": items if items is not None else SAMPLE_ITEMS,
            "invoice_date": date(2024, 3, 15),
        }
        data.update(overrides)
        return db_manager.create_invoice(owner_id, data)
    return _make
