"""
Pytest fixtures for gridledger backend tests.

Provides the app (in-memory SQLite, in-memory grid), a fresh ledger context
per test with a fixed clock, a test client bound to that context, and a
few helpers to seed records.
"""

from datetime import datetime, timezone

import pytest

from gridledger import create_app
from gridledger.extensions import db
from gridledger.services.cache_service import MemoryCacheBackend
from gridledger.services.context import build_context
from gridledger.services.document_service import LocalBlobStorage
from gridledger.services.grid_storage import MemoryGrid
from gridledger.services.property_store import MemoryPropertyStore


# 2024/03/15 10:00 in Asia/Tokyo
FIXED_NOW = datetime(2024, 3, 15, 1, 0, tzinfo=timezone.utc)

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'GRID_BACKEND': 'memory',
    'PROPERTY_BACKEND': 'memory',
    'CACHE_BACKEND': 'memory',
    'STORE_LOCK_TIMEOUT_SECONDS': 0.2,
    'SEQUENCE_LOCK_TIMEOUT_SECONDS': 0.2,
    'ADMIN_USERS': 'admin@example.com',
    'INFERENCE_API_KEY': '',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def ctx(app, tmp_path):
    """Fresh ledger context (empty grid, counters and cache) installed on the app."""
    context = build_context(
        app.config,
        grid=MemoryGrid(),
        properties=MemoryPropertyStore(),
        cache_backend=MemoryCacheBackend(),
        blobs=LocalBlobStorage(tmp_path / "documents"),
        clock=lambda: FIXED_NOW,
    )
    app.extensions["gridledger"] = context
    return context


@pytest.fixture(scope='function')
def client(app, ctx):
    """Create test client."""
    return app.test_client()


def user_headers(email: str = "staff@example.com") -> dict:
    """Helper to create the acting-user header."""
    return {'X-User-Email': email}


def estimate_payload(estimate_id: str = "", **header) -> dict:
    """One-line estimate: sales 100000, cost 40000, ordered from 山田工業."""
    base = {
        "id": estimate_id,
        "client": "東和建設",
        "project": "本社改修",
        "location": "東京都港区",
        "payment": "月末締め翌月末払い",
    }
    base.update(header)
    return {
        "header": base,
        "items": [
            {
                "category": "内装",
                "product": "クロス張替",
                "spec": "量産品",
                "qty": 1,
                "unit": "式",
                "cost": 40000,
                "price": 100000,
                "amount": 100000,
                "vendor": "山田工業",
            },
        ],
    }
