"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths for backend modules, required
    settings defaults, and fixtures swapping MongoDB and the event bus for
    in-memory fakes.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

_THIS_FILE = Path(__file__).resolve()
_TESTS_DIR = _THIS_FILE.parent
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]

for candidate in (str(_TESTS_DIR), str(_BACKEND_DIR), str(_REPO_ROOT)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")

from fake_mongo import FakeDB  # noqa: E402


@pytest.fixture
def fake_db(monkeypatch):
    import app.database as _db

    db = FakeDB(unique={
        "betslip_legs": [("betslip_id", "leg_order")],
        "packages": [("slug",)],
        "users": [("email",)],
    })
    monkeypatch.setattr(_db, "db", db, raising=False)
    return db


@pytest.fixture
def published(monkeypatch):
    """Capture events published on the shared bus instead of queueing them."""
    from app.services.event_bus import event_bus

    events: list = []

    def _publish(event):
        events.append(event)
        return True

    monkeypatch.setattr(event_bus, "publish", _publish)
    return events
