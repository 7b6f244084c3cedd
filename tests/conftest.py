"""Shared pytest setup.

app.config refuses to load without JWT_SECRET and API_KEY, so they are
seeded here before any test module imports the app.
"""

import os

os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-at-least-32-characters-long")
os.environ.setdefault("API_KEY", "sk-test-not-a-real-key")
os.environ.setdefault("DATABASE_PATH", ":memory:")

import pytest

from app.config import settings


@pytest.fixture(autouse=True)
def no_evaluation_delay(monkeypatch):
    monkeypatch.setattr(settings, "evaluation_delay_seconds", 0)
