"""
Pytest configuration and shared test helpers for backend tests.
"""
import os

# Skip server startup (MongoDB) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from unittest.mock import AsyncMock, MagicMock

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app
from auth import create_access_token
from models import OnboardingProject


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


def auth_headers(user_id="user-1", role="client"):
    token = create_access_token({"user_id": user_id, "role": role, "email": f"{user_id}@example.com"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client_headers():
    return auth_headers("user-1", "client")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", "admin")


def make_db():
    """MagicMock database with the collections the services touch."""
    db = MagicMock()
    for name in ("onboarding_projects", "payment_requests", "users", "audit_logs", "message_logs", "stripe_events"):
        collection = getattr(db, name)
        collection.find_one = AsyncMock(return_value=None)
        collection.insert_one = AsyncMock()
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1, modified_count=1))
        collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    return db


def make_cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=list(docs))
    return cursor


def project_doc(**overrides):
    """Stored form of a fresh project, with overrides applied."""
    project = OnboardingProject(project_id="proj-1", user_id="user-1")
    doc = project.model_dump(mode="json")
    doc.update(overrides)
    return doc


USER_DOC = {"user_id": "user-1", "email": "owner@example.com", "name": "Ada Owner", "role": "client"}
