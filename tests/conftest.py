# =============================================================================
# CONFTEST - shared fixtures
# =============================================================================
# The environment is configured before the application is imported so that
# settings and the engine pick up the temporary database.
# =============================================================================

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="synapse-tests-")

os.environ.update({
    "DATABASE_URL": f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}",
    "JWT_SECRET_KEY": "test-secret",
    "ADMIN_SETUP_KEY": "test-admin-key",
    "GEMINI_API_KEY": "",
    "OPENROUTER_API_KEY": "",
    "USE_GOOGLE_APPS_SCRIPT": "false",
    "GOOGLE_APPS_SCRIPT_URL": "",
    "LOG_LEVEL": "WARNING",
    "ENVIRONMENT": "test",
})

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from synapse_note.db import Base, SessionLocal, engine  # noqa: E402
from synapse_note.main import app  # noqa: E402
from synapse_note.models import User  # noqa: E402
from synapse_note.routers.fastserver import quiz_cache  # noqa: E402


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture(autouse=True)
def reset_database():
    """Start every test from empty tables and an empty listing cache."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    quiz_cache.clear()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# HTTP CLIENT AND USERS
# =============================================================================


@pytest.fixture
def client():
    return TestClient(app)


def register(client, handle, username=None, password="secret123"):
    """Register a user and return bearer headers for them."""
    response = client.post(
        "/auth/register",
        json={"username": username or handle.lstrip("@"), "handle": handle, "password": password},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def user_id(client, headers):
    return client.get("/auth/me", headers=headers).json()["uid"]


def make_admin(handle):
    session = SessionLocal()
    try:
        user = session.query(User).filter(User.handle == handle).one()
        user.is_admin = True
        session.commit()
    finally:
        session.close()


@pytest.fixture
def alice(client):
    return register(client, "@alice", "Alice")


@pytest.fixture
def bob(client):
    return register(client, "@bob", "Bob")


@pytest.fixture
def admin(client):
    headers = register(client, "@root", "Root")
    make_admin("@root")
    return headers
