"""Shared fixtures: a throwaway SQLite database and media directory, a TestClient, and factories."""

import itertools
import os
import shutil
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="blog-api-tests-")

# Must be set before config is imported
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-do-not-use-in-production"
os.environ["MEDIA_ROOT"] = os.path.join(_TEST_DIR, "media")
os.environ.pop("TOKEN_EXPIRE_MINUTES", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import config  # noqa: E402
import models  # noqa: E402
from auth import hash_password, issue_token  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from main import app  # noqa: E402
from media import media_store  # noqa: E402
from repositories import PostRepository  # noqa: E402

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def fresh_database():
    """Recreate every table and empty the media directory before each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    shutil.rmtree(config.MEDIA_ROOT, ignore_errors=True)
    os.makedirs(config.MEDIA_ROOT, exist_ok=True)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(name=None, email=None, password=PASSWORD, verified=True):
        n = next(counter)
        user = models.User(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            password=hash_password(password),
            email_verified_at=models.utcnow() if verified else None,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers(db):
    def _headers(user):
        token = issue_token(db, user)
        db.commit()
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def user(make_user):
    return make_user(name="Alice", email="alice@example.com")


@pytest.fixture
def headers(user, auth_headers):
    return auth_headers(user)


@pytest.fixture
def make_category(db):
    def _make(name="News"):
        category = models.PostCategory(name=name)
        db.add(category)
        db.commit()
        db.refresh(category)
        return category

    return _make


@pytest.fixture
def make_post(db):
    def _make(author, title="Hello World", content="Some content", categories=()):
        return PostRepository(db, media_store).create(author, title, content, [c.id for c in categories])

    return _make


@pytest.fixture
def png():
    """Factory for a multipart file tuple holding a small fake PNG."""
    def _png(name="cover.png"):
        return (name, b"\x89PNG\r\n\x1a\n" + b"\x00" * 64, "image/png")

    return _png
