"""
Shared pytest fixtures for the Civic Connect test suite.

Every test gets a fresh in-memory mongomock database carrying the real index
set, plus an httpx AsyncClient bound to the ASGI app with that database
injected through the ``get_db`` dependency.
"""

import os
from datetime import timedelta

os.environ.setdefault("JWT_SECRET", "test-only-secret-" + "x" * 40)

import httpx
import mongomock
import pytest
import pytest_asyncio

from civic_connect.app import app, limiter
from civic_connect.auth import create_access_token, hash_password
from civic_connect.database import ensure_indexes, get_db, new_id, now_utc

PASSWORD = "secret123"


@pytest.fixture(scope="session")
def password_hash():
    """bcrypt is slow; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture
def db():
    database = mongomock.MongoClient().civic_connect_test
    ensure_indexes(database)
    return database


@pytest.fixture
def make_user(db, password_hash):
    def _make(username, role="citizen", municipality="Springfield"):
        doc = {"_id": new_id(), "username": username, "hashed_password": password_hash,
               "email": f"{username}@example.com", "phone": None,
               "municipality": municipality, "role": role,
               "department": "Public Works" if role == "admin" else None,
               "created_at": now_utc()}
        db.users.insert_one(doc)
        return doc
    return _make


@pytest.fixture
def citizen(make_user):
    return make_user("citizen1")


@pytest.fixture
def other_citizen(make_user):
    return make_user("citizen2")


@pytest.fixture
def admin(make_user):
    return make_user("admin", role="admin")


@pytest.fixture
def make_grievance(db):
    def _make(author, title="Pothole on Main Street", upvotes=0, downvotes=0,
              status="pending", age_hours=0, **fields):
        created = now_utc() - timedelta(hours=age_hours)
        doc = {"_id": new_id(), "title": title,
               "description": fields.pop("description", "Deep pothole near the bus stop."),
               "category": fields.pop("category", "roads"),
               "municipality": fields.pop("municipality", "Springfield"),
               "location": fields.pop("location", None), "image_url": None,
               "author_id": author["_id"], "status": status,
               "upvotes": upvotes, "downvotes": downvotes,
               "created_at": created, "updated_at": created}
        doc.update(fields)
        db.grievances.insert_one(doc)
        return doc
    return _make


@pytest.fixture
def make_comment(db):
    def _make(author, grievance, text="Same problem on my street."):
        doc = {"_id": new_id(), "grievance_id": grievance["_id"], "author_id": author["_id"],
               "text": text, "upvotes": 0, "created_at": now_utc()}
        db.comments.insert_one(doc)
        return doc
    return _make


def _headers(user: dict) -> dict:
    token = create_access_token({"sub": user["username"], "role": user["role"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def citizen_headers(citizen):
    """Auth headers for the citizen1 account."""
    return _headers(citizen)


@pytest.fixture
def other_headers(other_citizen):
    """Auth headers for the citizen2 account."""
    return _headers(other_citizen)


@pytest.fixture
def admin_headers(admin):
    """Auth headers for the admin account."""
    return _headers(admin)


@pytest_asyncio.fixture
async def client(db):
    """In-process httpx AsyncClient with the test database injected."""
    # Disable rate limiting so repeated logins aren't throttled
    limiter.enabled = False
    app.dependency_overrides[get_db] = lambda: db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
