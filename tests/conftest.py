"""
pytest fixtures: an in-memory MongoDB (mongomock) wired into the app
through the get_db dependency, and helpers to create users.
"""

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import get_db, now
from main import app
from security import create_user_token


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    yield client["skillswap_test"]
    client.close()


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insert a user document directly; returns the stored document."""
    def _make(name, offered=(), wanted=(), is_public=True, **extra):
        stamp = now()
        doc = {
            "name": name,
            "email": f"{name.lower().replace(' ', '.')}@example.com",
            "password_hash": "",
            "location": extra.pop("location", None),
            "bio": None,
            "profilePhoto": None,
            "isPublic": is_public,
            "availability": extra.pop("availability", {
                "weekdays": False, "weekends": False, "evenings": False, "mornings": False, "customSchedule": None,
            }),
            "skillsOffered": [{"_id": ObjectId(), "name": s, "description": None, "proficiency": "Intermediate"}
                              for s in offered],
            "skillsWanted": [{"_id": ObjectId(), "name": s, "description": None, "priority": "Medium"}
                             for s in wanted],
            "ratings": [],
            "rating": {"total": 0, "count": 0},
            "swapsCompleted": 0,
            "created_at": stamp,
            "updated_at": stamp,
        }
        doc.update(extra)
        doc["_id"] = db["user"].insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_user_token(user['_id'])}"}
    return _headers
