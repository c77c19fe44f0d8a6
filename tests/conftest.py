"""
Shared Test Fixtures for the Captions API

An in-memory mongomock database replaces the Mongo server and uploads go to
a per-test temporary directory.
"""

import os
import sys
import tempfile
from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("IMAGES_DIR", tempfile.mkdtemp(prefix="captions-images-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import database  # noqa: E402
import uploads  # noqa: E402
from main import app  # noqa: E402
from security import create_access_token, hash_password  # noqa: E402

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
def mongo_db(monkeypatch):
    db = mongomock.MongoClient()["captions_test"]
    monkeypatch.setattr(database, "db", db)
    database.ensure_indexes()
    return db


@pytest.fixture
def images_dir(tmp_path, monkeypatch):
    path = tmp_path / "images"
    path.mkdir()
    monkeypatch.setattr(uploads, "IMAGES_DIR", str(path))
    return path


@pytest.fixture
def client(mongo_db, images_dir):
    return TestClient(app)


@pytest.fixture
def make_user(mongo_db):
    """Insert a user document and return it (with _id)."""
    counter = {"n": 0}

    def _make(name="Alice", email=None, is_admin=False, saved_posts=None):
        counter["n"] += 1
        now = datetime.now(timezone.utc)
        doc = {
            "name": name,
            "username": name.lower(),
            "email": email or f"{name.lower()}{counter['n']}@captions.io",
            "password_hash": PASSWORD_HASH,
            "is_admin": is_admin,
            "saved_posts": list(saved_posts or []),
            "created_at": now,
            "updated_at": now,
        }
        mongo_db["user"].insert_one(doc)
        return doc

    return _make


@pytest.fixture
def make_post(mongo_db):
    """Insert a post owned by `owner` and return it (with _id)."""

    def _make(owner, title="Post", categories=None, created_at=None, **fields):
        created = created_at or datetime.now(timezone.utc)
        doc = {
            "user": owner["_id"],
            "title": title,
            "description": "",
            "categories": list(categories or []),
            "tags": [],
            "images": [],
            "links": [],
            "likes": [],
            "comments": [],
            "created_at": created,
            "updated_at": created,
        }
        doc.update(fields)
        mongo_db["post"].insert_one(doc)
        return doc

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(str(user['_id']))}"}

    return _headers


@pytest.fixture
def missing_id():
    return str(ObjectId())
