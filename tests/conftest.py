"""Pytest fixtures for storefront tests."""

from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

ADMIN_KEY = "test-admin-key"
USER_ID = "64b7f0c2a1b2c3d4e5f60718"
OTHER_USER_ID = "64b7f0c2a1b2c3d4e5f60719"

ADDRESS = {
    "street": "12 Elm Street",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
    "country": "USA",
}


@pytest.fixture
def db():
    """In-process Mongo database."""
    client = mongomock.MongoClient(tz_aware=True)
    yield client["storefront_test"]
    client.close()


@pytest.fixture
def make_product(db):
    """Insert a product document and return its id as a string."""

    def _make(**overrides):
        doc = {
            "name": "Vitamin C 500mg",
            "description": "Immune support tablets",
            "price": 20.0,
            "category": "Health Supplements",
            "stock": 5,
            "images": [],
            "specifications": [],
            "is_active": True,
            "discount": {"percentage": 0, "valid_until": None},
            "ratings": {"average": 0, "count": 0},
            "reviews": [],
            "created_at": datetime.now(timezone.utc),
        }
        doc.update(overrides)
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def stock_of(db):
    from bson import ObjectId

    def _stock(product_id):
        return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]

    return _stock


@pytest.fixture
def client(db, monkeypatch):
    """Test client wired to the in-process database."""
    monkeypatch.setenv("ADMIN_API_KEY", ADMIN_KEY)
    from main import app, get_db

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return {"X-User-Id": USER_ID}


@pytest.fixture
def admin_headers():
    return {"X-User-Id": OTHER_USER_ID, "X-Admin-Key": ADMIN_KEY}
