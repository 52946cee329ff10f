"""
Shared fixtures: an in-memory store injected in place of MongoDB, seeded
users/books, and bearer headers for them.
"""
import pytest
from fastapi.testclient import TestClient

from dataBase import get_store
from main import app
from request_lifecycle import RequestLifecycleManager
from tests.fakes import InMemoryStore
from utils import create_access_token


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def lifecycle(store):
    return RequestLifecycleManager(store)


@pytest.fixture
def client(store):
    # Not entered as a context manager, so the lifespan (Mongo index creation) never runs
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(store):
    def _make(name="Alice", role="user", **fields):
        user = {
            "name": name,
            "email": f"{name.lower()}@example.com",
            "password": "not-a-real-hash",
            "role": role,
            "rating": {"average": 0, "count": 0},
            "isActive": True,
        }
        user.update(fields)
        return store.seed("users", **user)

    return _make


@pytest.fixture
def make_book(store):
    def _make(owner, title="Dune", **fields):
        book = {
            "title": title,
            "author": "Frank Herbert",
            "genre": "Sci-Fi",
            "language": "English",
            "condition": "Good",
            "ageGroup": "18+",
            "images": [],
            "availabilityType": "Exchange",
            "status": "Available",
            "tags": [],
            "rating": {"average": 0, "count": 0},
            "isActive": True,
            "owner": owner["id"],
        }
        book.update(fields)
        return store.seed("books", **book)

    return _make


@pytest.fixture
def auth():
    def _headers(user):
        token = create_access_token({"id": user["id"], "role": user["role"]})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def owner(make_user):
    return make_user("Alice")


@pytest.fixture
def requester(make_user):
    return make_user("Carol")
