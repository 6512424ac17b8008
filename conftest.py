from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from library_api.main import app
from library_api.models import UserModel
from library_api.security import create_access_token
from library_api.storage import get_client, get_db

TEST_SECRET = "test-secret"
COLLECTION_METHODS = (
    "find_one",
    "find_one_and_update",
    "insert_one",
    "count_documents",
    "delete_one",
    "create_indexes",
)


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", TEST_SECRET)


# Documents as motor hands them back


def make_book_doc(**overrides):
    now = datetime.now(timezone.utc)
    doc = {
        "_id": ObjectId(),
        "title": "Test Book",
        "author": "Test Author",
        "isbn": "1234567890",
        "genre": "Fiction",
        "description": "Test Description",
        "published_year": 2020,
        "total_copies": 3,
        "available_copies": 3,
        "cover_image": "",
        "type": "physical",
        "created_at": now,
        "updated_at": now,
    }
    doc.update(overrides)
    return doc


def make_user_doc(**overrides):
    now = datetime.now(timezone.utc)
    doc = {
        "_id": ObjectId(),
        "name": "Test User",
        "email": "test@example.com",
        "role": "user",
        "created_at": now,
        "updated_at": now,
    }
    doc.update(overrides)
    return doc


def make_borrow_doc(**overrides):
    now = datetime.now(timezone.utc)
    doc = {
        "_id": ObjectId(),
        "user_id": ObjectId(),
        "book_id": ObjectId(),
        "borrow_date": now,
        "due_date": now + timedelta(days=14),
        "return_date": None,
        "status": "borrowed",
        "created_at": now,
        "updated_at": now,
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def make_book():
    return make_book_doc


@pytest.fixture
def make_user():
    return make_user_doc


@pytest.fixture
def make_borrow():
    return make_borrow_doc


# Motor stand-ins


@pytest.fixture
def mongo_session():
    session = MagicMock(name="session")
    session.__aenter__.return_value = session
    session.__aexit__.return_value = False

    async def with_transaction(callback, *args, **kwargs):
        return await callback(session)

    session.with_transaction = AsyncMock(side_effect=with_transaction)
    return session


@pytest.fixture
def mock_client(mongo_session):
    client = MagicMock(name="client")
    client.start_session = AsyncMock(return_value=mongo_session)
    return client


@pytest.fixture
def mock_db():
    db = MagicMock(name="db")
    for name in ("books", "borrows", "users"):
        collection = getattr(db, name)
        for method in COLLECTION_METHODS:
            setattr(collection, method, AsyncMock(name=f"{name}.{method}"))
        # cursors
        collection.find.return_value.to_list = AsyncMock(return_value=[])
        collection.aggregate.return_value.to_list = AsyncMock(return_value=[])
    db.command = AsyncMock(name="command")
    return db


# HTTP


@pytest.fixture
def client(mock_db, mock_client):
    app.state.testing = True
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_client] = lambda: mock_client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False


@pytest.fixture
def user_doc():
    return make_user_doc()


@pytest.fixture
def admin_doc():
    return make_user_doc(name="Admin", email="admin@example.com", role="admin")


@pytest.fixture
def user_headers(mock_db, user_doc):
    mock_db.users.find_one.return_value = user_doc
    token = create_access_token(str(user_doc["_id"]))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(mock_db, admin_doc):
    mock_db.users.find_one.return_value = admin_doc
    token = create_access_token(str(admin_doc["_id"]))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def current_user(user_doc):
    return UserModel(**user_doc)
