import os
from uuid import uuid4

import pytest
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from library_api.storage import ensure_indexes

MONGODB_TEST_URL = os.getenv("MONGODB_TEST_URL")


def replica_set_url() -> str:
    """Skip unless MONGODB_TEST_URL points at a reachable replica set."""
    if not MONGODB_TEST_URL:
        pytest.skip("MONGODB_TEST_URL not set")
    client = MongoClient(MONGODB_TEST_URL, serverSelectionTimeoutMS=2000)
    try:
        hello = client.admin.command("hello")
    except PyMongoError as e:
        pytest.skip(f"MongoDB not available: {e}")
    finally:
        client.close()
    if "setName" not in hello:
        pytest.skip("transactions need a replica set")
    return MONGODB_TEST_URL


@pytest.fixture
def mongo_url():
    return replica_set_url()


@pytest.fixture
async def mongo(mongo_url):
    client = AsyncIOMotorClient(mongo_url, tz_aware=True)
    db = client[f"library_test_{uuid4().hex[:8]}"]
    await ensure_indexes(db)
    yield client, db
    await client.drop_database(db.name)
    client.close()
