import logging
import os

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel

logger = logging.getLogger(__name__)

MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://mongo:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "library_db")

INDEXES = {
    "users": [
        IndexModel([("email", ASCENDING)], unique=True, name="email_unique"),
        IndexModel([("created_at", DESCENDING)], name="created_at_desc"),
    ],
    "books": [
        IndexModel([("isbn", ASCENDING)], unique=True, name="isbn_unique"),
        IndexModel([("genre", ASCENDING)], name="genre"),
        IndexModel([("created_at", DESCENDING)], name="created_at_desc"),
    ],
    "borrows": [
        # at most one open loan per (user, book)
        IndexModel(
            [("user_id", ASCENDING), ("book_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": "borrowed"},
            name="one_active_borrow_per_user_book",
        ),
        IndexModel([("book_id", ASCENDING), ("status", ASCENDING)], name="book_status"),
        IndexModel([("created_at", DESCENDING)], name="created_at_desc"),
    ],
}


async def init_db(url: str = None) -> AsyncIOMotorClient:
    client = AsyncIOMotorClient(url or MONGODB_URL, tz_aware=True)
    logger.info("MongoDB client created")
    return client


async def close_db_connection(client: AsyncIOMotorClient):
    if client:
        client.close()
        logger.info("MongoDB client closed")


def get_database(client: AsyncIOMotorClient, name: str = None) -> AsyncIOMotorDatabase:
    return client[name or MONGODB_DB]


async def ensure_indexes(db: AsyncIOMotorDatabase):
    for collection, indexes in INDEXES.items():
        await db[collection].create_indexes(indexes)
    logger.info("Collection indexes ensured")


async def run_transaction(client: AsyncIOMotorClient, callback):
    """Run ``callback(session)`` in a multi-document transaction.

    The driver retries the callback on transient transaction errors (write
    conflicts between concurrent transactions) and aborts on anything else,
    re-raising the error.
    """
    async with await client.start_session() as session:
        return await session.with_transaction(callback)


async def ping(db: AsyncIOMotorDatabase) -> bool:
    try:
        await db.command("ping")
        return True
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return False


# Request-scoped accessors for the client opened in the app lifespan
def get_client(request: Request) -> AsyncIOMotorClient:
    return request.app.state.mongo_client


def get_db(request: Request) -> AsyncIOMotorDatabase:
    return request.app.state.db
