import logging
import math
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import bcrypt
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .exceptions import (
    ActiveBorrowsError,
    BookNotFoundError,
    CopiesOnLoanError,
    DatabaseError,
    DuplicateEmailError,
    DuplicateIsbnError,
    UnauthenticatedError,
)
from .models import BookModel, BorrowModel, BorrowStatus, Role, UserModel
from .schemas import BookCreate, BookUpdate, Pagination, UserCreate
from .storage import run_transaction

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]
SEARCH_FIELDS = ("title", "author", "isbn", "genre")
INVALID_CREDENTIALS = "Invalid credentials"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


MAX_PAGE_SIZE = 100


def clamp_paging(page: int, limit: int) -> Tuple[int, int]:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def paginate(total: int, page: int, limit: int) -> Pagination:
    return Pagination(
        total=total, page=page, limit=limit, total_pages=math.ceil(total / limit)
    )


# Users


async def create_user(db, user: UserCreate) -> UserModel:
    if await db.users.find_one({"email": user.email}, {"_id": 1}):
        raise DuplicateEmailError(user.email)

    hashed_password = bcrypt.hashpw(user.password.encode("utf-8"), bcrypt.gensalt())
    now = utcnow()
    doc = {
        "name": user.name,
        "email": user.email,
        "password": hashed_password.decode("utf-8"),
        "role": Role.USER.value,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = await db.users.insert_one(doc)
    except DuplicateKeyError:
        raise DuplicateEmailError(user.email)
    except PyMongoError as e:
        raise DatabaseError("register", str(e))

    doc["_id"] = result.inserted_id
    return UserModel(**doc)


async def get_user(db, user_id) -> Optional[UserModel]:
    oid = parse_object_id(user_id)
    if oid is None:
        return None
    user = await db.users.find_one({"_id": oid}, {"password": 0})
    if user is None:
        return None
    return UserModel(**user)


async def authenticate_user(db, email: str, password: str) -> UserModel:
    """Return the user for a valid email/password pair.

    Unknown emails and wrong passwords fail with the same message.
    """
    user = await db.users.find_one({"email": email})
    if user is None:
        raise UnauthenticatedError(INVALID_CREDENTIALS)

    hashed = user.get("password") or ""
    try:
        matches = bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # unreadable stored hash
        matches = False
    if not matches:
        raise UnauthenticatedError(INVALID_CREDENTIALS)
    return UserModel(**user)


async def set_user_role(db, email: str, role: Role) -> Optional[UserModel]:
    user = await db.users.find_one_and_update(
        {"email": email},
        {"$set": {"role": role.value, "updated_at": utcnow()}},
        projection={"password": 0},
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        return None
    return UserModel(**user)


# Catalog


def build_book_query(search: Optional[str] = None, genre: Optional[str] = None) -> dict:
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{field: pattern} for field in SEARCH_FIELDS]
    if genre:
        query["genre"] = genre
    return query


async def list_books(
    db,
    search: Optional[str] = None,
    genre: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[BookModel], int]:
    query = build_book_query(search, genre)
    total = await db.books.count_documents(query)
    cursor = db.books.find(
        query, sort=NEWEST_FIRST, skip=(page - 1) * limit, limit=limit
    )
    books = await cursor.to_list(length=None)
    return [BookModel(**book) for book in books], total


async def get_book(db, book_id: str) -> BookModel:
    oid = parse_object_id(book_id)
    if oid is None:
        raise BookNotFoundError(book_id)
    book = await db.books.find_one({"_id": oid})
    if book is None:
        raise BookNotFoundError(book_id)
    return BookModel(**book)


async def create_book(db, book: BookCreate) -> BookModel:
    doc = book.model_dump(mode="json")
    if await db.books.find_one({"isbn": doc["isbn"]}, {"_id": 1}):
        raise DuplicateIsbnError(doc["isbn"])

    now = utcnow()
    doc["available_copies"] = doc["total_copies"]
    doc["created_at"] = now
    doc["updated_at"] = now
    try:
        result = await db.books.insert_one(doc)
    except DuplicateKeyError:
        raise DuplicateIsbnError(doc["isbn"])

    doc["_id"] = result.inserted_id
    return BookModel(**doc)


async def update_book(db, book_id: str, book_update: BookUpdate) -> BookModel:
    oid = parse_object_id(book_id)
    if oid is None:
        raise BookNotFoundError(book_id)

    fields = {
        key: value
        for key, value in book_update.model_dump(mode="json", exclude_unset=True).items()
        if value is not None
    }
    if not fields:
        return await get_book(db, book_id)

    now = utcnow()
    new_total = fields.pop("total_copies", None)
    if new_total is None:
        query = {"_id": oid}
        update = {"$set": {**fields, "updated_at": now}}
    else:
        # available copies move with the total; never below the copies on loan
        query = {
            "_id": oid,
            "$expr": {
                "$gte": [new_total, {"$subtract": ["$total_copies", "$available_copies"]}]
            },
        }
        literal_fields = {key: {"$literal": value} for key, value in fields.items()}
        update = [
            {
                "$set": {
                    **literal_fields,
                    "updated_at": now,
                    "total_copies": new_total,
                    "available_copies": {
                        "$add": [
                            "$available_copies",
                            {"$subtract": [new_total, "$total_copies"]},
                        ]
                    },
                }
            }
        ]

    try:
        book = await db.books.find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise DuplicateIsbnError(fields.get("isbn", ""))

    if book is None:
        existing = await db.books.find_one({"_id": oid})
        if existing is None:
            raise BookNotFoundError(book_id)
        raise CopiesOnLoanError(
            book_id, existing["total_copies"] - existing["available_copies"]
        )
    return BookModel(**book)


async def delete_book(client, db, book_id: str) -> BookModel:
    oid = parse_object_id(book_id)
    if oid is None:
        raise BookNotFoundError(book_id)

    async def _delete(session):
        book = await db.books.find_one({"_id": oid}, session=session)
        if book is None:
            raise BookNotFoundError(book_id)
        active = await db.borrows.count_documents(
            {"book_id": oid, "status": BorrowStatus.BORROWED.value}, session=session
        )
        if active:
            raise ActiveBorrowsError(book_id, active)
        await db.books.delete_one({"_id": oid}, session=session)
        return BookModel(**book)

    try:
        return await run_transaction(client, _delete)
    except PyMongoError as e:
        raise DatabaseError("delete book", str(e))


# Ledger reads


def book_lookup() -> list:
    return [
        {
            "$lookup": {
                "from": "books",
                "localField": "book_id",
                "foreignField": "_id",
                "as": "book",
            }
        },
        {"$unwind": {"path": "$book", "preserveNullAndEmptyArrays": True}},
    ]


def user_lookup() -> list:
    return [
        {
            "$lookup": {
                "from": "users",
                "localField": "user_id",
                "foreignField": "_id",
                "as": "user",
            }
        },
        {"$unwind": {"path": "$user", "preserveNullAndEmptyArrays": True}},
        {"$project": {"user.password": 0}},
    ]


async def list_my_borrows(db, user_id: str) -> List[BorrowModel]:
    pipeline = [
        {"$match": {"user_id": parse_object_id(user_id)}},
        {"$sort": dict(NEWEST_FIRST)},
        *book_lookup(),
    ]
    borrows = await db.borrows.aggregate(pipeline).to_list(length=None)
    return [BorrowModel(**borrow) for borrow in borrows]


async def list_all_borrows(
    db, page: int = 1, limit: int = 10
) -> Tuple[List[BorrowModel], int]:
    total = await db.borrows.count_documents({})
    pipeline = [
        {"$sort": dict(NEWEST_FIRST)},
        {"$skip": (page - 1) * limit},
        {"$limit": limit},
        *book_lookup(),
        *user_lookup(),
    ]
    borrows = await db.borrows.aggregate(pipeline).to_list(length=None)
    return [BorrowModel(**borrow) for borrow in borrows], total
