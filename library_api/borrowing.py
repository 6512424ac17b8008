"""Borrow and return workflow.

Both operations touch two documents, a borrow record and the book whose
``available_copies`` counter it moves, and both run in a single
transaction.  The counter itself only changes through compare-and-swap
updates, so concurrent requests for the last copy of a book cannot both
succeed: the first one commits, the rest fail ``BookNotAvailableError``.
"""

import logging
from datetime import timedelta

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .crud import parse_object_id, utcnow
from .exceptions import (
    AlreadyBorrowedError,
    BookNotAvailableError,
    BookNotFoundError,
    BorrowNotFoundError,
    DatabaseError,
)
from .models import BookSummary, BorrowModel, BorrowStatus
from .storage import run_transaction

logger = logging.getLogger(__name__)

LOAN_PERIOD = timedelta(days=14)


async def borrow_book(client, db, user_id: str, book_id: str) -> BorrowModel:
    book_oid = parse_object_id(book_id)
    if book_oid is None:
        raise BookNotFoundError(book_id)
    user_oid = parse_object_id(user_id)

    async def _borrow(session):
        now = utcnow()
        book = await db.books.find_one_and_update(
            {"_id": book_oid, "available_copies": {"$gt": 0}},
            {"$inc": {"available_copies": -1}, "$set": {"updated_at": now}},
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if book is None:
            if await db.books.count_documents({"_id": book_oid}, session=session):
                raise BookNotAvailableError(book_id)
            raise BookNotFoundError(book_id)

        existing = await db.borrows.find_one(
            {
                "user_id": user_oid,
                "book_id": book_oid,
                "status": BorrowStatus.BORROWED.value,
            },
            {"_id": 1},
            session=session,
        )
        if existing:
            raise AlreadyBorrowedError(book_id)

        borrow = {
            "user_id": user_oid,
            "book_id": book_oid,
            "borrow_date": now,
            "due_date": now + LOAN_PERIOD,
            "return_date": None,
            "status": BorrowStatus.BORROWED.value,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await db.borrows.insert_one(borrow, session=session)
        except DuplicateKeyError:
            # a concurrent borrow of the same book by the same user won
            raise AlreadyBorrowedError(book_id)
        borrow["_id"] = result.inserted_id
        return BorrowModel(**borrow, book=BookSummary(**book))

    try:
        borrow = await run_transaction(client, _borrow)
    except PyMongoError as e:
        raise DatabaseError("borrow", str(e))

    logger.info(f"User {user_id} borrowed book {book_id}, due {borrow.due_date:%Y-%m-%d}")
    return borrow


async def return_book(client, db, user_id: str, borrow_id: str) -> BorrowModel:
    borrow_oid = parse_object_id(borrow_id)
    if borrow_oid is None:
        raise BorrowNotFoundError(borrow_id)
    user_oid = parse_object_id(user_id)

    async def _return(session):
        now = utcnow()
        borrow = await db.borrows.find_one_and_update(
            {
                "_id": borrow_oid,
                "user_id": user_oid,
                "status": BorrowStatus.BORROWED.value,
            },
            {
                "$set": {
                    "status": BorrowStatus.RETURNED.value,
                    "return_date": now,
                    "updated_at": now,
                }
            },
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if borrow is None:
            raise BorrowNotFoundError(borrow_id)

        book = await db.books.find_one_and_update(
            {
                "_id": borrow["book_id"],
                "$expr": {"$lt": ["$available_copies", "$total_copies"]},
            },
            {"$inc": {"available_copies": 1}, "$set": {"updated_at": now}},
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if book is None:
            # aborts the transaction; the loan stays open for a retry
            raise DatabaseError(
                "return", f"book {borrow['book_id']} missing or already fully stocked"
            )
        return BorrowModel(**borrow, book=BookSummary(**book))

    try:
        borrow = await run_transaction(client, _return)
    except PyMongoError as e:
        raise DatabaseError("return", str(e))

    logger.info(f"User {user_id} returned borrow {borrow_id}")
    return borrow
