"""Read-only rollups over the catalog and the ledger for the admin dashboard.

Nothing here is cached; every call recomputes from the collections.
"""

import asyncio
from typing import List

from .crud import NEWEST_FIRST
from .models import BorrowStatus, UserWithStatsModel
from .schemas import StatsSchema

ACTIVE = BorrowStatus.BORROWED.value


async def get_stats(db) -> StatsSchema:
    total_books, total_users, active_borrows, total_borrows = await asyncio.gather(
        db.books.count_documents({}),
        db.users.count_documents({}),
        db.borrows.count_documents({"status": ACTIVE}),
        db.borrows.count_documents({}),
    )
    return StatsSchema(
        total_books=total_books,
        total_users=total_users,
        active_borrows=active_borrows,
        total_borrows=total_borrows,
    )


async def list_users_with_stats(db) -> List[UserWithStatsModel]:
    pipeline = [
        {"$sort": dict(NEWEST_FIRST)},
        {"$project": {"password": 0}},
        {
            "$lookup": {
                "from": "borrows",
                "localField": "_id",
                "foreignField": "user_id",
                "as": "borrows",
                "pipeline": [{"$project": {"status": 1}}],
            }
        },
        {
            "$addFields": {
                "total_borrows": {"$size": "$borrows"},
                "active_borrows": {
                    "$size": {
                        "$filter": {
                            "input": "$borrows",
                            "as": "borrow",
                            "cond": {"$eq": ["$$borrow.status", ACTIVE]},
                        }
                    }
                },
            }
        },
        {"$project": {"borrows": 0}},
    ]
    users = await db.users.aggregate(pipeline).to_list(length=None)
    return [UserWithStatsModel(**user) for user in users]
