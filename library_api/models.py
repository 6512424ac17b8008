from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    computed_field,
)
from pydantic.alias_generators import to_camel

# ObjectIds leave the database as strings
PyObjectId = Annotated[str, BeforeValidator(str)]


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class BookType(str, Enum):
    PHYSICAL = "physical"
    DIGITAL = "digital"


class BorrowStatus(str, Enum):
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"


class MongoModel(BaseModel):
    """Documents are stored in snake_case and served in camelCase."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=True,
    )

    id: PyObjectId = Field(validation_alias=AliasChoices("_id", "id"))


class BookModel(MongoModel):
    title: str
    author: str
    isbn: str
    genre: str
    description: str = ""
    published_year: Optional[int] = None
    total_copies: int
    available_copies: int
    cover_image: str = ""
    type: BookType = BookType.PHYSICAL
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BookSummary(MongoModel):
    title: str
    author: str
    isbn: Optional[str] = None
    cover_image: str = ""
    available_copies: Optional[int] = None
    total_copies: Optional[int] = None


class UserModel(MongoModel):
    name: str
    email: str
    role: Role = Role.USER
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserSummary(MongoModel):
    name: str
    email: str


class BorrowModel(MongoModel):
    user_id: PyObjectId
    book_id: PyObjectId
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: BorrowStatus = BorrowStatus.BORROWED
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # populated by the ledger joins; null when the referenced record is gone
    book: Optional[BookSummary] = None
    user: Optional[UserSummary] = None

    @computed_field(alias="isReturned")
    @property
    def is_returned(self) -> bool:
        # kept for clients that still read the boolean
        return self.status == BorrowStatus.RETURNED

    @computed_field(alias="isOverdue")
    @property
    def is_overdue(self) -> bool:
        if self.status == BorrowStatus.OVERDUE:
            return True
        if self.status != BorrowStatus.BORROWED:
            return False
        due_date = self.due_date
        if due_date.tzinfo is None:
            due_date = due_date.replace(tzinfo=timezone.utc)
        return due_date < datetime.now(timezone.utc)


class UserWithStatsModel(UserModel):
    active_borrows: int = 0
    total_borrows: int = 0
