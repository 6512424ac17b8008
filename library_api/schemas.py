from datetime import datetime, timezone
from typing import Annotated, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
)
from pydantic.alias_generators import to_camel

from .models import (
    BookModel,
    BookType,
    BorrowModel,
    Role,
    UserWithStatsModel,
)

RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
OptionalText = Annotated[str, StringConstraints(strip_whitespace=True)]


def current_year() -> int:
    return datetime.now(timezone.utc).year


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class BookCreate(CamelModel):
    title: RequiredText
    author: RequiredText
    isbn: RequiredText
    genre: RequiredText
    description: OptionalText = ""
    published_year: int = Field(default_factory=current_year)
    total_copies: int = Field(1, ge=0)
    cover_image: OptionalText = ""
    type: BookType = BookType.PHYSICAL


class BookUpdate(CamelModel):
    title: Optional[RequiredText] = None
    author: Optional[RequiredText] = None
    isbn: Optional[RequiredText] = None
    genre: Optional[RequiredText] = None
    description: Optional[OptionalText] = None
    published_year: Optional[int] = None
    total_copies: Optional[int] = Field(None, ge=0)
    cover_image: Optional[OptionalText] = None
    type: Optional[BookType] = None


class UserCreate(CamelModel):
    name: RequiredText
    email: Annotated[
        EmailStr,
        BeforeValidator(lambda v: v.strip() if isinstance(v, str) else v),
        AfterValidator(str.lower),
    ]
    password: str = Field(min_length=6)


class LoginRequest(CamelModel):
    email: Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True)]
    password: str


class BorrowRequest(CamelModel):
    book_id: RequiredText


class UserSchema(CamelModel):
    id: str
    name: str
    email: str
    role: Role


class AuthResponse(CamelModel):
    token: str
    user: UserSchema


class MeResponse(CamelModel):
    user: UserSchema


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int


class BookPage(CamelModel):
    data: List[BookModel]
    pagination: Pagination


class BookCreated(CamelModel):
    message: str = "Book added successfully"
    book: BookModel


class BookUpdated(CamelModel):
    message: str = "Book updated successfully"
    book: BookModel


class BorrowPage(CamelModel):
    data: List[BorrowModel]
    pagination: Pagination


class BorrowList(CamelModel):
    data: List[BorrowModel]


class BorrowReturned(CamelModel):
    message: str = "Book returned successfully"
    data: BorrowModel


class UserList(CamelModel):
    data: List[UserWithStatsModel]


class StatsSchema(CamelModel):
    total_books: int
    total_users: int
    active_borrows: int
    total_borrows: int


class MessageSchema(CamelModel):
    message: str


class HealthSchema(CamelModel):
    status: str
    database: str
    timestamp: datetime
