import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware

from .admin import get_stats, list_users_with_stats
from .borrowing import borrow_book, return_book
from .crud import (
    authenticate_user,
    clamp_paging,
    create_book,
    create_user,
    delete_book,
    get_book,
    list_all_borrows,
    list_books,
    list_my_borrows,
    paginate,
    update_book,
)
from .exceptions import add_exception_handlers
from .models import BookModel, BorrowModel, UserModel
from .schemas import (
    AuthResponse,
    BookCreate,
    BookCreated,
    BookPage,
    BookUpdate,
    BookUpdated,
    BorrowList,
    BorrowPage,
    BorrowRequest,
    BorrowReturned,
    HealthSchema,
    LoginRequest,
    MeResponse,
    MessageSchema,
    StatsSchema,
    UserCreate,
    UserList,
    UserSchema,
)
from .security import (
    create_access_token,
    get_current_admin,
    get_current_user,
    get_secret,
)
from .storage import (
    close_db_connection,
    ensure_indexes,
    get_client,
    get_database,
    get_db,
    init_db,
    ping,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        logger.info("Initializing database connection")
        app.state.mongo_client = await init_db(os.getenv("MONGODB_URL"))
        app.state.db = get_database(app.state.mongo_client, os.getenv("MONGODB_DB"))
        try:
            await ensure_indexes(app.state.db)
        except Exception as e:
            logger.error(f"Failed to ensure indexes: {e}")
            await close_db_connection(app.state.mongo_client)
            raise
    yield
    if not app.state.testing:
        logger.info("Closing database connection")
        await close_db_connection(app.state.mongo_client)


app = FastAPI(
    title="Library Catalog API",
    lifespan=lifespan,
    description="Catalog, borrowing and administration endpoints for the library app",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)


def user_summary(user: UserModel) -> UserSchema:
    return UserSchema(id=user.id, name=user.name, email=user.email, role=user.role)


# Auth
@app.post("/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(user: UserCreate, db=Depends(get_db)):
    logger.info(f"Registration attempt for {user.email}")
    get_secret()  # fail on missing configuration before the user is stored
    new_user = await create_user(db, user)
    token = create_access_token(new_user.id)
    logger.info(f"User registered: {new_user.id}")
    return AuthResponse(token=token, user=user_summary(new_user))


@app.post("/auth/login", response_model=AuthResponse)
async def login(credentials: LoginRequest, db=Depends(get_db)):
    user = await authenticate_user(db, credentials.email, credentials.password)
    token = create_access_token(user.id)
    return AuthResponse(token=token, user=user_summary(user))


@app.get("/auth/me", response_model=MeResponse)
async def read_me(user: UserModel = Depends(get_current_user)):
    return MeResponse(user=user_summary(user))


# Catalog
@app.get("/books", response_model=BookPage)
async def read_books(
    search: Optional[str] = None,
    genre: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    db=Depends(get_db),
):
    page, limit = clamp_paging(page, limit)
    books, total = await list_books(db, search, genre, page, limit)
    logger.info(f"Found {len(books)} books (total: {total})")
    return BookPage(data=books, pagination=paginate(total, page, limit))


@app.get("/books/{book_id}", response_model=BookModel)
async def read_book(book_id: str, db=Depends(get_db)):
    return await get_book(db, book_id)


@app.post("/books", response_model=BookCreated, status_code=status.HTTP_201_CREATED)
async def add_book(
    book: BookCreate, db=Depends(get_db), admin: UserModel = Depends(get_current_admin)
):
    logger.info(f"Received request to add book: {book.title}")
    new_book = await create_book(db, book)
    logger.info(f"Book added successfully: {new_book.id}")
    return BookCreated(book=new_book)


@app.put("/books/{book_id}", response_model=BookUpdated)
async def modify_book(
    book_id: str,
    book_update: BookUpdate,
    db=Depends(get_db),
    admin: UserModel = Depends(get_current_admin),
):
    updated_book = await update_book(db, book_id, book_update)
    logger.info(f"Book updated: {book_id}")
    return BookUpdated(book=updated_book)


@app.delete("/books/{book_id}", response_model=MessageSchema)
async def remove_book(
    book_id: str,
    client=Depends(get_client),
    db=Depends(get_db),
    admin: UserModel = Depends(get_current_admin),
):
    book = await delete_book(client, db, book_id)
    logger.info(f"Book deleted: {book_id} ISBN: {book.isbn}")
    return MessageSchema(message="Book deleted successfully")


# Borrowing
@app.post("/borrow", response_model=BorrowModel, status_code=status.HTTP_201_CREATED)
async def borrow(
    borrow_request: BorrowRequest,
    client=Depends(get_client),
    db=Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    return await borrow_book(client, db, user.id, borrow_request.book_id)


@app.get("/borrow/my-books", response_model=BorrowList)
async def read_my_borrows(db=Depends(get_db), user: UserModel = Depends(get_current_user)):
    return BorrowList(data=await list_my_borrows(db, user.id))


@app.get("/borrow", response_model=BorrowPage)
async def read_recent_borrows(
    page: int = 1,
    limit: int = 10,
    db=Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    page, limit = clamp_paging(page, limit)
    borrows, total = await list_all_borrows(db, page, limit)
    return BorrowPage(data=borrows, pagination=paginate(total, page, limit))


@app.put("/borrow/{borrow_id}/return", response_model=BorrowReturned)
async def return_borrow(
    borrow_id: str,
    client=Depends(get_client),
    db=Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    logger.info(f"Return book request received: borrow {borrow_id} user {user.id}")
    return BorrowReturned(data=await return_book(client, db, user.id, borrow_id))


# Administration
@app.get("/admin/stats", response_model=StatsSchema)
async def read_stats(db=Depends(get_db), admin: UserModel = Depends(get_current_admin)):
    return await get_stats(db)


@app.get("/admin/users", response_model=UserList)
async def read_users(db=Depends(get_db), admin: UserModel = Depends(get_current_admin)):
    return UserList(data=await list_users_with_stats(db))


@app.get("/admin/borrows", response_model=BorrowPage)
async def read_all_borrows(
    page: int = 1,
    limit: int = 100,
    db=Depends(get_db),
    admin: UserModel = Depends(get_current_admin),
):
    page, limit = clamp_paging(page, limit)
    borrows, total = await list_all_borrows(db, page, limit)
    return BorrowPage(data=borrows, pagination=paginate(total, page, limit))


@app.get("/health", response_model=HealthSchema)
async def health(db=Depends(get_db)):
    connected = await ping(db)
    return HealthSchema(
        status="ok",
        database="connected" if connected else "disconnected",
        timestamp=datetime.now(timezone.utc),
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("API_PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
