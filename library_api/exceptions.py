from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


class LibraryException(Exception):
    """Base exception for library-related errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


# Identity
class UnauthenticatedError(LibraryException):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class ForbiddenError(LibraryException):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Access denied. Admin only."):
        super().__init__(message)


class MisconfiguredError(LibraryException):
    """Raised when the server is missing required configuration."""

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__("Server configuration error")


# Lookups
class BookNotFoundError(LibraryException):
    """Raised when a book is not found in the database."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book with id {book_id} not found")


class BorrowNotFoundError(LibraryException):
    """Raised when a borrow record does not exist, is not the caller's, or is already returned."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, borrow_id: str):
        self.borrow_id = borrow_id
        super().__init__("Borrow record not found or already returned")


# Domain rules
class BookNotAvailableError(LibraryException):
    """Raised when a book has no copies left to lend."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book with id {book_id} is not available")


class ConflictError(LibraryException):
    status_code = status.HTTP_409_CONFLICT


class DuplicateIsbnError(ConflictError):
    def __init__(self, isbn: str):
        self.isbn = isbn
        super().__init__(f"Book with ISBN {isbn} already exists")


class DuplicateEmailError(ConflictError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("User with this email already exists")


class AlreadyBorrowedError(ConflictError):
    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__("You have already borrowed this book")


class ActiveBorrowsError(ConflictError):
    def __init__(self, book_id: str, active: int):
        self.book_id = book_id
        self.active = active
        super().__init__("Cannot delete book with active borrows")


class CopiesOnLoanError(ConflictError):
    def __init__(self, book_id: str, on_loan: int):
        self.book_id = book_id
        self.on_loan = on_loan
        super().__init__(
            f"Total copies cannot be lower than the {on_loan} copies currently on loan"
        )


class DatabaseError(LibraryException):
    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Database error during {operation}: {details}")


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Invalid request parameters. Please check your input.",
            "errors": errors,
        },
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"Response validation error: {exc.errors()}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "The server encountered an unexpected error. Please contact support."
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please contact support."},
    )


async def library_exception_handler(request: Request, exc: LibraryException):
    if exc.status_code >= 500:
        logger.error(f"Library error: {str(exc)}")
        # storage and configuration details stay in the log
        detail = (
            exc.message
            if isinstance(exc, MisconfiguredError)
            else "Internal server error"
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": detail})

    logger.warning(f"Library error: {str(exc)}")
    headers = None
    if isinstance(exc, UnauthenticatedError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(
        ResponseValidationError, response_validation_exception_handler
    )
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(LibraryException, library_exception_handler)
