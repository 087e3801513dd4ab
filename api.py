import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from config import settings
from errors import ConflictError, LibraryError
from library import Library

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

HOME_MESSAGE = "YOUR SERVER IS UP AND RUNNING"
NO_BORROWED_BOOKS_MESSAGE = "No borrowed books found for this user."


# --- Models ---
class APIModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookModel(APIModel):
    id: str
    title: str
    author: str
    publication_year: int
    availability_status: bool = True


class BookCreateModel(APIModel):
    title: str
    author: str
    publication_year: int


class BookUpdateModel(APIModel):
    title: Optional[str] = None
    author: Optional[str] = None
    publication_year: Optional[int] = None
    availability_status: Optional[bool] = None


class UserModel(APIModel):
    id: str
    name: str
    contact_info: str


class UserCreateModel(APIModel):
    name: str
    contact_info: str


class LendingRequestModel(APIModel):
    book_id: str
    user_id: str


class BookRefModel(APIModel):
    id: str
    title: str
    author: str


class BorrowedBookRefModel(BookRefModel):
    publication_year: int


class UserRefModel(APIModel):
    id: str
    name: str


class TransactionModel(APIModel):
    id: str
    book_id: str
    user_id: str
    borrow_date: datetime
    return_date: Optional[datetime] = None


class UserTransactionModel(TransactionModel):
    """Transaction with both references expanded. Deleted records expand to null."""

    book_id: Optional[BookRefModel]
    user_id: Optional[UserRefModel]


class BorrowedBookModel(TransactionModel):
    book_id: Optional[BorrowedBookRefModel]


class HomeModel(BaseModel):
    success: bool
    message: str


# --- Helpers ---
def _http_error(error: LibraryError) -> HTTPException:
    """Convert a domain failure into the HTTP status it maps to."""
    if error.status_code >= 500:
        logger.error(f"Request failed: {error}")
    return HTTPException(status_code=error.status_code, detail=str(error) or "Server error. Please try again later.")


def _format_validation_error(error: RequestValidationError) -> str:
    parts = []
    for item in error.errors():
        if item.get("type") == "json_invalid":
            return "Request body must be valid JSON."
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests are a 400 like any other bad input."""
    return JSONResponse(status_code=400, content={"detail": _format_validation_error(exc)})


def get_library(request: Request) -> Library:
    """Dependency: the Library opened by the application lifespan."""
    return request.app.state.library


# --- Routes ---
router = APIRouter()


@router.get("/", response_model=HomeModel)
def read_root():
    return HomeModel(success=True, message=HOME_MESSAGE)


@router.get("/health")
def health(library: Library = Depends(get_library)):
    """Lightweight health check for process supervisors."""
    db_ok = library.store.ping()
    total_books = None
    if db_ok:
        try:
            total_books = library.get_statistics()["total_books"]
        except LibraryError:
            db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "total_books": total_books,
    }


# Books
@router.post("/books", response_model=BookModel, status_code=201)
def add_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    """Add a new book; it starts out available."""
    try:
        book = library.add_book(payload.title, payload.author, payload.publication_year)
    except LibraryError as e:
        raise _http_error(e)
    return BookModel.model_validate(book.to_dict())


@router.get("/books", response_model=List[BookModel])
def get_books(library: Library = Depends(get_library)):
    try:
        books = library.list_books()
    except LibraryError as e:
        raise _http_error(e)
    return [BookModel.model_validate(b.to_dict()) for b in books]


@router.put("/books/{book_id}", response_model=BookModel)
def update_book(book_id: str, payload: BookUpdateModel, library: Library = Depends(get_library)):
    """Partially update a book. Any of title, author, publicationYear, availabilityStatus."""
    try:
        book = library.update_book(book_id, **payload.model_dump(exclude_unset=True))
    except LibraryError as e:
        raise _http_error(e)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return BookModel.model_validate(book.to_dict())


@router.delete("/books/{book_id}", response_model=BookModel)
def delete_book(book_id: str, library: Library = Depends(get_library)):
    try:
        book = library.remove_book(book_id)
    except LibraryError as e:
        raise _http_error(e)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return BookModel.model_validate(book.to_dict())


# Users
@router.post("/users", response_model=UserModel, status_code=201)
def register_user(payload: UserCreateModel, library: Library = Depends(get_library)):
    """Register a user. contactInfo must not belong to an existing user."""
    try:
        user = library.register_user(payload.name, payload.contact_info)
    except ConflictError as e:
        # clients read the duplicate notice from "message"
        return JSONResponse(status_code=e.status_code, content={"message": str(e)})
    except LibraryError as e:
        raise _http_error(e)
    return UserModel.model_validate(user.to_dict())


@router.get("/users", response_model=List[UserModel])
def get_users(library: Library = Depends(get_library)):
    try:
        users = library.list_users()
    except LibraryError as e:
        raise _http_error(e)
    return [UserModel.model_validate(u.to_dict()) for u in users]


# Lending
@router.post("/borrow", response_model=TransactionModel)
def borrow_book(payload: LendingRequestModel, library: Library = Depends(get_library)):
    try:
        transaction = library.borrow(payload.book_id, payload.user_id)
    except LibraryError as e:
        raise _http_error(e)
    return TransactionModel.model_validate(transaction.to_dict())


@router.post("/return", response_model=TransactionModel)
def return_book(payload: LendingRequestModel, library: Library = Depends(get_library)):
    try:
        transaction = library.return_book(payload.book_id, payload.user_id)
    except LibraryError as e:
        raise _http_error(e)
    return TransactionModel.model_validate(transaction.to_dict())


@router.get("/transactions/{user_id}", response_model=List[UserTransactionModel])
def get_user_transactions(user_id: str, library: Library = Depends(get_library)):
    try:
        transactions = library.transactions_for_user(user_id)
    except LibraryError as e:
        raise _http_error(e)
    return [UserTransactionModel.model_validate(t.to_dict()) for t in transactions]


@router.get("/user/{user_id}/borrowed-books", response_model=List[BorrowedBookModel])
def get_borrowed_books(user_id: str, library: Library = Depends(get_library)):
    """All borrowings of a user, returned or not. 404 when the user has none."""
    try:
        transactions = library.borrowed_books(user_id)
    except LibraryError as e:
        raise _http_error(e)
    if not transactions:
        return JSONResponse(status_code=404, content={"message": NO_BORROWED_BOOKS_MESSAGE})
    return [BorrowedBookModel.model_validate(t.to_dict()) for t in transactions]


# --- Application ---
def create_app(db_file: Optional[str] = None) -> FastAPI:
    """Build the API. The Library is opened on startup and closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.library = Library(db_file=db_file or settings.database_file)
        logger.info(f"{settings.app_name} {settings.app_version} started")
        try:
            yield
        finally:
            app.state.library.close()
            logger.info(f"{settings.app_name} stopped")

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


app = create_app()
