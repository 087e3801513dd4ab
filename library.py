import logging
from typing import Any, Dict, List, Optional

from book import Book
from database import RecordStore
from errors import ConflictError, InvalidOperationError, NotFoundError, ValidationError
from transaction import Transaction, parse_timestamp, utcnow
from user import User
from utils.validators import IdValidator, TextValidator, YearValidator

logger = logging.getLogger(__name__)

BOOK_UPDATABLE_FIELDS = ("title", "author", "publication_year", "availability_status")

# Fields embedded when a transaction's references are expanded for reading.
TRANSACTION_BOOK_FIELDS = ("title", "author")
BORROWED_BOOK_FIELDS = ("title", "author", "publication_year")
TRANSACTION_USER_FIELDS = ("name",)

DUPLICATE_CONTACT_MESSAGE = "User already registered with this contact info."


class Library:
    """Manages books, users and the borrow/return workflow on top of a RecordStore."""

    def __init__(self, db_file: Optional[str] = None, store: Optional[RecordStore] = None) -> None:
        self.store = store or RecordStore(db_file)
        self.store.open()

    def close(self) -> None:
        self.store.close()

    # ------------------------- Books ------------------------- #
    def add_book(self, title: str, author: str, publication_year: int) -> Book:
        """Validate and store a new book. New books are always available."""
        if not TextValidator.validate_title(title):
            raise ValidationError("Title is required.")
        if not TextValidator.validate_author(author):
            raise ValidationError("Author is required and must contain letters.")
        if not YearValidator.validate_publication_year(publication_year):
            raise ValidationError("Publication year must be a whole number no later than next year.")

        book = Book(title=title, author=author, publication_year=publication_year)
        doc = self.store.insert("books", {
            "title": book.title,
            "author": book.author,
            "publication_year": book.publication_year,
            "availability_status": True,
        })
        book = Book.from_dict(doc)
        logger.info(f"Book added: {book.id} '{book.title}'")
        return book

    def list_books(self) -> List[Book]:
        return [Book.from_dict(doc) for doc in self.store.find_all("books")]

    def get_book(self, book_id: str) -> Optional[Book]:
        doc = self.store.find_by_id("books", book_id)
        return Book.from_dict(doc) if doc else None

    def update_book(self, book_id: str, **changes: Any) -> Optional[Book]:
        """Apply a partial update to a book. Returns the updated book or None if not found.

        Setting ``availability_status`` here bypasses the lending workflow, so
        it can disagree with the transaction history afterwards.
        """
        unknown = [key for key in changes if key not in BOOK_UPDATABLE_FIELDS]
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(unknown)}")
        if not changes:
            raise ValidationError("Nothing to update. Provide at least one field.")

        clean: Dict[str, Any] = {}
        if "title" in changes:
            if not TextValidator.validate_title(changes["title"]):
                raise ValidationError("Title cannot be empty.")
            clean["title"] = changes["title"].strip()
        if "author" in changes:
            if not TextValidator.validate_author(changes["author"]):
                raise ValidationError("Author cannot be empty and must contain letters.")
            clean["author"] = changes["author"].strip()
        if "publication_year" in changes:
            if not YearValidator.validate_publication_year(changes["publication_year"]):
                raise ValidationError("Publication year must be a whole number no later than next year.")
            clean["publication_year"] = changes["publication_year"]
        if "availability_status" in changes:
            if not isinstance(changes["availability_status"], bool):
                raise ValidationError("Availability status must be true or false.")
            clean["availability_status"] = changes["availability_status"]

        doc = self.store.update_by_id("books", book_id, clean)
        if doc is None:
            return None
        logger.info(f"Book updated: {book_id} fields={sorted(clean)}")
        return Book.from_dict(doc)

    def remove_book(self, book_id: str) -> Optional[Book]:
        """Delete a book and return it. Its transactions are kept."""
        doc = self.store.delete_by_id("books", book_id)
        if doc is None:
            return None
        logger.info(f"Book removed: {book_id}")
        return Book.from_dict(doc)

    # ------------------------- Users ------------------------- #
    def register_user(self, name: str, contact_info: str) -> User:
        if not TextValidator.validate_name(name):
            raise ValidationError("Name is required.")
        if not TextValidator.validate_contact_info(contact_info):
            raise ValidationError("Contact info is required.")

        user = User(name=name, contact_info=contact_info)
        with self.store.transaction():
            if self.store.find_one("users", {"contact_info": user.contact_info}):
                logger.warning(f"Duplicate registration refused for contact {user.contact_info!r}")
                raise ConflictError(DUPLICATE_CONTACT_MESSAGE)
            try:
                doc = self.store.insert("users", {"name": user.name, "contact_info": user.contact_info})
            except ConflictError as e:
                raise ConflictError(DUPLICATE_CONTACT_MESSAGE) from e
        user = User.from_dict(doc)
        logger.info(f"User registered: {user.id} '{user.name}'")
        return user

    def list_users(self) -> List[User]:
        return [User.from_dict(doc) for doc in self.store.find_all("users")]

    def get_user(self, user_id: str) -> Optional[User]:
        doc = self.store.find_by_id("users", user_id)
        return User.from_dict(doc) if doc else None

    # ------------------------- Lending ------------------------- #
    def borrow(self, book_id: str, user_id: str) -> Transaction:
        """Check a book out to a user.

        The availability flip is a conditional update inside the same store
        transaction as the insert, so two concurrent borrows of one book
        cannot both succeed and a failed insert leaves the book available.

        References are otherwise not enforced by the store, but a borrow
        must name a registered user: an unknown ``user_id`` is refused with
        ``InvalidOperationError("User not found")`` so no transaction can
        point at a user that never existed.
        """
        self._require_ids(book_id, user_id)
        with self.store.transaction():
            if self.store.find_by_id("users", user_id) is None:
                logger.warning(f"Borrow refused: user {user_id} not found")
                raise InvalidOperationError("User not found")

            flipped = self.store.update_where(
                "books",
                {"id": book_id, "availability_status": True},
                {"availability_status": False},
            )
            if not flipped:
                logger.warning(f"Borrow refused: book {book_id} not available")
                raise InvalidOperationError("Book not available")

            try:
                doc = self.store.insert("transactions", {
                    "book_id": book_id,
                    "user_id": user_id,
                    "borrow_date": utcnow().isoformat(),
                    "return_date": None,
                })
            except ConflictError as e:
                # an open transaction already exists for this book
                logger.warning(f"Borrow refused: book {book_id} already has an open transaction")
                raise InvalidOperationError("Book not available") from e

        transaction = Transaction.from_dict(doc)
        logger.info(f"Book {book_id} borrowed by user {user_id} (transaction {transaction.id})")
        return transaction

    def return_book(self, book_id: str, user_id: str) -> Transaction:
        """Close the open transaction for (book, user) and make the book available again."""
        self._require_ids(book_id, user_id)
        with self.store.transaction():
            doc = self.store.find_one(
                "transactions",
                {"book_id": book_id, "user_id": user_id, "return_date": None},
            )
            if doc is None:
                logger.warning(f"Return refused: no open transaction for book {book_id} and user {user_id}")
                raise NotFoundError("Transaction not found")

            borrowed_at = parse_timestamp(doc["borrow_date"])
            returned_at = max(utcnow(), borrowed_at)
            doc = self.store.update_by_id("transactions", doc["id"], {"return_date": returned_at.isoformat()})

            # The book may have been deleted while on loan; the transaction is still closed.
            if not self.store.update_where("books", {"id": book_id}, {"availability_status": True}):
                logger.warning(f"Returned book {book_id} no longer exists")

        transaction = Transaction.from_dict(doc)
        logger.info(f"Book {book_id} returned by user {user_id} (transaction {transaction.id})")
        return transaction

    def transactions_for_user(self, user_id: str) -> List[Transaction]:
        """Every transaction of a user, with book and user references expanded."""
        docs = self.store.find(
            "transactions",
            {"user_id": user_id},
            populate={"book_id": TRANSACTION_BOOK_FIELDS, "user_id": TRANSACTION_USER_FIELDS},
        )
        return [Transaction.from_dict(doc) for doc in docs]

    def borrowed_books(self, user_id: str) -> List[Transaction]:
        """Every transaction of a user, with the book reference expanded."""
        docs = self.store.find(
            "transactions",
            {"user_id": user_id},
            populate={"book_id": BORROWED_BOOK_FIELDS},
        )
        return [Transaction.from_dict(doc) for doc in docs]

    def open_transactions(self, book_id: Optional[str] = None) -> List[Transaction]:
        """Transactions not yet returned, optionally for a single book."""
        filter: Dict[str, Any] = {"return_date": None}
        if book_id is not None:
            filter["book_id"] = book_id
        return [Transaction.from_dict(doc) for doc in self.store.find("transactions", filter)]

    # ------------------------- Misc ------------------------- #
    def get_statistics(self) -> Dict[str, int]:
        return {
            "total_books": self.store.count("books"),
            "total_users": self.store.count("users"),
            "open_transactions": len(self.open_transactions()),
        }

    @staticmethod
    def _require_ids(book_id: Any, user_id: Any) -> None:
        if not IdValidator.validate_id(book_id):
            raise ValidationError("bookId is required.")
        if not IdValidator.validate_id(user_id):
            raise ValidationError("userId is required.")
