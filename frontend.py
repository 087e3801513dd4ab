"""Presentation state for the library front-end.

``Frontend`` holds what the screen shows (books, users, the selected user and
that user's borrowings, plus the two entry forms) and the actions a user can
trigger. The server is the only source of truth: every action that changes
data is followed by a re-fetch of whatever it touched. Nothing is updated
optimistically.

Failures never raise out of an action. They are logged and left in
``state.last_error`` for the renderer to show.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from http_client import APIError, LibraryAPIClient

logger = logging.getLogger(__name__)

SELECT_USER_FIRST = "Please select a user first."


@dataclass
class BookForm:
    title: str = ""
    author: str = ""
    publication_year: str = ""


@dataclass
class UserForm:
    name: str = ""
    contact_info: str = ""


@dataclass
class FrontendState:
    books: List[Dict[str, Any]] = field(default_factory=list)
    users: List[Dict[str, Any]] = field(default_factory=list)
    selected_user: str = ""
    transactions: List[Dict[str, Any]] = field(default_factory=list)
    new_book: BookForm = field(default_factory=BookForm)
    new_user: UserForm = field(default_factory=UserForm)
    last_message: Optional[str] = None
    last_error: Optional[str] = None


class Frontend:
    def __init__(self, api: LibraryAPIClient) -> None:
        self.api = api
        self.state = FrontendState()

    # ------------------------- Loading ------------------------- #
    def mount(self) -> None:
        """Initial load: books and users."""
        self.fetch_books()
        self.fetch_users()

    def fetch_books(self) -> None:
        try:
            self.state.books = self.api.list_books()
        except APIError as e:
            logger.error(f"Error fetching books: {e}")
            self._fail(f"Could not load books: {e}")

    def fetch_users(self) -> None:
        try:
            self.state.users = self.api.list_users()
        except APIError as e:
            logger.error(f"Error fetching users: {e}")
            self._fail(f"Could not load users: {e}")

    def fetch_transactions(self, user_id: str) -> None:
        try:
            transactions = self.api.borrowed_books(user_id)
        except APIError as e:
            # the server answers 404 when the user has never borrowed anything
            if e.status_code != 404:
                logger.error(f"Error fetching transactions: {e}")
            self.state.transactions = []
            return
        if isinstance(transactions, list):
            self.state.transactions = transactions
        else:
            logger.error(f"Unexpected response format: {transactions!r}")
            self.state.transactions = []

    def select_user(self, user_id: Optional[str]) -> None:
        self.state.selected_user = user_id or ""
        if self.state.selected_user:
            self.fetch_transactions(self.state.selected_user)
        else:
            self.state.transactions = []

    # ------------------------- Books ------------------------- #
    def add_book(self) -> bool:
        form = self.state.new_book
        try:
            self.api.add_book(form.title, form.author, form.publication_year)
            self.state.new_book = BookForm()
            self._notify("Book added.")
        except APIError as e:
            logger.error(f"Error adding book: {e}")
            self._fail(f"Could not add book: {e}")
            return False
        finally:
            self.fetch_books()
        return True

    def delete_book(self, book_id: str) -> bool:
        try:
            self.api.delete_book(book_id)
            self._notify("Book deleted.")
        except APIError as e:
            logger.error(f"Error deleting book: {e}")
            self._fail(f"Could not delete book: {e}")
            return False
        finally:
            self.fetch_books()
        return True

    # ------------------------- Users ------------------------- #
    def register_user(self) -> bool:
        form = self.state.new_user
        try:
            self.api.register_user(form.name, form.contact_info)
            self.state.new_user = UserForm()
            self._notify("User registered successfully.")
        except APIError as e:
            if e.status_code == 400:
                # e.g. "User already registered with this contact info."
                self._fail(e.message)
            else:
                logger.error(f"Error registering user: {e}")
                self._fail("An error occurred. Please try again.")
            return False
        finally:
            self.fetch_users()
        return True

    # ------------------------- Lending ------------------------- #
    def borrow(self, book_id: str) -> bool:
        if not self.state.selected_user:
            self._fail(SELECT_USER_FIRST)
            return False
        try:
            self.api.borrow(book_id, self.state.selected_user)
            self._notify("Book borrowed.")
        except APIError as e:
            logger.error(f"Error borrowing book: {e}")
            self._fail(f"Could not borrow the book: {e}")
            return False
        finally:
            self._refresh_lending()
        return True

    def return_book(self, book_id: str) -> bool:
        if not self.state.selected_user:
            self._fail(SELECT_USER_FIRST)
            return False
        try:
            self.api.return_book(book_id, self.state.selected_user)
            self._notify("Book returned successfully.")
        except APIError as e:
            logger.error(f"Error returning book: {e}")
            self._fail("Failed to return the book. Please try again.")
            return False
        finally:
            self._refresh_lending()
        return True

    # ------------------------- Helpers ------------------------- #
    def selected_user_name(self) -> Optional[str]:
        for user in self.state.users:
            if user.get("id") == self.state.selected_user:
                return user.get("name")
        return None

    def _refresh_lending(self) -> None:
        self.fetch_books()
        self.fetch_transactions(self.state.selected_user)

    def _notify(self, message: str) -> None:
        self.state.last_message = message
        self.state.last_error = None

    def _fail(self, message: str) -> None:
        self.state.last_error = message
        self.state.last_message = None
