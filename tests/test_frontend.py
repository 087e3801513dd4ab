from unittest.mock import MagicMock

import httpx
import pytest

from frontend import SELECT_USER_FIRST, BookForm, Frontend
from http_client import APIError, LibraryAPIClient


@pytest.fixture
def frontend(api_client):
    ui = Frontend(api_client)
    ui.mount()
    return ui


def _add_book(ui, title="Dune", author="Herbert", year="1965"):
    ui.state.new_book = BookForm(title=title, author=author, publication_year=year)
    assert ui.add_book() is True
    return ui.state.books[-1]


def _register(ui, name="Ann", contact="ann@example.com"):
    ui.state.new_user.name = name
    ui.state.new_user.contact_info = contact
    assert ui.register_user() is True
    return ui.state.users[-1]


def test_mount_loads_books_and_users(api_client):
    api_client.add_book("Dune", "Herbert", 1965)
    api_client.register_user("Ann", "ann@example.com")

    ui = Frontend(api_client)
    ui.mount()

    assert [b["title"] for b in ui.state.books] == ["Dune"]
    assert [u["name"] for u in ui.state.users] == ["Ann"]
    assert ui.state.selected_user == ""
    assert ui.state.transactions == []


def test_add_book_refreshes_list_and_clears_form(frontend):
    book = _add_book(frontend)

    assert book["title"] == "Dune"
    assert book["publicationYear"] == 1965
    assert frontend.state.new_book == BookForm()
    assert frontend.state.last_message == "Book added."


def test_add_book_failure_keeps_form(frontend):
    frontend.state.new_book = BookForm(title="Dune", author="Herbert", publication_year="soon")

    assert frontend.add_book() is False
    assert frontend.state.books == []
    assert frontend.state.new_book.title == "Dune"
    assert frontend.state.last_error.startswith("Could not add book")


def test_delete_book(frontend):
    book = _add_book(frontend)

    assert frontend.delete_book(book["id"]) is True
    assert frontend.state.books == []
    assert frontend.delete_book(book["id"]) is False
    assert "Book not found" in frontend.state.last_error


def test_register_user(frontend):
    user = _register(frontend)

    assert user["name"] == "Ann"
    assert frontend.state.new_user.name == ""
    assert frontend.state.last_message == "User registered successfully."


def test_register_duplicate_shows_server_message(frontend):
    _register(frontend)
    frontend.state.new_user.name = "Other"
    frontend.state.new_user.contact_info = "ann@example.com"

    assert frontend.register_user() is False
    assert frontend.state.last_error == "User already registered with this contact info."
    assert len(frontend.state.users) == 1


def test_register_server_error_shows_generic_message():
    api = MagicMock(spec=LibraryAPIClient)
    api.register_user.side_effect = APIError("boom", status_code=500)
    api.list_users.return_value = []
    ui = Frontend(api)

    assert ui.register_user() is False
    assert ui.state.last_error == "An error occurred. Please try again."
    api.list_users.assert_called_once()


def test_select_user_loads_borrowings(frontend):
    book = _add_book(frontend)
    user = _register(frontend)

    frontend.select_user(user["id"])
    assert frontend.state.transactions == []
    assert frontend.selected_user_name() == "Ann"

    assert frontend.borrow(book["id"]) is True
    frontend.select_user("")
    assert frontend.state.transactions == []
    assert frontend.selected_user_name() is None

    frontend.select_user(user["id"])
    assert len(frontend.state.transactions) == 1


def test_borrow_and_return_refetch_state(frontend):
    book = _add_book(frontend)
    user = _register(frontend)
    frontend.select_user(user["id"])

    assert frontend.borrow(book["id"]) is True
    assert frontend.state.last_message == "Book borrowed."
    assert frontend.state.books[0]["availabilityStatus"] is False
    [entry] = frontend.state.transactions
    assert entry["bookId"]["title"] == "Dune"
    assert entry["returnDate"] is None

    assert frontend.return_book(book["id"]) is True
    assert frontend.state.last_message == "Book returned successfully."
    assert frontend.state.books[0]["availabilityStatus"] is True
    assert frontend.state.transactions[0]["returnDate"] is not None


def test_failed_borrow_still_refetches(frontend, api_client):
    book = _add_book(frontend)
    user = _register(frontend)
    other = api_client.register_user("Bob", "bob@example.com")
    api_client.borrow(book["id"], other["id"])
    frontend.select_user(user["id"])

    # the local list still shows the book as available
    assert frontend.state.books[0]["availabilityStatus"] is True
    assert frontend.borrow(book["id"]) is False
    assert "Book not available" in frontend.state.last_error
    assert frontend.state.books[0]["availabilityStatus"] is False


def test_return_failure_message(frontend):
    book = _add_book(frontend)
    user = _register(frontend)
    frontend.select_user(user["id"])

    assert frontend.return_book(book["id"]) is False
    assert frontend.state.last_error == "Failed to return the book. Please try again."


def test_lending_requires_selected_user():
    api = MagicMock(spec=LibraryAPIClient)
    ui = Frontend(api)

    assert ui.borrow("b1") is False
    assert ui.state.last_error == SELECT_USER_FIRST
    assert ui.return_book("b1") is False
    assert ui.state.last_error == SELECT_USER_FIRST
    api.borrow.assert_not_called()
    api.return_book.assert_not_called()


def test_unreachable_server_is_reported():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    offline = LibraryAPIClient(client=httpx.Client(base_url="http://library.test",
                                                   transport=httpx.MockTransport(refuse)))
    ui = Frontend(offline)
    ui.mount()

    assert ui.state.books == []
    assert ui.state.last_error.startswith("Could not load")


def test_refresh_failure_after_successful_add_is_reported():
    api = MagicMock(spec=LibraryAPIClient)
    api.add_book.return_value = {"id": "b1", "title": "Dune"}
    api.list_books.side_effect = APIError("Could not reach the library server")
    ui = Frontend(api)
    ui.state.new_book = BookForm(title="Dune", author="Herbert", publication_year="1965")

    assert ui.add_book() is True
    assert ui.state.new_book == BookForm()
    assert ui.state.last_error == "Could not load books: Could not reach the library server"
    api.list_books.assert_called_once()


def test_refresh_failure_after_successful_borrow_is_reported():
    api = MagicMock(spec=LibraryAPIClient)
    api.list_books.side_effect = APIError("HTTP 500", status_code=500)
    api.borrowed_books.return_value = []
    ui = Frontend(api)
    ui.state.selected_user = "u1"

    assert ui.borrow("b1") is True
    api.borrow.assert_called_once_with("b1", "u1")
    assert ui.state.last_error == "Could not load books: HTTP 500"
    assert ui.state.last_message is None
