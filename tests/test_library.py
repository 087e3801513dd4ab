import threading

import pytest

from errors import ConflictError, InvalidOperationError, NotFoundError, ValidationError
from library import Library


@pytest.fixture
def dune(lib):
    return lib.add_book("Dune", "Herbert", 1965)


@pytest.fixture
def ann(lib):
    return lib.register_user("Ann", "ann@example.com")


@pytest.fixture
def bob(lib):
    return lib.register_user("Bob", "bob@example.com")


def _assert_availability_matches_history(lib):
    for book in lib.list_books():
        has_open = bool(lib.open_transactions(book.id))
        assert book.availability_status is (not has_open)


# ------------------------- Books ------------------------- #
def test_add_list_and_get(lib):
    assert lib.list_books() == []

    book = lib.add_book("  Ulysses ", "James Joyce", 1922)

    assert book.id
    assert book.title == "Ulysses"
    assert book.availability_status is True
    assert [b.id for b in lib.list_books()] == [book.id]
    assert lib.get_book(book.id).author == "James Joyce"


@pytest.mark.parametrize("title, author, year", [
    ("", "Author", 2000),
    ("Title", "   ", 2000),
    ("Title", "12345", 2000),
    ("Title", "Author", "2000"),
    ("Title", "Author", True),
    ("Title", "Author", 99999),
])
def test_add_book_validation(lib, title, author, year):
    with pytest.raises(ValidationError):
        lib.add_book(title, author, year)
    assert lib.list_books() == []


def test_update_book_partial(lib, dune):
    updated = lib.update_book(dune.id, title="Dune Messiah", publication_year=1969)
    assert updated.title == "Dune Messiah"
    assert updated.publication_year == 1969
    assert updated.author == "Herbert"


def test_update_book_errors(lib, dune):
    assert lib.update_book("0" * 24, title="x") is None
    with pytest.raises(ValidationError):
        lib.update_book(dune.id)
    with pytest.raises(ValidationError):
        lib.update_book(dune.id, isbn="123")
    with pytest.raises(ValidationError):
        lib.update_book(dune.id, title="")
    with pytest.raises(ValidationError):
        lib.update_book(dune.id, availability_status="no")


def test_direct_update_can_desync_availability(lib, dune, ann):
    lib.borrow(dune.id, ann.id)
    # CRUD bypasses the lending workflow
    book = lib.update_book(dune.id, availability_status=True)
    assert book.availability_status is True
    assert len(lib.open_transactions(dune.id)) == 1


def test_remove_book(lib, dune):
    removed = lib.remove_book(dune.id)
    assert removed.id == dune.id
    assert lib.remove_book(dune.id) is None
    assert lib.get_book(dune.id) is None


# ------------------------- Users ------------------------- #
def test_register_user(lib, ann):
    assert ann.id
    assert [u.name for u in lib.list_users()] == ["Ann"]
    assert lib.get_user(ann.id).contact_info == "ann@example.com"


def test_duplicate_contact_info_is_rejected(lib, ann):
    with pytest.raises(ConflictError, match="User already registered with this contact info."):
        lib.register_user("Another Ann", "ann@example.com")
    assert len(lib.list_users()) == 1


def test_register_user_validation(lib):
    with pytest.raises(ValidationError):
        lib.register_user("", "x@example.com")
    with pytest.raises(ValidationError):
        lib.register_user("Ann", "  ")


# ------------------------- Lending ------------------------- #
def test_borrow_marks_book_unavailable(lib, dune, ann):
    transaction = lib.borrow(dune.id, ann.id)

    assert transaction.book_id == dune.id
    assert transaction.user_id == ann.id
    assert transaction.borrow_date is not None
    assert transaction.return_date is None
    assert lib.get_book(dune.id).availability_status is False
    _assert_availability_matches_history(lib)


def test_borrow_unavailable_book_fails_without_mutation(lib, dune, ann, bob):
    first = lib.borrow(dune.id, ann.id)

    with pytest.raises(InvalidOperationError, match="Book not available"):
        lib.borrow(dune.id, bob.id)

    open_transactions = lib.open_transactions(dune.id)
    assert [t.id for t in open_transactions] == [first.id]
    assert open_transactions[0].user_id == ann.id
    assert lib.get_book(dune.id).availability_status is False
    assert lib.borrowed_books(bob.id) == []


def test_borrow_missing_book_fails_without_mutation(lib, ann):
    with pytest.raises(InvalidOperationError):
        lib.borrow("0" * 24, ann.id)
    assert lib.borrowed_books(ann.id) == []


def test_borrow_unknown_user_fails_without_mutation(lib, dune):
    with pytest.raises(InvalidOperationError, match="User not found"):
        lib.borrow(dune.id, "0" * 24)
    assert lib.get_book(dune.id).availability_status is True
    assert lib.open_transactions(dune.id) == []


def test_borrow_requires_ids(lib):
    with pytest.raises(ValidationError):
        lib.borrow("", "u")
    with pytest.raises(ValidationError):
        lib.return_book("b", None)


def test_borrow_rolls_back_flag_when_insert_fails(lib, dune, ann, bob):
    # Force an open transaction behind the workflow's back, then let the
    # availability flag disagree with it.
    lib.borrow(dune.id, ann.id)
    lib.update_book(dune.id, availability_status=True)

    with pytest.raises(InvalidOperationError):
        lib.borrow(dune.id, bob.id)

    # the flag flip was undone together with the failed insert
    assert lib.get_book(dune.id).availability_status is True
    assert len(lib.open_transactions(dune.id)) == 1


def test_return_round_trip(lib, dune, ann):
    borrowed = lib.borrow(dune.id, ann.id)
    returned = lib.return_book(dune.id, ann.id)

    assert returned.id == borrowed.id
    assert returned.return_date is not None
    assert returned.return_date >= returned.borrow_date
    assert lib.get_book(dune.id).availability_status is True
    _assert_availability_matches_history(lib)


def test_return_without_open_transaction_fails(lib, dune, ann, bob):
    with pytest.raises(NotFoundError, match="Transaction not found"):
        lib.return_book(dune.id, ann.id)

    lib.borrow(dune.id, ann.id)
    # wrong user
    with pytest.raises(NotFoundError):
        lib.return_book(dune.id, bob.id)
    assert lib.get_book(dune.id).availability_status is False

    lib.return_book(dune.id, ann.id)
    # already returned
    with pytest.raises(NotFoundError):
        lib.return_book(dune.id, ann.id)


def test_return_after_book_deleted_still_closes_transaction(lib, dune, ann):
    lib.borrow(dune.id, ann.id)
    lib.remove_book(dune.id)

    returned = lib.return_book(dune.id, ann.id)
    assert returned.return_date is not None


def test_book_can_be_borrowed_again_after_return(lib, dune, ann, bob):
    lib.borrow(dune.id, ann.id)
    lib.return_book(dune.id, ann.id)
    lib.borrow(dune.id, bob.id)

    assert lib.get_book(dune.id).availability_status is False
    assert len(lib.borrowed_books(ann.id)) == 1
    assert len(lib.borrowed_books(bob.id)) == 1
    _assert_availability_matches_history(lib)


# ------------------------- Reads ------------------------- #
def test_transactions_for_user_expands_book_and_user(lib, dune, ann):
    lib.borrow(dune.id, ann.id)

    [transaction] = lib.transactions_for_user(ann.id)
    assert transaction.book_id == {"id": dune.id, "title": "Dune", "author": "Herbert"}
    assert transaction.user_id == {"id": ann.id, "name": "Ann"}


def test_borrowed_books_include_publication_year(lib, dune, ann):
    lib.borrow(dune.id, ann.id)
    lib.return_book(dune.id, ann.id)

    [transaction] = lib.borrowed_books(ann.id)
    assert transaction.book_id == {
        "id": dune.id, "title": "Dune", "author": "Herbert", "publication_year": 1965,
    }
    assert transaction.user_id == ann.id
    assert transaction.return_date is not None


def test_statistics(lib, dune, ann):
    lib.add_book("Emma", "Jane Austen", 1815)
    lib.borrow(dune.id, ann.id)
    assert lib.get_statistics() == {"total_books": 2, "total_users": 1, "open_transactions": 1}


def test_state_persists_between_instances(db_file):
    first = Library(db_file=db_file)
    book = first.add_book("Sapiens", "Yuval Noah Harari", 2011)
    first.close()

    second = Library(db_file=db_file)
    try:
        assert second.get_book(book.id).title == "Sapiens"
    finally:
        second.close()


def test_open_transactions_across_books(lib, dune, ann):
    emma = lib.add_book("Emma", "Jane Austen", 1815)
    lib.borrow(dune.id, ann.id)
    lib.borrow(emma.id, ann.id)
    lib.return_book(dune.id, ann.id)

    assert [t.book_id for t in lib.open_transactions()] == [emma.id]
    assert lib.open_transactions(dune.id) == []


def test_concurrent_borrows_of_one_book_let_exactly_one_win(db_file, lib, dune, ann, bob):
    # a second Library means a second SQLite connection to the same file
    other = Library(db_file=db_file)
    barrier = threading.Barrier(2)
    outcomes = []

    def attempt(library, user):
        barrier.wait()
        try:
            library.borrow(dune.id, user.id)
            outcomes.append("borrowed")
        except InvalidOperationError:
            outcomes.append("refused")
        except Exception as e:
            outcomes.append(type(e).__name__)

    threads = [
        threading.Thread(target=attempt, args=(lib, ann)),
        threading.Thread(target=attempt, args=(other, bob)),
    ]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
    finally:
        other.close()

    assert sorted(outcomes) == ["borrowed", "refused"]
    assert len(lib.open_transactions(dune.id)) == 1
    assert lib.get_book(dune.id).availability_status is False
