import pytest
from fastapi.testclient import TestClient

from api import create_app
from database import RecordStore
from http_client import LibraryAPIClient
from library import Library


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def store(db_file):
    store = RecordStore(db_file).open()
    yield store
    store.close()


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def client(db_file):
    # The context manager runs the app lifespan, which opens the Library
    with TestClient(create_app(db_file=db_file)) as test_client:
        yield test_client


@pytest.fixture
def api_client(client):
    return LibraryAPIClient(client=client)
