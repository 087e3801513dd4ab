import logging
from typing import Any, Dict, List, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class APIError(Exception):
    """A request to the library API failed.

    ``status_code`` is None when the server could not be reached at all.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class LibraryAPIClient:
    """Synchronous client for the library REST API with connection pooling."""

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.Client] = None,
                 timeout: Optional[float] = None) -> None:
        if client is not None:
            # e.g. fastapi.testclient.TestClient, which already knows its base URL
            self._client = client
            self._owns_client = False
            return

        limits = httpx.Limits(
            max_keepalive_connections=5,
            max_connections=10,
            keepalive_expiry=30.0,
        )
        request_timeout = timeout or settings.http_timeout
        self._client = httpx.Client(
            base_url=(base_url or settings.api_url).rstrip("/"),
            limits=limits,
            timeout=httpx.Timeout(timeout=request_timeout, connect=5.0),
            follow_redirects=True,
        )
        self._owns_client = True

    # ------------------------- Books ------------------------- #
    def list_books(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/books")

    def add_book(self, title: str, author: str, publication_year: Any) -> Dict[str, Any]:
        return self._request("POST", "/books", json={
            "title": title,
            "author": author,
            "publicationYear": publication_year,
        })

    def update_book(self, book_id: str, **changes: Any) -> Dict[str, Any]:
        """``changes`` use the wire names: title, author, publicationYear, availabilityStatus."""
        return self._request("PUT", f"/books/{book_id}", json=changes)

    def delete_book(self, book_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/books/{book_id}")

    # ------------------------- Users ------------------------- #
    def list_users(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/users")

    def register_user(self, name: str, contact_info: str) -> Dict[str, Any]:
        return self._request("POST", "/users", json={"name": name, "contactInfo": contact_info})

    # ------------------------- Lending ------------------------- #
    def borrow(self, book_id: str, user_id: str) -> Dict[str, Any]:
        return self._request("POST", "/borrow", json={"bookId": book_id, "userId": user_id})

    def return_book(self, book_id: str, user_id: str) -> Dict[str, Any]:
        return self._request("POST", "/return", json={"bookId": book_id, "userId": user_id})

    def user_transactions(self, user_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/transactions/{user_id}")

    def borrowed_books(self, user_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/user/{user_id}/borrowed-books")

    def home(self) -> Dict[str, Any]:
        return self._request("GET", "/")

    # ------------------------- Plumbing ------------------------- #
    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise APIError(f"Could not reach the library server: {e}") from e

        if response.is_success:
            return response.json()

        message = self._error_message(response)
        logger.debug(f"{method} {path} -> {response.status_code}: {message}")
        raise APIError(message, status_code=response.status_code)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            detail = body.get("detail") or body.get("message")
            if detail:
                return str(detail)
        return f"HTTP {response.status_code}"

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "LibraryAPIClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
