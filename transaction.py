from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

# A reference is either the raw id or, after expansion, the embedded
# sub-document of the referenced record. Dangling references expand to None.
Reference = Union[str, Dict[str, Any], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        stamp = value
    else:
        stamp = datetime.fromisoformat(str(value))
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


class Transaction:
    """One borrow of one book by one user.

    The transaction is open while ``return_date`` is ``None``.
    """

    def __init__(self, book_id: Reference, user_id: Reference, borrow_date: datetime,
                 return_date: Optional[datetime] = None, id: Optional[str] = None) -> None:
        self.id = id
        self.book_id = book_id
        self.user_id = user_id
        self.borrow_date = borrow_date
        self.return_date = return_date

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "returned"
        return f"Transaction(id={self.id!r}, book_id={self.book_id!r}, user_id={self.user_id!r}, {state})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "borrow_date": self.borrow_date.isoformat() if self.borrow_date else None,
            "return_date": self.return_date.isoformat() if self.return_date else None,
        }

    @staticmethod
    def from_dict(data: dict) -> "Transaction":
        return Transaction(
            id=data.get("id"),
            book_id=data.get("book_id"),
            user_id=data.get("user_id"),
            borrow_date=parse_timestamp(data.get("borrow_date")),
            return_date=parse_timestamp(data.get("return_date")),
        )
