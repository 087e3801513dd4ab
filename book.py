from __future__ import annotations


class Book:
    """A single title on the library shelf."""

    def __init__(self, title: str, author: str, publication_year: int, availability_status: bool = True,
                 id: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.publication_year = publication_year
        self.availability_status = bool(availability_status)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.publication_year})"

    def __repr__(self) -> str:
        return f"Book(id={self.id!r}, title={self.title!r}, available={self.availability_status})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "publication_year": self.publication_year,
            "availability_status": self.availability_status,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite hands the flag back as 0/1
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            publication_year=data["publication_year"],
            availability_status=bool(data.get("availability_status", True)),
        )
