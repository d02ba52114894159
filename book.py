from __future__ import annotations

from utils.validators import ISBNValidator


class Book:
    """Represents a single title in the library catalogue."""

    def __init__(self, title: str, author: str, isbn: str, genre: str | None = None,
                 publication_year: int | None = None, available_copies: int = 0,
                 id: int | None = None) -> None:
        if not title or not title.strip():
            raise ValueError("Title is required.")
        if not author or not author.strip():
            raise ValueError("Author is required.")
        isbn = ISBNValidator.normalize_isbn(isbn)
        if not isbn:
            raise ValueError("ISBN is required.")
        if available_copies < 0:
            raise ValueError("Available copies cannot be negative.")

        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn
        self.genre = genre.strip() if genre and genre.strip() else None
        self.publication_year = publication_year
        self.available_copies = available_copies

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def __repr__(self) -> str:  # pragma: no cover
        return f"Book(id={self.id!r}, isbn={self.isbn!r}, available_copies={self.available_copies!r})"

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    def checkout_copy(self) -> None:
        """Take one copy off the shelf."""
        if self.available_copies <= 0:
            raise ValueError("No available copies of this book.")
        self.available_copies -= 1

    def return_copy(self) -> None:
        self.available_copies += 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "genre": self.genre,
            "publication_year": self.publication_year,
            "available_copies": self.available_copies,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            genre=data.get("genre"),
            publication_year=data.get("publication_year"),
            available_copies=data.get("available_copies") or 0,
        )
