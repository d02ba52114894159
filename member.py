from __future__ import annotations

from enum import Enum


class MembershipType(str, Enum):
    ADMIN = "Admin"          # full control over the system
    LIBRARIAN = "Librarian"  # manages books, members and loans
    MEMBER = "Member"        # borrows books

    @classmethod
    def parse(cls, raw: str | None) -> "MembershipType":
        """Case-insensitive lookup by name; raises ValueError for unknown tiers."""
        if raw is not None:
            wanted = raw.strip().lower()
            for item in cls:
                if item.value.lower() == wanted:
                    return item
        allowed = ", ".join(item.value for item in cls)
        raise ValueError(f"Invalid membership type '{raw}'. Allowed values: {allowed}")


class Member:
    """A registered library user. Usernames are stored lower-cased."""

    def __init__(self, username: str, name: str, email: str, password_hash: str,
                 membership_type: MembershipType | str = MembershipType.MEMBER,
                 id: int | None = None) -> None:
        if not username or not username.strip():
            raise ValueError("Username is required.")
        if not name or not name.strip():
            raise ValueError("Member name is required.")
        if not email or not email.strip():
            raise ValueError("Email is required.")
        if not password_hash:
            raise ValueError("Password hash is required.")

        self.id = id
        self.username = normalize_username(username)
        self.name = name.strip()
        self.email = email.strip()
        self.password_hash = password_hash
        self.membership_type = (
            membership_type if isinstance(membership_type, MembershipType)
            else MembershipType.parse(membership_type)
        )

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} ({self.username}, {self.membership_type.value})"

    def update(self, name: str | None = None, email: str | None = None,
               password_hash: str | None = None,
               membership_type: MembershipType | None = None) -> None:
        """Apply a partial update; blank or missing values leave the field as is."""
        if name and name.strip():
            self.name = name.strip()
        if email and email.strip():
            self.email = email.strip()
        if password_hash:
            self.password_hash = password_hash
        if membership_type is not None:
            self.membership_type = membership_type

    def to_dict(self) -> dict:
        # The credential never leaves the persistence layer.
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "membership_type": self.membership_type.value,
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            id=data.get("id"),
            username=data["username"],
            name=data["name"],
            email=data["email"],
            password_hash=data["password_hash"],
            membership_type=data["membership_type"],
        )


def normalize_username(raw: str) -> str:
    return (raw or "").strip().lower()
