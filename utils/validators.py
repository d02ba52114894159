import re
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_PATTERN = re.compile(r"^[a-z0-9._-]+$")
USERNAME_MAX_LENGTH = 50


class ISBNValidator:
    """ISBN clean-up. Only the shape is normalised; checksums are not enforced."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[\s-]", "", raw)
        return s.upper()


class TextValidator:
    """Basic text checks shared by the request models and the services."""

    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not text.strip()

    @staticmethod
    def validate_email(email: Optional[str]) -> bool:
        if TextValidator.is_blank(email):
            return False
        return bool(EMAIL_PATTERN.match(email.strip()))

    @staticmethod
    def validate_username(username: Optional[str]) -> bool:
        if TextValidator.is_blank(username):
            return False
        s = username.strip().lower()
        return len(s) <= USERNAME_MAX_LENGTH and bool(USERNAME_PATTERN.match(s))
