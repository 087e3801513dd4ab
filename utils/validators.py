from datetime import date
from typing import Any, Optional


class TextValidator:
    """Basic checks for the free-text fields of books and users."""

    @staticmethod
    def _is_non_empty(text: Optional[str]) -> bool:
        if text is None or not isinstance(text, str):
            return False
        return bool(text.strip())

    @staticmethod
    def _is_non_empty_alpha(text: Optional[str]) -> bool:
        if not TextValidator._is_non_empty(text):
            return False
        # allow spaces, digits and punctuation as long as some letter is present
        return any(c.isalpha() for c in text)

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        # "1984" is a real title, so digits-only is fine here
        return TextValidator._is_non_empty(title)

    @staticmethod
    def validate_author(author: Optional[str]) -> bool:
        return TextValidator._is_non_empty_alpha(author)

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        return TextValidator._is_non_empty_alpha(name)

    @staticmethod
    def validate_contact_info(contact_info: Optional[str]) -> bool:
        return TextValidator._is_non_empty(contact_info)


class YearValidator:
    """Publication years are whole numbers no later than next year."""

    @staticmethod
    def validate_publication_year(year: Any) -> bool:
        if isinstance(year, bool) or not isinstance(year, int):
            return False
        return year <= date.today().year + 1


class IdValidator:
    @staticmethod
    def validate_id(value: Any) -> bool:
        return isinstance(value, str) and bool(value.strip())
