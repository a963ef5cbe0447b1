import re
from typing import Optional, Union

from bookcatalog.errors import ValidationError

ISBN_PATTERN = re.compile(r"\d{13}")
KEYWORD_PATTERN = re.compile(r'[A-Za-z0-9\s"-]+')

Number = Union[int, float, str]


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_isbn(value: Union[int, str, None]) -> str:
    """Return the ISBN-13 as a 13-digit string or raise ValidationError."""
    if _is_blank(value) or isinstance(value, bool):
        raise ValidationError("Missing ISBN.")
    text = str(value).strip()
    if not text.isdigit():
        raise ValidationError("Can not parse ISBN.", detail=f"'{text}' is not numeric")
    if not ISBN_PATTERN.fullmatch(text):
        raise ValidationError("ISBN must be 13 characters.", detail=f"'{text}' has {len(text)} digits")
    return text


def coerce_int(value: Optional[Number], name: str) -> Optional[int]:
    """Parse an optional integer; None and blank strings mean 'not supplied'."""
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"The {name} is not numeric.")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"The {name} must be a whole number.")
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"The {name} is not numeric.", detail=f"got '{value}'") from None


def coerce_number(value: Optional[Number], name: str) -> Optional[float]:
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"The {name} is not numeric.")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"The {name} is not numeric.", detail=f"got '{value}'") from None
    if number != number:
        raise ValidationError(f"The {name} is not numeric.", detail="NaN is not a rating")
    return number


def clamp(n: float, low: float, high: float) -> float:
    return max(low, min(high, n))


def normalize_keyword(value: Optional[str]) -> Optional[str]:
    if _is_blank(value):
        return None
    text = value.strip()
    if not KEYWORD_PATTERN.fullmatch(text):
        raise ValidationError(
            "Malformed keyword query.",
            detail="keywords may only contain letters, digits, spaces, '-' and '\"'",
        )
    return text


def normalize_text(value: Optional[str]) -> Optional[str]:
    if _is_blank(value):
        return None
    return str(value).strip()


def normalize_author_name(name: str) -> str:
    return " ".join(str(name).split())
