import math
from typing import Dict, Iterable, Optional

from book_network.exceptions import ValidationError

MIN_RATING = 0.0
MAX_RATING = 5.0


class TextValidator:
    """Required-field checks for the free-text attributes of books and feedback."""

    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not str(text).strip()

    @staticmethod
    def require(fields: Dict[str, Optional[str]]) -> None:
        """Raise one ValidationError listing every blank field, in the given order."""
        errors = [f"{label} is required" for label, value in fields.items() if TextValidator.is_blank(value)]
        if errors:
            raise ValidationError(errors[0], errors)


def validate_rating(rate: Optional[float]) -> float:
    if rate is None:
        raise ValidationError("Rate value is required")
    try:
        value = float(rate)
    except (TypeError, ValueError) as e:
        raise ValidationError("Rate value should be a number") from e
    if not math.isfinite(value):
        raise ValidationError("Rate value should be a number")
    if value < MIN_RATING:
        raise ValidationError(f"Rate value should be at least {MIN_RATING:g}")
    if value > MAX_RATING:
        raise ValidationError(f"Rate value should be at most {MAX_RATING:g}")
    return value


def validate_feedback(rate: Optional[float], comment: Optional[str]) -> float:
    """Request-side checks for a feedback submission; returns the rating as a float."""
    value = validate_rating(rate)
    TextValidator.require({"Comment": comment})
    return value


def validate_page(page: int, size: int, max_size: int) -> None:
    if page < 0:
        raise ValidationError("Page index must not be negative")
    if size < 1 or size > max_size:
        raise ValidationError(f"Page size must be between 1 and {max_size}")


def validate_media_type(media_type: Optional[str], allowed: Iterable[str]) -> str:
    normalized = (media_type or "").split(";")[0].strip().lower()
    allowed_types = [a.lower() for a in allowed]
    if normalized not in allowed_types:
        raise ValidationError(
            f"Invalid file type {media_type!r}. Allowed types: {', '.join(allowed_types)}"
        )
    return normalized
