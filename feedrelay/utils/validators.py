"""
FeedRelay Input Validators
==========================

Validation helpers for user-supplied feed, route and integration data.
Each ``validate_*`` returns the cleaned value or raises ValidationError.
"""

import re
from urllib.parse import urlparse, urlunparse
from typing import List, Iterable, Optional

from .exceptions import ValidationError, ErrorCode


class URLValidator:
    """URL validation and sanitization utilities."""

    ALLOWED_SCHEMES = {"http", "https"}

    @classmethod
    def validate_feed_url(cls, url: str, field_name: str = "url") -> str:
        """Validate an http(s) URL and lower-case its scheme and host.

        Raises:
            ValidationError: If URL is invalid
        """
        if not url or not isinstance(url, str):
            raise ValidationError(
                "URL is required and must be a string",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name=field_name,
            )

        url = url.strip()
        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise ValidationError(
                f"Invalid URL format: {e}",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name=field_name,
            ) from e

        if parsed.scheme.lower() not in cls.ALLOWED_SCHEMES:
            raise ValidationError(
                f"URL scheme must be one of {sorted(cls.ALLOWED_SCHEMES)}",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name=field_name,
            )

        if not parsed.netloc:
            raise ValidationError(
                "URL must include a hostname",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name=field_name,
            )

        return urlunparse(
            parsed._replace(
                scheme=parsed.scheme.lower(),
                netloc=parsed.netloc.lower(),
                path=parsed.path or "/",
            )
        )

    @classmethod
    def is_valid_feed_url(cls, url: str) -> bool:
        try:
            cls.validate_feed_url(url)
            return True
        except ValidationError:
            return False


class FeedValidator:
    """Checks applied to user edits of a feed."""

    TITLE_MAX_LENGTH = 500

    @classmethod
    def validate_title(cls, title: str) -> str:
        if not title or not isinstance(title, str) or not title.strip():
            raise ValidationError(
                "Feed title cannot be empty",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name="title",
            )
        title = re.sub(r"\s+", " ", title).strip()
        if len(title) > cls.TITLE_MAX_LENGTH:
            raise ValidationError(
                f"Feed title longer than {cls.TITLE_MAX_LENGTH} characters",
                error_code=ErrorCode.VALIDATION_OUT_OF_RANGE,
                field_name="title",
            )
        return title

    @classmethod
    def validate_interval(cls, interval) -> int:
        try:
            value = int(interval)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Interval must be a whole number of minutes, got {interval!r}",
                field_name="interval",
            ) from e
        if value < 1:
            raise ValidationError(
                "Interval must be at least 1 minute",
                error_code=ErrorCode.VALIDATION_OUT_OF_RANGE,
                field_name="interval",
            )
        return value

    @classmethod
    def validate_selected_fields(
        cls, selected: Iterable[str], allowed: Iterable[str]
    ) -> List[str]:
        """Ensure every selected field is available or well known.

        Duplicates are dropped, order is kept.
        """
        allowed_set = set(allowed)
        cleaned = list(dict.fromkeys(f.strip() for f in selected if f and f.strip()))
        unknown = [f for f in cleaned if f not in allowed_set]
        if unknown:
            raise ValidationError(
                f"Unknown fields: {', '.join(unknown)}",
                field_name="selected_fields",
            )
        return cleaned


def validate_required_text(value: Optional[str], field_name: str) -> str:
    """Strip ``value`` and reject it when empty."""
    if value is None or not str(value).strip():
        raise ValidationError(
            f"{field_name} is required",
            error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
            field_name=field_name,
        )
    return str(value).strip()
