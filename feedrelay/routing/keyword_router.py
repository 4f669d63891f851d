"""
Keyword Router
==============

Evaluates a feed's keyword routes against an item and returns the
integration ids whose rules matched.

A route searches either the standard field set (its field scope is empty
or contains ``all``) or only the fields it names. Regex routes use
Python's ``re`` dialect; both modes are case-insensitive unless the route
asks otherwise. A pattern that fails at match time is logged and treated
as no match, so one bad route never stops the others.
"""

import re
from functools import lru_cache
from typing import Iterable, List, Mapping, Optional, Set, Union

from ..database.models import CanonicalItem, KeywordRoute
from ..utils.exceptions import ValidationError, ErrorCode
from ..utils.logging import get_logger_for_component

STANDARD_FIELDS = ("title", "summary", "content", "description", "contentSnippet")
ALL_FIELDS_MARKER = "all"
FIELD_SEPARATOR = "\n"

ItemLike = Union[CanonicalItem, Mapping[str, object]]


@lru_cache(maxsize=512)
def _compile(pattern: str, case_sensitive: bool) -> "re.Pattern":
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile(pattern, flags)


def validate_pattern(pattern: str) -> str:
    """Check that ``pattern`` compiles as a regular expression.

    Raises:
        ValidationError: On an empty or malformed pattern
    """
    if not pattern:
        raise ValidationError(
            "Keyword cannot be empty",
            error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
            field_name="keyword",
        )
    try:
        re.compile(pattern)
    except re.error as e:
        raise ValidationError(
            f"Invalid regular expression '{pattern}': {e}",
            error_code=ErrorCode.VALIDATION_INVALID_PATTERN,
            field_name="keyword",
        ) from e
    return pattern


def _field_value(item: ItemLike, name: str) -> Optional[str]:
    if isinstance(item, CanonicalItem):
        return item.get_field(name)
    value = item.get(name)
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def uses_standard_fields(fields: Optional[Iterable[str]]) -> bool:
    scope = list(fields or [])
    return not scope or ALL_FIELDS_MARKER in scope


def build_search_text(item: ItemLike, fields: Optional[Iterable[str]] = None) -> str:
    """Concatenate the fields a route searches, skipping absent ones."""
    names = STANDARD_FIELDS if uses_standard_fields(fields) else list(fields)
    values = [_field_value(item, name) for name in names]
    return FIELD_SEPARATOR.join(value for value in values if value)


def matches(text: str, keyword: str, is_regex: bool = False, case_sensitive: bool = False) -> bool:
    """Match ``keyword`` against ``text``.

    Raises:
        re.error: When ``is_regex`` and the keyword does not compile
    """
    if is_regex:
        return _compile(keyword, case_sensitive).search(text) is not None
    if case_sensitive:
        return keyword in text
    return keyword.casefold() in text.casefold()


class KeywordRouter:
    """Resolves target integrations for an item."""

    def __init__(self):
        self.logger = get_logger_for_component("keyword_router")

    def route(self, item: ItemLike, routes: Iterable[KeywordRoute]) -> Set[str]:
        """Union of integration ids of every active route matching ``item``.

        An empty result means the caller should fall back to the feed's
        associated integrations.
        """
        targets: Set[str] = set()
        for route in routes:
            if not route.is_active:
                continue
            text = build_search_text(item, route.fields)
            if not text:
                continue
            try:
                if matches(text, route.keyword, route.is_regex, route.case_sensitive):
                    targets.add(route.integration_id)
            except re.error as e:
                self.logger.error(
                    f"Route {route.id} has an unusable pattern '{route.keyword}': {e}",
                    extra={"feed_id": route.feed_id},
                )
        return targets

    def resolve_targets(
        self, item: ItemLike, routes: Iterable[KeywordRoute], fallback: Iterable[str]
    ) -> List[str]:
        """Matched integrations, or ``fallback`` when no route matched.

        Returns ids in a stable order so dispatch order is reproducible.
        """
        matched = self.route(item, routes)
        if matched:
            return sorted(matched)
        return list(dict.fromkeys(fallback))

    def test_rule(
        self,
        keyword: str,
        content: Union[str, Mapping[str, object]],
        is_regex: bool = False,
        case_sensitive: bool = False,
        fields: Optional[Iterable[str]] = None,
    ) -> bool:
        """Evaluate a rule against synthetic content without storing anything.

        Args:
            keyword: Literal text or pattern
            content: Plain text to search, or a field mapping that is
                narrowed by ``fields`` like a stored route would be
            is_regex: Treat keyword as a regular expression
            case_sensitive: Disable case folding
            fields: Field scope applied when ``content`` is a mapping

        Raises:
            ValidationError: When ``is_regex`` and the pattern is malformed
        """
        if is_regex:
            validate_pattern(keyword)
        text = content if isinstance(content, str) else build_search_text(content, fields)
        return matches(text, keyword, is_regex, case_sensitive)
