"""
Keyword Route Service
=====================

Create/read/update/delete for keyword routes. Patterns are validated
before anything is persisted, and references to unknown feeds,
integrations or routes are reported as NotFoundError.
"""

from typing import Iterable, List, Optional, Union, Mapping

from ..database.models import KeywordRoute, MatchMode
from ..storage.feed_repository import FeedRepository
from ..storage.integration_repository import IntegrationRepository
from ..storage.keyword_route_repository import KeywordRouteRepository
from ..utils.exceptions import NotFoundError, ValidationError, ErrorCode
from ..utils.logging import get_logger_for_component
from ..utils.validators import validate_required_text
from .keyword_router import KeywordRouter, validate_pattern

_UNSET = object()


class KeywordRouteService:
    """Manages keyword routes on behalf of operators."""

    def __init__(
        self,
        route_repository: KeywordRouteRepository,
        feed_repository: FeedRepository,
        integration_repository: IntegrationRepository,
        router: Optional[KeywordRouter] = None,
    ):
        self.routes = route_repository
        self.feeds = feed_repository
        self.integrations = integration_repository
        self.router = router or KeywordRouter()
        self.logger = get_logger_for_component("route_service")

    def create_route(
        self,
        feed_id: str,
        keyword: str,
        integration_id: str,
        is_regex: bool = False,
        case_sensitive: bool = False,
        fields: Optional[Iterable[str]] = None,
    ) -> KeywordRoute:
        """Validate and store a new active route.

        Raises:
            ValidationError: Empty keyword or malformed pattern
            NotFoundError: Unknown feed or integration
        """
        keyword = self._check_keyword(keyword, is_regex)
        self._require_feed(feed_id)
        self._require_integration(integration_id)

        route = KeywordRoute(
            feed_id=feed_id,
            keyword=keyword,
            match_mode=MatchMode.REGEX if is_regex else MatchMode.LITERAL,
            case_sensitive=case_sensitive,
            is_active=True,
            integration_id=integration_id,
            fields=list(fields or []),
        )
        route.id = self.routes.create_route(route)
        self.logger.info(
            f"Created route {route.id}: {route.keyword!r} -> {integration_id}",
            extra={"feed_id": feed_id},
        )
        return route

    def get_route(self, route_id: int) -> KeywordRoute:
        """Raises NotFoundError for an unknown id."""
        route = self.routes.get_route(route_id)
        if route is None:
            raise NotFoundError("keyword route", route_id)
        return route

    def get_routes_for_feed(self, feed_id: str, active_only: bool = True) -> List[KeywordRoute]:
        self._require_feed(feed_id)
        return self.routes.get_routes_for_feed(feed_id, active_only=active_only)

    def update_route(
        self,
        route_id: int,
        keyword=_UNSET,
        integration_id=_UNSET,
        is_regex=_UNSET,
        case_sensitive=_UNSET,
        is_active=_UNSET,
        fields=_UNSET,
    ) -> KeywordRoute:
        """Apply a partial update. Omitted arguments keep their stored value.

        The resulting keyword/mode combination is validated before it is
        written, so a failed update leaves the stored route untouched.
        """
        route = self.get_route(route_id)
        changes = {}

        if keyword is not _UNSET:
            changes["keyword"] = keyword
        if is_regex is not _UNSET:
            changes["match_mode"] = MatchMode.REGEX if is_regex else MatchMode.LITERAL
        if case_sensitive is not _UNSET:
            changes["case_sensitive"] = bool(case_sensitive)
        if is_active is not _UNSET:
            changes["is_active"] = bool(is_active)
        if fields is not _UNSET:
            changes["fields"] = list(fields or [])
        if integration_id is not _UNSET:
            self._require_integration(integration_id)
            changes["integration_id"] = integration_id

        updated = route.model_copy(update=changes)
        updated.keyword = self._check_keyword(updated.keyword, updated.is_regex)

        self.routes.update_route(updated)
        self.logger.info(f"Updated route {route_id}: {sorted(changes)}", extra={"feed_id": route.feed_id})
        return self.get_route(route_id)

    def delete_route(self, route_id: int) -> None:
        if not self.routes.delete_route(route_id):
            raise NotFoundError("keyword route", route_id)
        self.logger.info(f"Deleted route {route_id}")

    def test_rule(
        self,
        keyword: str,
        content: Union[str, Mapping[str, object]],
        is_regex: bool = False,
        case_sensitive: bool = False,
        fields: Optional[Iterable[str]] = None,
    ) -> bool:
        """See :meth:`KeywordRouter.test_rule`."""
        return self.router.test_rule(keyword, content, is_regex, case_sensitive, fields)

    def _check_keyword(self, keyword: str, is_regex: bool) -> str:
        if not isinstance(keyword, str) or not keyword:
            raise ValidationError(
                "Keyword cannot be empty",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name="keyword",
            )
        if is_regex:
            return validate_pattern(keyword)
        return validate_required_text(keyword, "keyword")

    def _require_feed(self, feed_id: str) -> None:
        if self.feeds.get_feed(feed_id) is None:
            raise NotFoundError("feed", feed_id)

    def _require_integration(self, integration_id: str) -> None:
        if self.integrations.get_integration(integration_id) is None:
            raise NotFoundError("integration", integration_id)
