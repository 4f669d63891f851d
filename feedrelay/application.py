"""
FeedRelay Application Wiring
============================

Builds the object graph shared by the CLI and long-running service:
database, repositories, dispatcher, stats, scheduler and services.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config.settings import FeedRelaySettings, get_settings
from .database.connection import DatabaseConnection
from .database.schema import DatabaseSchema
from .delivery.channels import create_adapter
from .delivery.dispatcher import NotificationDispatcher, AdapterFactory
from .ingestion.feed_fetcher import FeedFetcher
from .routing.route_service import KeywordRouteService
from .scheduler.events import EventPublisher
from .scheduler.feed_scheduler import FeedScheduler
from .services.feed_service import FeedService
from .services.integration_service import IntegrationService
from .stats.recorder import StatsRecorder
from .storage.feed_repository import FeedRepository
from .storage.integration_repository import IntegrationRepository
from .storage.keyword_route_repository import KeywordRouteRepository
from .storage.stats_repository import StatsRepository
from .utils.logging import get_logger_for_component


@dataclass
class Application:
    """Fully wired FeedRelay components."""

    settings: FeedRelaySettings
    db: DatabaseConnection
    feed_repository: FeedRepository
    integration_repository: IntegrationRepository
    route_repository: KeywordRouteRepository
    stats_repository: StatsRepository
    dispatcher: NotificationDispatcher
    stats: StatsRecorder
    scheduler: FeedScheduler
    feed_service: FeedService
    integration_service: IntegrationService
    route_service: KeywordRouteService

    @classmethod
    def build(
        cls,
        settings: Optional[FeedRelaySettings] = None,
        db: Optional[DatabaseConnection] = None,
        fetcher: Optional[FeedFetcher] = None,
        adapter_factory: AdapterFactory = create_adapter,
        events: Optional[EventPublisher] = None,
    ) -> "Application":
        """Create the schema if needed and wire every component.

        Args:
            settings: Defaults to the process-wide settings
            db: Existing connection manager, created from settings if omitted
            fetcher: Feed fetcher override
            adapter_factory: Channel adapter factory override
            events: Presentation event sink
        """
        settings = settings or get_settings()
        if db is None:
            Path(settings.database.path).parent.mkdir(parents=True, exist_ok=True)
            DatabaseSchema(settings.database.path).create_tables()
            db = DatabaseConnection(settings.database.path, settings.database.pool_size)

        feed_repository = FeedRepository(db)
        integration_repository = IntegrationRepository(db)
        route_repository = KeywordRouteRepository(db)
        stats_repository = StatsRepository(db)

        dispatcher = NotificationDispatcher(
            integration_repository.get_integration,
            settings=settings.delivery,
            adapter_factory=adapter_factory,
        )
        stats = StatsRecorder(stats_repository)
        scheduler = FeedScheduler(
            feed_repository,
            route_repository,
            dispatcher,
            stats,
            fetcher=fetcher,
            events=events,
            settings=settings,
        )

        return cls(
            settings=settings,
            db=db,
            feed_repository=feed_repository,
            integration_repository=integration_repository,
            route_repository=route_repository,
            stats_repository=stats_repository,
            dispatcher=dispatcher,
            stats=stats,
            scheduler=scheduler,
            feed_service=FeedService(
                feed_repository, scheduler, integration_repository, settings=settings
            ),
            integration_service=IntegrationService(
                integration_repository, feed_repository, dispatcher=dispatcher, scheduler=scheduler
            ),
            route_service=KeywordRouteService(
                route_repository, feed_repository, integration_repository, router=scheduler.router
            ),
        )

    async def start(self) -> int:
        return await self.scheduler.start()

    async def shutdown(self, drain: bool = True) -> None:
        """Stop scanning, optionally let queued notifications go out, then close."""
        logger = get_logger_for_component("application")
        await self.scheduler.stop()
        if drain:
            pending = self.dispatcher.totals()["pending"]
            if pending:
                logger.info(f"Draining {pending} queued notifications")
            await self.dispatcher.wait_idle()
        await self.dispatcher.close()
        logger.info("FeedRelay shut down")
