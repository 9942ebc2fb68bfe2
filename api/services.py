"""
Service initialization and dependency injection for the intent engine API.

Creates and manages the service instances used by the API.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import get_settings, Settings
from intent_tracking.action_notifier import LoggingActionNotifier, WebhookActionNotifier
from intent_tracking.db_intent_repository import DbIntentRepository
from intent_tracking.intent_repository import InMemoryIntentRepository, IntentRepository
from intent_tracking.intent_store import ConversationIntentStore
from intent_tracking.taxonomy import IntentConfig

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.intent_config: Optional[IntentConfig] = None
        self.repository: Optional[IntentRepository] = None
        self.intent_store: Optional[ConversationIntentStore] = None
        self._initialized = False

    def initialize(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """
        Initialize all services.

        Configuration errors propagate: a bad taxonomy must stop startup.
        """
        if self._initialized:
            return

        self.settings = get_settings()
        self.intent_config = self.settings.build_intent_config()
        logger.info(
            f"Intent config: {len(self.intent_config.taxonomy())} kinds, "
            f"decay={self.intent_config.decay_rate_per_hour:.3f}/h, "
            f"history={self.intent_config.history_capacity}"
        )

        if session_factory is not None:
            self.repository = DbIntentRepository(session_factory)
            logger.info("Intent repository: database")
        else:
            self.repository = InMemoryIntentRepository()
            logger.warning("DATABASE_URL not set, intent records are kept in memory only")

        notifiers = [LoggingActionNotifier()]
        if self.settings.action_webhook_url:
            notifiers.append(WebhookActionNotifier(
                webhook_url=self.settings.action_webhook_url,
                api_key=self.settings.action_webhook_api_key,
                timeout=self.settings.action_webhook_timeout,
            ))
            logger.info("Action webhook notifier enabled")

        self.intent_store = ConversationIntentStore(
            config=self.intent_config,
            repository=self.repository,
            notifiers=notifiers,
            persistence_timeout=self.settings.persistence_timeout_seconds,
            cache_enabled=self.settings.intent_cache_enabled,
        )
        self._initialized = True
        logger.info("All services initialized successfully")

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.intent_store is not None

    def health(self) -> dict:
        """Report service health."""
        return {
            "intent_store": self.intent_store is not None,
            "repository": type(self.repository).__name__ if self.repository else None,
            "needs_reconciliation": sorted(self.intent_store.needs_reconciliation)
            if self.intent_store else [],
        }

    def reset(self):
        """Drop all service instances (used by tests)."""
        self.__init__()


_services = Services()


def get_services() -> Services:
    """Get the global services container."""
    return _services


def initialize_services(session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
    """Initialize global services."""
    _services.initialize(session_factory)


def get_intent_store() -> ConversationIntentStore:
    """FastAPI dependency for the intent store."""
    services = get_services()
    if not services.is_ready:
        services.initialize()
    return services.intent_store
