"""Service container for dependency injection."""

import logging
import threading
from typing import Any, Dict

from flask import current_app

logger = logging.getLogger(__name__)

EXTENSION_KEY = "feedsync_container"

class ServiceContainer:
    """Container for application services.

    Services are created lazily on first use from the ``_init_<name>``
    methods and shared by every thread of the application.
    """

    def __init__(self, app=None):
        """Initialize the service container."""
        self.app = app
        self._services: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def register(self, name: str, service: Any) -> None:
        """Register a service in the container.

        Args:
            name: Name of the service
            service: The service instance
        """
        self._services[name] = service

    def get(self, name: str) -> Any:
        """Get a service from the container by name.

        Args:
            name: Name of the service

        Returns:
            The service instance

        Raises:
            KeyError: if no such service exists
        """
        with self._lock:
            if name in self._services:
                return self._services[name]

            init_method = getattr(self, f"_init_{name}", None)
            if init_method is None:
                raise KeyError(f"Unknown service: {name}")

            try:
                service = init_method()
            except Exception as e:
                logger.error(f"Error creating service {name}: {str(e)}")
                raise

            self._services[name] = service
            return service

    @property
    def config(self):
        return self.app.config

    def _init_setting_repository(self):
        """Initialize the setting repository."""
        from feedsync.models.setting_repository import SqlAlchemySettingRepository
        from feedsync.extensions import db
        return SqlAlchemySettingRepository(db)

    def _init_item_repository(self):
        """Initialize the item repository."""
        from feedsync.models.item_repository import SqlAlchemyItemRepository
        from feedsync.extensions import db
        return SqlAlchemyItemRepository(db)

    def _init_sync_status_repository(self):
        """Initialize the sync status repository."""
        from feedsync.models.sync_status_repository import SqlAlchemySyncStatusRepository
        from feedsync.extensions import db
        return SqlAlchemySyncStatusRepository(db)

    def _init_credential_provider(self):
        from feedsync.clients.credentials import SettingCredentialProvider
        return SettingCredentialProvider(self.get('setting_repository'), self.config)

    def _init_upstream_client(self):
        """Initialize the upstream API client."""
        from feedsync.clients.inoreader_client import InoreaderClient
        return InoreaderClient(
            self.get('credential_provider'),
            self.config['UPSTREAM_API_URL'],
            timeout=self.config.get('UPSTREAM_TIMEOUT_SECONDS', 15)
        )

    def _init_rate_limiter(self):
        from feedsync.services.rate_limiter import RateLimiter
        return RateLimiter.from_config(self.config)

    def _init_change_queue(self):
        from feedsync.services.change_queue import ChangeQueue
        return ChangeQueue.from_config(self.config)

    def _init_progress_tracker(self):
        """Initialize the dual-store progress tracker."""
        from feedsync.services.progress_tracker import ProgressTracker
        return ProgressTracker(
            self.get('sync_status_repository'),
            retention_hours=self.config.get('SYNC_STATUS_RETENTION_HOURS', 24),
            grace_seconds=self.config.get('SYNC_STATUS_GRACE_SECONDS', 60)
        )

    def _init_pull_sync(self):
        """Initialize the Pull Sync service."""
        from feedsync.services.pull_sync import PullSync
        return PullSync(
            self.get('upstream_client'),
            self.get('item_repository'),
            self.get('setting_repository'),
            self.get('change_queue'),
            self.get('rate_limiter'),
            page_size=self.config.get('SYNC_PAGE_SIZE', 100),
            max_articles=self.config.get('SYNC_MAX_ARTICLES', 500),
            full_sync_interval_days=self.config.get('FULL_SYNC_INTERVAL_DAYS', 7),
            exclude_read=self.config.get('PULL_EXCLUDE_READ', True)
        )

    def _init_push_sync(self):
        """Initialize the Push Sync service."""
        from feedsync.services.push_sync import PushSync
        return PushSync(
            self.get('upstream_client'),
            self.get('change_queue'),
            self.get('rate_limiter'),
            batch_size=self.config.get('SYNC_BATCH_SIZE', 100),
            time_budget_seconds=self.config.get('PUSH_TIME_BUDGET_SECONDS', 30),
            stale_claim_seconds=self.config.get('SYNC_STALE_RUN_MINUTES', 30) * 60
        )

    def _init_sync_orchestrator(self):
        """Initialize the Sync Orchestrator."""
        from feedsync.services.sync_orchestrator import SyncOrchestrator
        from feedsync.tasks.executor import get_executor
        return SyncOrchestrator(
            self.app,
            self.get('pull_sync'),
            self.get('push_sync'),
            self.get('progress_tracker'),
            get_executor(self.config.get('TASK_WORKERS', 2)),
            change_queue=self.get('change_queue'),
            trigger_policy=self.config.get('SYNC_TRIGGER_POLICY', 'coalesce'),
            stage_order=self.config.get('SYNC_STAGE_ORDER', 'pull_first'),
            stale_run_minutes=self.config.get('SYNC_STALE_RUN_MINUTES', 30)
        )

    def _init_item_service(self):
        """Initialize the item service."""
        from feedsync.services.item_service import ItemService
        return ItemService(
            self.get('item_repository'),
            self.get('change_queue'),
            orchestrator=self.get('sync_orchestrator')
        )

def init_container(app):
    """Attach a fresh container to the application."""
    app.extensions[EXTENSION_KEY] = ServiceContainer(app)
    return app.extensions[EXTENSION_KEY]

def container():
    """Get the service container of the current application.

    Returns:
        ServiceContainer: The service container instance
    """
    return current_app.extensions[EXTENSION_KEY]
