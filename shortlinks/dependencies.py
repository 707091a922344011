"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject the database session, the
shared link cache and the analytics capture into every endpoint, using a
singleton for shared resources to minimize per-request overhead.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.aggregator import AnalyticsAggregator
from shortlinks.analytics import AnalyticsCapture, client_ip_from_headers
from shortlinks.cache import LinkCache, build_link_cache
from shortlinks.config import Settings, get_settings
from shortlinks.database import async_session, get_db
from shortlinks.resolver import LinkResolver
from shortlinks.store import LinkStore

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_resolver",
    "get_aggregator",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Holds everything that outlives a request: settings, the application
    logger, the link cache and the detached analytics capture.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(
        self,
        settings: Settings | None = None,
        cache: LinkCache | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            self.settings = settings or get_settings()
            self.logger = self._setup_logger()
            self.cache = cache or build_link_cache(self.settings)
            self.capture = AnalyticsCapture(session_factory or async_session, self.cache, self.logger)
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortlinks")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def cleanup(self) -> None:
        """Drain pending captures and release shared resources at shutdown."""
        if not self._initialized:
            return
        await self.capture.drain(timeout=self.settings.CAPTURE_DRAIN_TIMEOUT_SECONDS)
        await self.cache.close()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Request context with tracking and shared resource access.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        referrer: Referer header as sent by the client
        client_ip: Client address from forwarding headers, if any
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def cache(self) -> LinkCache:
        return self.service_manager.cache

    @property
    def capture(self) -> AnalyticsCapture:
        return self.service_manager.capture

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        """Add a tag to the request context."""
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
        client_ip=client_ip_from_headers(request.headers),
    )


def get_resolver(ctx: RequestContext = Depends(get_request_context)) -> LinkResolver:
    return LinkResolver.from_context(ctx)


def get_aggregator(ctx: RequestContext = Depends(get_request_context)) -> AnalyticsAggregator:
    return AnalyticsAggregator(LinkStore(ctx.database), settings=ctx.settings, logger=ctx.logger)
