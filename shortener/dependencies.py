"""Dependency injection with a singleton service manager.

This module owns the process-wide resources (Redis client, durable store,
node registry, click dispatcher, coordinator) and exposes them to the routes
through FastAPI dependencies, plus a lightweight per-request context used
for structured logging.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from shortener.cache import FastStore
from shortener.clicks import ClickDispatcher
from shortener.config import Settings, get_settings
from shortener.database import async_session
from shortener.registry import get_registry
from shortener.service import CacheAsideCoordinator
from shortener.store import DurableStore
from shortener.validation import URLValidator


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Everything here is created once at startup and shared by all requests;
    nothing in it holds per-request state.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup.

        Raises:
            InvalidNodeID: NODE_ID is out of range; the process must not start.
        """
        if self._initialized:
            return

        self.settings = get_settings()
        self.logger = self._setup_logger()
        self.registry = get_registry()
        # fail fast on a bad NODE_ID instead of on the first shorten request
        self.registry.get_generator(self.settings.NODE_ID)

        self.store = DurableStore(async_session)
        self.cache = await self._setup_cache()
        self.validator = URLValidator(
            blocked_domains=self.settings.BLOCKED_DOMAINS,
            max_length=self.settings.MAX_URL_LENGTH,
        )
        self.coordinator = CacheAsideCoordinator(
            self.store,
            self.cache,
            self.validator,
            self.registry,
            self.settings,
            logger=self.logger,
        )
        self.dispatcher = ClickDispatcher(
            self.coordinator.increment_clicks,
            queue_size=self.settings.CLICK_QUEUE_SIZE,
            worker_count=self.settings.CLICK_WORKER_COUNT,
        )
        self.coordinator.attach_dispatcher(self.dispatcher)
        await self.dispatcher.start()

        self._initialized = True
        self.logger.info(f"Service manager initialized (node_id={self.settings.NODE_ID}, cache={self.cache is not None})")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def _setup_cache(self) -> Optional[FastStore]:
        """Setup the Redis fast store once; None runs the service in database-only mode."""
        if not self.settings.CACHE_ENABLED:
            self.logger.warning("Cache disabled, running in database-only mode")
            return None
        client = redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        return FastStore(client, timeout=self.settings.CACHE_OP_TIMEOUT_SECONDS)

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.dispatcher.stop()
        if self.cache is not None:
            await self.cache.close()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking information with access to shared resources.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        referer: Referer header of the request
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)

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
            },
        )

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
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
        client_ip=request.client.host if request.client else None,
    )


def get_coordinator(manager: ServiceManager = Depends(get_service_manager)) -> CacheAsideCoordinator:
    return manager.coordinator
