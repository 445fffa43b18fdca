"""Dependency injection with a singleton service manager.

This module owns the process-wide resources (Redis clients, the shortener
service and its collaborators) and builds a lightweight per-request context
for logging and tracing.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from shortener.allocator import CounterAllocator
from shortener.cache import ResolutionCache
from shortener.config import Settings, get_settings
from shortener.database import async_session
from shortener.service import ShortenerService
from shortener.store import MappingStore


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Resources are created once in initialize() at startup and released in
    cleanup() at shutdown. Nothing reconnects lazily per request; an
    unreachable backend shows up as a typed error from the component that
    uses it.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        self.settings = get_settings()
        self.logger = self._setup_logger(self.settings)
        self.cache_client = self._setup_redis(self.settings.REDIS_URL)
        if self.settings.counter_redis_url == self.settings.REDIS_URL:
            self.counter_client = self.cache_client
        else:
            self.counter_client = self._setup_redis(self.settings.counter_redis_url)

        self.service = ShortenerService(
            allocator=CounterAllocator(self.counter_client, self.settings.COUNTER_KEY),
            store=MappingStore(async_session),
            cache=ResolutionCache(
                self.cache_client,
                ttl_seconds=self.settings.CACHE_TTL_SECONDS,
                key_prefix=self.settings.CACHE_KEY_PREFIX,
            ),
            settings=self.settings,
        )
        self._initialized = True
        self.logger.info("Service manager initialized")

    def _setup_logger(self, settings: Settings) -> logging.Logger:
        """Setup the package logger once."""
        logger = logging.getLogger("shortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(settings.LOG_LEVEL.upper())
        return logger

    def _setup_redis(self, url: str) -> redis.Redis:
        return redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=self.settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=self.settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.service.aclose()
        if self.counter_client is not self.cache_client:
            await self.counter_client.aclose()
        await self.cache_client.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking context.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)

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

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

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
    client_ip = request.client.host if request.client else None
    return RequestContext(
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
    )


def get_shortener_service(manager: ServiceManager = Depends(get_service_manager)) -> ShortenerService:
    return manager.service
