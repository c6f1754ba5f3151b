"""
Recall Session Manager

Owns one RecallEngine per user with:
- Lazy engine creation
- Idle expiry via a background cleanup loop
- LRU eviction above max_users
- Shutdown that ends every open session, flushing pending work
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from recall.core.config import RecallConfig, get_config
from recall.engine import RecallEngine, create_engine
from recall.oracles.llm.base import LLMClient

logger = structlog.get_logger(__name__)

EngineFactory = Callable[[str], RecallEngine]


class SessionManager:
    """
    Registry of per-user engines.

    Engines never share state; the registry lock only guards the mapping.
    """

    def __init__(
        self,
        config: Optional[RecallConfig] = None,
        client: Optional[LLMClient] = None,
        engine_factory: Optional[EngineFactory] = None,
    ):
        self.config = config or get_config()
        self.client = client
        self.max_users = self.config.sessions.max_users
        self.idle_ttl = timedelta(minutes=self.config.sessions.idle_ttl_minutes)
        self._engine_factory = engine_factory or self._default_factory

        self._engines: dict[str, RecallEngine] = {}
        self._last_access: dict[str, datetime] = {}
        self._global_lock = asyncio.Lock()

        self._cleanup_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._initialized = False

    def _default_factory(self, user_id: str) -> RecallEngine:
        return create_engine(self.config, self.client, user_id=user_id)

    async def initialize(self) -> None:
        """Initialize the client and start the cleanup loop."""
        if self._initialized:
            return

        if self.client is not None:
            await self.client.initialize()

        self._shutdown_event.clear()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self._initialized = True
        logger.info(
            "Session manager initialized",
            max_users=self.max_users,
            idle_ttl_minutes=self.idle_ttl.total_seconds() / 60,
        )

    async def shutdown(self) -> None:
        """End every open session and release the client."""
        logger.info("Shutting down session manager")
        self._shutdown_event.set()

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        async with self._global_lock:
            engines = list(self._engines.values())
            self._engines.clear()
            self._last_access.clear()

        for engine in engines:
            await engine.shutdown()

        if self.client is not None:
            await self.client.shutdown()

        self._initialized = False
        logger.info("Session manager shutdown complete", engines=len(engines))

    async def get_engine(self, user_id: str) -> RecallEngine:
        """The user's engine, created on first use."""
        async with self._global_lock:
            engine = self._engines.get(user_id)
            if engine is None:
                engine = self._engine_factory(user_id)
                self._engines[user_id] = engine
                logger.debug("Engine created", user_id=user_id)
            self._last_access[user_id] = datetime.now()

        if len(self._engines) > self.max_users:
            await self._evict_oldest()
        return engine

    def peek(self, user_id: str) -> Optional[RecallEngine]:
        """The user's engine if it exists, without touching its access time."""
        return self._engines.get(user_id)

    async def remove(self, user_id: str) -> bool:
        async with self._global_lock:
            engine = self._engines.pop(user_id, None)
            self._last_access.pop(user_id, None)
        if engine is None:
            return False
        await engine.shutdown()
        logger.info("Engine removed", user_id=user_id)
        return True

    def active_count(self) -> int:
        return len(self._engines)

    def get_stats(self) -> dict[str, Any]:
        return {
            "engines": len(self._engines),
            "in_session": sum(1 for e in self._engines.values() if e.in_session),
            "max_users": self.max_users,
            "idle_ttl_minutes": self.idle_ttl.total_seconds() / 60,
        }

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Shut down engines idle for longer than the TTL."""
        now = now or datetime.now()
        async with self._global_lock:
            expired = [
                user_id for user_id, last_access in self._last_access.items()
                if now - last_access > self.idle_ttl
            ]
            engines = [self._engines.pop(user_id) for user_id in expired if user_id in self._engines]
            for user_id in expired:
                self._last_access.pop(user_id, None)

        for engine in engines:
            await engine.shutdown()

        if expired:
            logger.info("Expired idle engines", count=len(expired))
        return len(expired)

    async def _cleanup_loop(self) -> None:
        """Background loop to expire idle engines."""
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.config.sessions.cleanup_interval_seconds)
                await self.cleanup_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Session cleanup error", error=str(e))

    async def _evict_oldest(self) -> None:
        """Evict least recently used engines to stay under max_users."""
        async with self._global_lock:
            overflow = len(self._engines) - self.max_users
            if overflow <= 0:
                return
            oldest = sorted(self._last_access, key=lambda u: self._last_access[u])[:overflow]
            engines = [self._engines.pop(user_id) for user_id in oldest if user_id in self._engines]
            for user_id in oldest:
                self._last_access.pop(user_id, None)

        for engine in engines:
            await engine.shutdown()
        logger.info("Evicted engines", count=len(engines))
