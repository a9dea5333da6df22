from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from todoauth.config import get_settings, reset_settings_cache
from todoauth.logging import get_logger
from todoauth.service.auth import AuthService
from todoauth.service.signer import KeyRing
from todoauth.service.tokens import TokenService
from todoauth.storage.memory import MemoryRegistry, MemoryStore
from todoauth.storage.postgres import PostgresStore
from todoauth.storage.redis_registry import RedisRegistry

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        # malformed key material is fatal here, before any request is served
        self.keys = KeyRing.from_settings(self.settings)

        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info(
                "runtime_store_initialized",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                database_url=_mask_url_password(
                    None if self.settings.use_memory_store else self.settings.database_url
                ),
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.registry = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                registry = RedisRegistry(
                    self.settings.redis_url,
                    operation_timeout=self.settings.registry_operation_timeout,
                )
                registry.verify_connection()
                self.registry = registry
            except Exception as exc:
                redis_error = exc

        if self.registry is None:
            if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for the credential registry; start Redis or set "
                    "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error
            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=(
                    f"Running without Redis under {fallback_mode}; issued credentials "
                    "live in process memory only."
                ),
                mode=fallback_mode,
            )
            self.registry = MemoryRegistry()

        self.tokens = TokenService(self.settings, self.keys, self.registry, self.store)
        self.auth = AuthService(self.store, self.tokens, self.settings)

        logger.info(
            "runtime_initialized",
            environment=self.settings.environment.value,
            redis_enabled=isinstance(self.registry, RedisRegistry),
        )

    async def close(self) -> None:
        await self.registry.close()
        if isinstance(self.store, PostgresStore):
            await asyncio.to_thread(self.store.close)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking: a lock-free fast path for an existing
    runtime, then a second check under the lock before creating one.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""

    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
