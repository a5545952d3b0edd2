"""
Key-Value Store Client

Thin async client over redis-py used by the cache service and the rate
limiter. One instance is constructed by the process entry point, connected
in the application lifespan and shared by every request handler.

Every call:
- carries its own network-level timeout,
- runs through a circuit breaker,
- raises only StoreException subclasses (driver errors are translated).
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from redis.asyncio import Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from ...core.config import Settings
from .circuit_breaker import CircuitBreakerConfig, StoreCircuitBreaker
from .exceptions import (
    StoreConfigurationException,
    StoreConnectionException,
    StoreDecodeException,
    StoreException,
    StoreOperationTimeoutException,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StoreConfig:
    """Configuration for the key-value store client."""

    url: str = "redis://localhost:6379"
    password: Optional[str] = None
    max_connections: int = 10
    connection_timeout: float = 5.0
    operation_timeout: float = 2.0
    scan_timeout: float = 10.0
    scan_batch_size: int = 200
    health_check_interval: int = 30
    failure_threshold: int = 5
    recovery_timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "StoreConfig":
        """Build store configuration from application settings."""
        return cls(
            url=settings.REDIS_URL,
            password=settings.REDIS_PASSWORD,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            connection_timeout=settings.REDIS_CONNECTION_TIMEOUT,
            operation_timeout=settings.REDIS_OPERATION_TIMEOUT,
            failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            recovery_timeout=settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT,
        )


class KeyValueStore:
    """
    Shared key-value store connection.

    Construct once, ``await connect()`` at startup and ``await close()`` at
    shutdown. A store that cannot be reached at startup is logged and left
    in place; subsequent calls raise StoreConnectionException until the
    server comes back, and callers fail open.
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        client: Optional[Redis] = None,
        circuit_breaker: Optional[StoreCircuitBreaker] = None,
    ):
        self.config = config or StoreConfig()
        self._client = client
        self._owns_client = client is None
        self._circuit_breaker = circuit_breaker or StoreCircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=self.config.failure_threshold,
                recovery_timeout=self.config.recovery_timeout,
                failure_exceptions=(
                    RedisConnectionError,
                    RedisTimeoutError,
                    asyncio.TimeoutError,
                    ConnectionError,
                    OSError,
                ),
            )
        )
        self._connected = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyValueStore":
        """Create an unconnected store from application settings."""
        return cls(StoreConfig.from_settings(settings))

    @property
    def is_connected(self) -> bool:
        """Whether the last connect attempt reached the server."""
        return self._connected

    @property
    def circuit_breaker(self) -> StoreCircuitBreaker:
        return self._circuit_breaker

    async def connect(self) -> bool:
        """
        Create the client (unless one was injected) and ping the server.

        Returns:
            True if the server answered, False if it is unreachable
        """
        async with self._lock:
            if self._client is None:
                self._client = self._create_client()
                self._instrument()

            try:
                await self.ping()
                self._connected = True
                logger.info("Key-value store connected")
            except StoreException as e:
                self._connected = False
                logger.warning(
                    f"Key-value store unreachable at startup, continuing degraded: {e.message}",
                    extra={"error_code": e.error_code},
                )

            return self._connected

    def _create_client(self) -> Redis:
        connection_kwargs: Dict[str, Any] = {
            "encoding": "utf-8",
            "decode_responses": True,
            "max_connections": self.config.max_connections,
            "socket_connect_timeout": self.config.connection_timeout,
            "socket_timeout": self.config.operation_timeout,
            "health_check_interval": self.config.health_check_interval,
        }
        if self.config.password:
            connection_kwargs["password"] = self.config.password

        try:
            return Redis.from_url(self.config.url, **connection_kwargs)
        except ValueError as e:
            raise StoreConfigurationException(
                message=f"Invalid key-value store URL: {e}",
                config_key="REDIS_URL",
                original_error=e,
            )

    def _instrument(self) -> None:
        try:
            from opentelemetry.instrumentation.redis import RedisInstrumentor

            instrumentor = RedisInstrumentor()
            if not instrumentor.is_instrumented_by_opentelemetry:
                instrumentor.instrument()
        except Exception as e:
            logger.warning(f"Failed to enable Redis OpenTelemetry instrumentation: {e}")

    async def close(self) -> None:
        """Close the client if this store created it."""
        async with self._lock:
            if self._client is not None and self._owns_client:
                try:
                    await self._client.aclose()
                except RedisError as e:
                    logger.warning(f"Error while closing key-value store client: {e}")
                self._client = None
            self._connected = False
            logger.info("Key-value store closed")

    async def _execute(
        self,
        operation: str,
        func: Callable[[Redis], Awaitable[T]],
        key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> T:
        """Run one store call with timeout, circuit breaker and error translation."""
        client = self._client
        if client is None:
            raise StoreConnectionException(
                message="Key-value store is not connected", operation=operation
            )

        timeout = timeout or self.config.operation_timeout

        async def _call() -> T:
            return await asyncio.wait_for(func(client), timeout=timeout)

        try:
            return await self._circuit_breaker.call(_call)
        except StoreException:
            raise
        except (asyncio.TimeoutError, RedisTimeoutError) as e:
            raise StoreOperationTimeoutException(operation, timeout, key) from e
        except (RedisConnectionError, ConnectionError, OSError) as e:
            raise StoreConnectionException(
                message=f"Key-value store connection failed during {operation}",
                operation=operation,
                original_error=e,
            ) from e
        except UnicodeDecodeError as e:
            raise StoreDecodeException(operation, key, e) from e
        except RedisError as e:
            raise StoreException(
                message=f"Store operation '{operation}' failed: {e}",
                error_code="STORE_OPERATION_ERROR",
                details={"operation": operation, "key": key},
            ) from e

    async def ping(self) -> bool:
        return bool(await self._execute("ping", lambda c: c.ping()))

    async def get(self, key: str) -> Optional[str]:
        """Return the raw string at ``key`` or None if the key does not exist."""
        return await self._execute("get", lambda c: c.get(key), key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """Store ``value``; with ``ttl_seconds`` the key expires, otherwise it persists."""
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        if ttl_seconds:
            result = await self._execute(
                "set", lambda c: c.set(key, value, ex=ttl_seconds), key
            )
        else:
            result = await self._execute("set", lambda c: c.set(key, value), key)
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._execute("delete", lambda c: c.delete(*keys), keys[0])

    async def unlink(self, *keys: str) -> int:
        """Non-blocking delete of many keys in one round trip."""
        if not keys:
            return 0
        return await self._execute("unlink", lambda c: c.unlink(*keys), keys[0])

    async def exists(self, key: str) -> bool:
        return bool(await self._execute("exists", lambda c: c.exists(key), key))

    async def incr(self, key: str) -> int:
        return int(await self._execute("incr", lambda c: c.incr(key), key))

    async def decr(self, key: str) -> int:
        return int(await self._execute("decr", lambda c: c.decr(key), key))

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(
            await self._execute("expire", lambda c: c.expire(key, seconds), key)
        )

    async def ttl(self, key: str) -> int:
        """Seconds to live; -1 if the key has no expiry, -2 if it does not exist."""
        return int(await self._execute("ttl", lambda c: c.ttl(key), key))

    async def eval(self, script: str, numkeys: int, *args: Any) -> Any:
        return await self._execute(
            "eval",
            lambda c: c.eval(script, numkeys, *args),
            str(args[0]) if numkeys and args else None,
        )

    async def scan(self, pattern: str) -> List[str]:
        """Collect every key matching a glob pattern using cursor-based SCAN."""

        async def _scan(client: Redis) -> List[str]:
            keys: List[str] = []
            async for key in client.scan_iter(
                match=pattern, count=self.config.scan_batch_size
            ):
                keys.append(key)
            return keys

        return await self._execute(
            "scan", _scan, pattern, timeout=self.config.scan_timeout
        )

    async def health_check(self) -> Dict[str, Any]:
        """Ping the store and report latency and circuit breaker state."""
        start_time = time.perf_counter()
        try:
            await self.ping()
            latency_ms = (time.perf_counter() - start_time) * 1000
            status = "healthy"
            error = None
        except StoreException as e:
            latency_ms = None
            status = "unhealthy"
            error = e.message

        health = {
            "status": status,
            "service": "redis",
            "timestamp": time.time(),
            "latency_ms": round(latency_ms, 2) if latency_ms is not None else None,
            "circuit_breaker": self._circuit_breaker.get_status(),
        }
        if error:
            health["error"] = error
        return health

    async def __aenter__(self) -> "KeyValueStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
