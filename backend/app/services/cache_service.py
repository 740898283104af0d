# backend/app/services/cache_service.py
"""
Dedicated Cache Service for the ski school booking platform.

Centralizes caching with proper key management, invalidation patterns and a
circuit breaker around Redis. When Redis is not configured or unreachable the
service runs against an in-process dictionary with the same semantics
(TTL expiry, pattern deletion), which is also what the test suite uses.

The cache is best-effort: every failure is logged and reported as a miss.
"""

from datetime import date, datetime, time, timedelta
from enum import Enum
import fnmatch
import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import redis
from redis import Redis
from redis.exceptions import RedisError

from ..core.config import settings

logger = logging.getLogger(__name__)


T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker pattern implementation for cache resilience.

    Prevents cascading failures when cache is unavailable.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type[BaseException] = RedisError,
    ) -> None:
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds before attempting recovery
            expected_exception: Exception type to catch
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self._failure_count: int = 0
        self._last_failure_time: Optional[datetime] = None
        self._state: CircuitState = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time:
                time_since_failure = (datetime.now() - self._last_failure_time).total_seconds()
                if time_since_failure >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
            return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
        """
        Execute function with circuit breaker protection.

        Returns:
            Function result or None if circuit is open

        Raises:
            The expected exception while the circuit is still closed
        """
        if self.state == CircuitState.OPEN:
            logger.warning(f"Circuit breaker is OPEN, skipping {func.__name__}")
            return None

        try:
            result = func(*args, **kwargs)
            self._on_success()
            return result
        except self.expected_exception:
            self._on_failure()
            if self.state == CircuitState.CLOSED:
                raise
            return None

    def _on_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info("Circuit breaker recovered, closing circuit")

    def _on_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now()

            if self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker opened after {self._failure_count} failures")


class CacheKeyBuilder:
    """Standardized cache key generation."""

    # Key prefixes for different domains
    PREFIXES = {
        "availability": "avail",
        "booking": "book",
        "course": "course",
        "interval": "ival",
        "school": "school",
    }

    @staticmethod
    def build(*parts: Union[str, int, date]) -> str:
        """
        Build a cache key from parts.

        Examples:
            build('availability', 'slots', 'SG1', date(2025, 1, 10)) -> 'avail:slots:SG1:2025-01-10'
        """
        formatted_parts = []

        for part in parts:
            if isinstance(part, (date, datetime, time)):
                formatted_parts.append(part.isoformat())
            else:
                formatted_parts.append(str(part))

        if parts:
            first = parts[0]
            if isinstance(first, str) and first in CacheKeyBuilder.PREFIXES:
                formatted_parts[0] = CacheKeyBuilder.PREFIXES[first]

        return ":".join(formatted_parts)


class CacheService:
    """
    Centralized caching service.

    Features:
    - JSON serialization for Redis values
    - TTL management with tiers
    - Pattern invalidation (SCAN on Redis, fnmatch in memory)
    - Hit/miss statistics
    """

    # TTL Tiers (in seconds)
    TTL_TIERS = {
        "hot": 30,  # availability snapshots
        "warm": 3600,  # course structure
        "cold": 86400,
    }

    def __init__(self, redis_client: Optional[Redis] = None, use_redis: Optional[bool] = None):
        """
        Initialize cache service.

        Args:
            redis_client: Pre-built client; when omitted one is created from
                ``settings.redis_url`` if that is configured.
            use_redis: Force (True) or disable (False) Redis; None follows settings.
        """
        self.logger = logging.getLogger(__name__)
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=5, recovery_timeout=60, expected_exception=RedisError
        )
        self.key_builder = CacheKeyBuilder()

        # In-memory fallback
        self._memory_cache: Dict[str, Any] = {}
        self._memory_expiry: Dict[str, datetime] = {}
        self._memory_lock = threading.Lock()

        self.redis: Optional[Redis] = redis_client
        if self.redis is None and use_redis is not False:
            self._setup_redis_connection(required=bool(use_redis))

        self._stats: Dict[str, int] = self._initialize_stats()

    @classmethod
    def in_memory(cls) -> "CacheService":
        """Cache that never touches Redis."""
        return cls(use_redis=False)

    @property
    def backend(self) -> str:
        return "redis" if self.redis is not None else "memory"

    def _setup_redis_connection(self, required: bool) -> None:
        """Setup Redis connection with fallback to in-memory cache."""
        if not settings.redis_url and not required:
            self.logger.info("No REDIS_URL configured, using in-memory cache")
            return
        try:
            client = redis.from_url(
                settings.redis_url or "redis://localhost:6379",
                decode_responses=True,
                socket_keepalive=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
            self.redis = client
            self.logger.info("Connected to Redis")
        except (RedisError, ConnectionError) as e:
            self.logger.warning(f"Redis not available: {e}. Using in-memory fallback.")
            self.redis = None

    def _initialize_stats(self) -> Dict[str, int]:
        return {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "errors": 0,
        }

    # Core Cache Operations

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache with circuit breaker protection."""
        redis_client = self.redis

        def _get_from_redis() -> Optional[Any]:
            assert redis_client is not None
            value = redis_client.get(key)
            if value is not None:
                return json.loads(value)
            return None

        try:
            if redis_client is not None:
                if self.circuit_breaker.state != CircuitState.OPEN:
                    value = self.circuit_breaker.call(_get_from_redis)
                    if value is not None:
                        self._stats["hits"] += 1
                        return value
            else:
                with self._memory_lock:
                    if key in self._memory_cache:
                        expires_at = self._memory_expiry.get(key)
                        if expires_at is None or datetime.now() < expires_at:
                            self._stats["hits"] += 1
                            return self._memory_cache[key]
                        del self._memory_cache[key]
                        self._memory_expiry.pop(key, None)

            self._stats["misses"] += 1
            return None

        except Exception as e:
            self.logger.error(f"Cache get error for key {key}: {e}")
            self._stats["errors"] += 1
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None, tier: str = "warm") -> bool:
        """Set value in cache with circuit breaker protection."""
        redis_client = self.redis
        if ttl is None:
            ttl = self.TTL_TIERS.get(tier, self.TTL_TIERS["warm"])

        try:
            serialized = json.dumps(value, default=str)

            def _set_in_redis() -> bool:
                assert redis_client is not None
                redis_client.setex(key, ttl, serialized)
                return True

            if redis_client is not None:
                if self.circuit_breaker.state != CircuitState.OPEN and self.circuit_breaker.call(
                    _set_in_redis
                ):
                    self._stats["sets"] += 1
                    return True
                return False

            now = datetime.now()
            with self._memory_lock:
                self._prune_expired_memory(now)
                self._memory_cache[key] = value
                self._memory_expiry[key] = now + timedelta(seconds=ttl)
            self._stats["sets"] += 1
            return True

        except Exception as e:
            self.logger.error(f"Cache set error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    def delete(self, key: str) -> bool:
        """Delete a key from cache with circuit breaker protection."""
        redis_client = self.redis

        def _delete_from_redis() -> bool:
            assert redis_client is not None
            return bool(redis_client.delete(key))

        try:
            if redis_client is not None:
                if self.circuit_breaker.state != CircuitState.OPEN and self.circuit_breaker.call(
                    _delete_from_redis
                ):
                    self._stats["deletes"] += 1
                    return True
                return False

            with self._memory_lock:
                existed = key in self._memory_cache
                self._memory_cache.pop(key, None)
                self._memory_expiry.pop(key, None)
            if existed:
                self._stats["deletes"] += 1
            return existed

        except Exception as e:
            self.logger.error(f"Cache delete error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern; returns the number removed."""
        try:
            if self.redis is not None:
                count = self._delete_pattern_redis(pattern)
            else:
                count = self._delete_pattern_memory(pattern)

            self._stats["deletes"] += count
            self.logger.debug(f"Deleted {count} keys matching pattern: {pattern}")
            return count

        except Exception as e:
            self.logger.error(f"Cache delete pattern error: {e}")
            self._stats["errors"] += 1
            return 0

    def _delete_pattern_redis(self, pattern: str) -> int:
        """Delete pattern from Redis using SCAN."""
        count = 0
        redis_client = self.redis
        if redis_client is None:
            return 0
        for key in redis_client.scan_iter(match=pattern):
            if redis_client.delete(key):
                count += 1
        return count

    def _prune_expired_memory(self, now: datetime) -> None:
        """Drop expired entries; caller holds ``_memory_lock``."""
        expired = [k for k, expires_at in self._memory_expiry.items() if expires_at <= now]
        for key in expired:
            self._memory_cache.pop(key, None)
            self._memory_expiry.pop(key, None)

    def _delete_pattern_memory(self, pattern: str) -> int:
        with self._memory_lock:
            keys_to_delete = [k for k in self._memory_cache if fnmatch.fnmatch(k, pattern)]
            for key in keys_to_delete:
                self._memory_cache.pop(key, None)
                self._memory_expiry.pop(key, None)
        return len(keys_to_delete)

    # Batch Operations

    def mget(self, keys: List[str]) -> Dict[str, Any]:
        """Get multiple keys at once; missing keys are absent from the result."""
        result: Dict[str, Any] = {}
        redis_client = self.redis

        try:
            if redis_client is not None:
                values = redis_client.mget(keys)
                for key, value in zip(keys, values):
                    if value is not None:
                        result[key] = json.loads(value)
                        self._stats["hits"] += 1
                    else:
                        self._stats["misses"] += 1
            else:
                for key in keys:
                    value = self.get(key)
                    if value is not None:
                        result[key] = value

        except Exception as e:
            self.logger.error(f"Cache mget error: {e}")
            self._stats["errors"] += 1

        return result

    # Monitoring

    def get_stats(self) -> Dict[str, Any]:
        """Get cache performance statistics including circuit breaker state."""
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total_requests * 100) if total_requests > 0 else 0

        return {
            **self._stats,
            "backend": self.backend,
            "hit_rate": f"{hit_rate:.2f}%",
            "total_requests": total_requests,
            "circuit_breaker": {
                "state": self.circuit_breaker.state.value,
                "failure_count": self.circuit_breaker.failure_count,
                "threshold": self.circuit_breaker.failure_threshold,
            },
        }

    def reset_stats(self) -> None:
        """Reset performance statistics."""
        self._stats = self._initialize_stats()


_shared_memory_cache: Optional[CacheService] = None
_shared_memory_lock = threading.Lock()


def shared_memory_cache() -> CacheService:
    """
    Process-wide in-memory cache.

    Services built without an explicit cache all use this instance, so an
    invalidation issued by the commit path is seen by every advisory reader.
    """
    global _shared_memory_cache
    with _shared_memory_lock:
        if _shared_memory_cache is None:
            _shared_memory_cache = CacheService.in_memory()
        return _shared_memory_cache


def get_cache_service() -> CacheService:
    """
    Build a cache service for dependency injection.

    Connects to Redis when ``REDIS_URL`` is configured. Otherwise, or when the
    server cannot be reached, returns the shared in-memory cache.
    """
    if not settings.redis_url:
        return shared_memory_cache()
    cache = CacheService()
    if cache.backend == "memory":
        return shared_memory_cache()
    return cache
