"""
Circuit breaker implementation using pybreaker library.
State lives in Redis when redis_url is configured (shared between API workers
and Celery), otherwise in process memory.
"""
import logging
import redis
import pybreaker

from app.core.config import settings
from app.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


def _redis_storage(name: str) -> pybreaker.CircuitRedisStorage:
    # pybreaker stores raw bytes: the client must not decode responses
    client = redis.Redis.from_url(settings.redis_url)
    return pybreaker.CircuitRedisStorage(
        pybreaker.STATE_CLOSED,
        client,
        namespace=f"cb:{name}",
    )


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        old_name = getattr(old_state, "name", old_state)
        new_name = getattr(new_state, "name", new_state)
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": old_name,
                "new_state": new_name,
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(name: str) -> pybreaker.CircuitBreaker:
    """Get or create a circuit breaker by name."""
    if name not in _breakers:
        kwargs = {}
        if settings.redis_url:
            kwargs["state_storage"] = _redis_storage(name)
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            listeners=[CircuitBreakerListener(name)],
            name=name,
            **kwargs,
        )
    return _breakers[name]
