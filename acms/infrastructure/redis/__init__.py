"""
Key-Value Store Infrastructure

Redis-backed store client with explicit lifecycle, per-call timeouts,
circuit breaker protection and a single exception hierarchy.
"""

from .store import KeyValueStore, StoreConfig
from .circuit_breaker import (
    StoreCircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerMetrics,
    CircuitState,
)
from .exceptions import (
    StoreException,
    StoreConnectionException,
    StoreOperationTimeoutException,
    StoreCircuitBreakerOpenException,
    StoreConfigurationException,
    StoreDecodeException,
)

__all__ = [
    # Client
    "KeyValueStore",
    "StoreConfig",
    # Circuit breaker
    "StoreCircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerMetrics",
    "CircuitState",
    # Exceptions
    "StoreException",
    "StoreConnectionException",
    "StoreOperationTimeoutException",
    "StoreCircuitBreakerOpenException",
    "StoreConfigurationException",
    "StoreDecodeException",
]
