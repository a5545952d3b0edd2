"""
Key-Value Store Exceptions

Domain-specific exceptions raised by the store client. Every raw driver
error is translated into one of these at the client boundary, so callers
only need to know a single hierarchy to apply their fail-open policy.
"""

from typing import Any, Dict, Optional


class StoreException(Exception):
    """Base exception for key-value store errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or "STORE_ERROR"
        self.details = details or {}
        super().__init__(self.message)


class StoreConnectionException(StoreException):
    """Raised when the store is unreachable or the connection was lost."""

    def __init__(
        self,
        message: str = "Key-value store connection failed",
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="STORE_CONNECTION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class StoreOperationTimeoutException(StoreException):
    """Raised when a store call exceeds its network-level timeout."""

    def __init__(
        self, operation: str, timeout_seconds: float, key: Optional[str] = None
    ):
        details = {"operation": operation, "timeout_seconds": timeout_seconds}
        if key:
            details["key"] = key

        super().__init__(
            message=f"Store operation '{operation}' timed out after {timeout_seconds}s",
            error_code="STORE_TIMEOUT_ERROR",
            details=details,
        )


class StoreCircuitBreakerOpenException(StoreException):
    """Raised when the circuit breaker rejects a call without trying it."""

    def __init__(
        self, message: str = "Store circuit breaker is open - service unavailable"
    ):
        super().__init__(
            message=message,
            error_code="STORE_CIRCUIT_BREAKER_OPEN",
            details={"service_status": "unavailable"},
        )


class StoreConfigurationException(StoreException):
    """Raised when the store client configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="STORE_CONFIGURATION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class StoreDecodeException(StoreException):
    """Raised when a stored value cannot be decoded as UTF-8 text."""

    def __init__(
        self,
        operation: str,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"operation": operation}
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message=f"Store operation '{operation}' returned undecodable data",
            error_code="STORE_DECODE_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error
