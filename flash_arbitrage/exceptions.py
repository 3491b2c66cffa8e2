"""
Exception hierarchy for the flash-loan arbitrage engine.

Every error carries a stable classification so the supervisor can decide
between skipping, counting toward a restart, or stopping the engine, and a
machine-readable code the host can show without parsing messages.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorClass(str, Enum):
    """How the engine reacts to an error."""

    EXPECTED = "expected"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


class FlashArbitrageError(Exception):
    """Base exception for all flash arbitrage related errors."""

    classification = ErrorClass.RECOVERABLE
    code = "engine_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Host-facing summary of the error."""
        return {
            "classification": self.classification.value,
            "code": self.code,
            "message": self.message,
        }


class ConfigurationError(FlashArbitrageError):
    """Raised when configuration is missing or invalid."""

    classification = ErrorClass.FATAL
    code = "configuration_error"


class ValidationError(FlashArbitrageError):
    """Raised when input data fails validation."""

    classification = ErrorClass.EXPECTED
    code = "validation_error"


class InvalidPairError(ValidationError):
    """Raised when a pair or quote path uses the same token on both sides."""

    code = "invalid_pair"

    def __init__(
        self,
        message: str,
        token_a: Optional[str] = None,
        token_b: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.token_a = token_a
        self.token_b = token_b


class NetworkError(FlashArbitrageError):
    """Raised when an RPC endpoint or external service cannot be reached."""

    code = "network_error"

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        timeout: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code
        self.timeout = timeout


class QuoteError(FlashArbitrageError):
    """Raised when an exchange router cannot quote a path."""

    code = "quote_error"

    def __init__(
        self,
        message: str,
        exchange: Optional[str] = None,
        path: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.exchange = exchange
        self.path = path or []


class ExecutionError(FlashArbitrageError):
    """Raised when an arbitrage transaction fails to submit or confirm."""

    code = "execution_error"

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        retryable: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.tx_hash = tx_hash
        self.retryable = retryable

    @property
    def classification(self) -> ErrorClass:  # type: ignore[override]
        return ErrorClass.RECOVERABLE if self.retryable else ErrorClass.FATAL


class HealthCheckError(FlashArbitrageError):
    """Raised when the startup health battery fails."""

    classification = ErrorClass.FATAL
    code = "health_check_failed"

    def __init__(
        self,
        message: str,
        failed_checks: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.failed_checks = failed_checks or []


class OwnershipError(FlashArbitrageError):
    """Raised when the arbitrage contract is not owned by the configured wallet."""

    classification = ErrorClass.FATAL
    code = "ownership_mismatch"

    def __init__(
        self,
        message: str,
        owner: Optional[str] = None,
        wallet: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.owner = owner
        self.wallet = wallet


def classify(error: BaseException) -> ErrorClass:
    """Classify any exception; unknown errors count as recoverable."""
    if isinstance(error, FlashArbitrageError):
        return error.classification
    return ErrorClass.RECOVERABLE


def describe(error: BaseException) -> Dict[str, Any]:
    """Summarize any exception in the host-facing shape."""
    if isinstance(error, FlashArbitrageError):
        return error.to_dict()
    return {
        "classification": ErrorClass.RECOVERABLE.value,
        "code": type(error).__name__,
        "message": str(error),
    }
