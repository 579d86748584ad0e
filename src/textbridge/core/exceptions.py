"""
Exception types shared by the intake paths, the pipeline and the reconciler.

Duplicate deliveries and senders blocked by the access policy are normal
outcomes of the pipeline, not errors; see ``PipelineOutcome``.
"""


class BridgeError(Exception):
    """Base exception class for all bridge errors."""
    pass


class ConfigurationError(BridgeError):
    """Raised when configuration is invalid or missing."""
    pass


class PayloadValidationError(BridgeError):
    """Raised when an inbound payload is malformed or incomplete."""
    pass


class AuthError(BridgeError):
    """Raised when the webhook shared secret is missing or wrong."""
    pass


class RateLimitExceeded(BridgeError):
    """Raised when a client exceeds its request window."""

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class TransientProviderError(BridgeError):
    """Raised when a provider call fails (network error or error status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(BridgeError):
    """Raised when the persistent store is unavailable."""
    pass


class BackendError(BridgeError):
    """Raised when the conversational backend fails to produce a reply."""
    pass
