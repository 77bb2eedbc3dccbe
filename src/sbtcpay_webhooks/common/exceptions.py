"""Webhook gateway exception hierarchy."""


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(self, message: str = "", code: str = "GATEWAY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(GatewayError):
    """Raised on malformed input to a registry or delivery operation. Never retried."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, code="VALIDATION_ERROR")


class NotFoundError(GatewayError):
    """Raised when a referenced event, webhook or delivery record is missing."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND")


class TransientDeliveryError(GatewayError):
    """Raised when a subscriber endpoint could not be reached (timeout, DNS, refused, TLS)."""

    def __init__(self, message: str = "Delivery failed"):
        super().__init__(message, code="TRANSIENT_DELIVERY")


class StorageError(GatewayError):
    """Raised when the durable store fails."""

    def __init__(self, message: str = "Storage failure"):
        super().__init__(message, code="STORAGE_ERROR")


class QueueUnavailableError(GatewayError):
    """Raised when the queue backing store is unreachable."""

    def __init__(self, message: str = "Queue unavailable"):
        super().__init__(message, code="QUEUE_UNAVAILABLE")
