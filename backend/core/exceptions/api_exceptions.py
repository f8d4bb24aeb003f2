from fastapi import HTTPException
from datetime import datetime, timezone
from core.utils.uuid_utils import uuid7
from typing import Any, Dict, Optional


class APIException(HTTPException):
    """Custom API exception with enhanced error details"""

    def __init__(
        self,
        status_code: int,
        message: str = "An unexpected API error occurred",
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **kwargs
    ):
        self.message = message
        self.detail = detail or message
        self.error_code = error_code or f"ERR_{status_code}"
        self.correlation_id = correlation_id or str(uuid7())
        self.timestamp = datetime.now(timezone.utc).isoformat()

        super().__init__(status_code=status_code, detail=self.detail, **kwargs)

    def __str__(self) -> str:
        return self.message


class ValidationException(APIException):
    """Input failed validation. `errors` maps field names to messages."""

    def __init__(self, message: str = "Validation failed", errors: Optional[Dict[str, Any]] = None):
        self.errors = errors or {}
        super().__init__(
            status_code=422,
            message=message,
            error_code="VALIDATION_ERROR"
        )


class InvalidCouponException(APIException):
    """Coupon cannot be applied to the current order"""

    def __init__(self, message: str = "Invalid coupon code"):
        super().__init__(
            status_code=400,
            message=message,
            error_code="INVALID_COUPON"
        )


class InvalidPincodeException(APIException):
    """Postal code is not a six digit code"""

    def __init__(self, message: str = "Invalid pincode format"):
        super().__init__(
            status_code=400,
            message=message,
            error_code="INVALID_PINCODE"
        )


class InvalidStatusTransitionException(APIException):
    """Order status change not allowed by the lifecycle state machine"""

    def __init__(self, message: str = "Invalid status transition", current_status: Optional[str] = None,
                 requested_status: Optional[str] = None):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            status_code=400,
            message=message,
            error_code="INVALID_STATUS_TRANSITION"
        )


class AuthorizationException(APIException):
    """Exception for authorization errors"""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            status_code=403,
            message=message,
            error_code="AUTHORIZATION_ERROR"
        )


class NotFoundException(APIException):
    """Exception for resource not found errors"""

    def __init__(self, message: str = "Resource not found", resource: Optional[str] = None):
        self.resource = resource
        super().__init__(
            status_code=404,
            message=message,
            error_code="NOT_FOUND"
        )


class ConflictException(APIException):
    """Exception for conflict errors"""

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(
            status_code=409,
            message=message,
            error_code="CONFLICT_ERROR"
        )


class DatabaseException(APIException):
    """Exception for database errors"""

    def __init__(self, message: str = "Database error occurred", metadata: Optional[Dict[str, Any]] = None):
        self.metadata = metadata or {}
        super().__init__(
            status_code=500,
            message=message,
            error_code="DATABASE_ERROR"
        )


class ExternalServiceException(APIException):
    """Exception for external service errors"""

    def __init__(self, message: str = "External service error", service: Optional[str] = None):
        self.service = service
        super().__init__(
            status_code=502,
            message=message,
            error_code="EXTERNAL_SERVICE_ERROR"
        )


class NotificationDeliveryException(ExternalServiceException):
    """Email provider rejected or failed to accept a message"""

    def __init__(self, message: str = "Notification delivery failed", service: Optional[str] = "mailgun"):
        super().__init__(message=message, service=service)
        self.error_code = "NOTIFICATION_DELIVERY_ERROR"
