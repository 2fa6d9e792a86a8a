# backend/auditoryx/core/exceptions.py
"""
Domain-specific exceptions for the AuditoryX ledger.

Services raise these; the API layer converts them with
``to_http_exception()``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def _headers(self) -> Optional[Dict[str, str]]:
        return None

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
            headers=self._headers(),
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when the actor lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Ledger exceptions


class InvalidTransitionException(ConflictException):
    """Raised when a booking status change is not in the transition table."""

    def __init__(self, booking_id: str, current_status: str, target_status: str):
        super().__init__(
            message=f"Cannot move booking from {current_status} to {target_status}",
            code="INVALID_TRANSITION",
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "target_status": target_status,
            },
        )
        self.current_status = current_status
        self.target_status = target_status


class NotEligibleException(BusinessRuleException):
    """Raised when a booking does not qualify for a refund."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="NOT_ELIGIBLE", details=details or {})


class GatewayException(DomainException):
    """Base class for payment gateway failures."""

    retryable: bool = False


class GatewayDeclinedException(GatewayException):
    """The gateway rejected the refund; retrying the same request will not help."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="GATEWAY_DECLINED", details=details or {})


class GatewayUnavailableException(GatewayException):
    """Network, timeout or rate-limit failure; the caller may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="GATEWAY_UNAVAILABLE", details=details or {})

    def _headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": "5"}


class ConcurrencyConflictException(DomainException):
    """Optimistic update kept losing the race; safe for the caller to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, resource: str, resource_id: str, *, attempts: int, retry_after: int = 2):
        super().__init__(
            message=f"{resource} {resource_id} is busy, please retry",
            code="CONCURRENCY_CONFLICT",
            details={"resource": resource, "resource_id": resource_id, "attempts": attempts},
        )
        self.retry_after = retry_after

    def _headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


class XPRateLimitedException(DomainException):
    """Award refused by an anti-gaming cooldown or rate limit."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(
        self, message: str, *, retry_after: int, details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message=message, code="XP_RATE_LIMITED", details=details or {})
        self.retry_after = max(1, retry_after)

    def _headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """
