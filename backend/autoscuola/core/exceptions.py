# backend/autoscuola/core/exceptions.py
"""
Domain-specific exceptions for the autoscuola engine.

Caller errors (conflicts, invalid resources, illegal transitions) are raised
from services and converted to HTTP responses at the API layer. Provider
errors are raised by the integration adapters and handled inside the
payment and invoice services, where they are recorded on the owning row.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

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

    def _http(self, status_code: int) -> HTTPException:
        return HTTPException(
            status_code=status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )

    def to_http_exception(self) -> HTTPException:
        """Default conversion to HTTPException (override in subclasses)."""
        return self._http(status.HTTP_500_INTERNAL_SERVER_ERROR)


class ValidationException(DomainException):
    """Raised when business validation fails."""

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_400_BAD_REQUEST)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_404_NOT_FOUND)


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_409_CONFLICT)


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    def to_http_exception(self) -> HTTPException:
        return self._http(HTTP_422_UNPROCESSABLE)


class ForbiddenException(DomainException):
    """Raised when the actor lacks permission for an action."""

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_403_FORBIDDEN)


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


# Specific business exceptions


class SlotConflictException(ConflictException):
    """Raised when the student, instructor or vehicle is already busy."""

    def __init__(self, conflicts: List[str], *, details: Optional[Dict[str, Any]] = None):
        dimensions = ", ".join(conflicts)
        super().__init__(
            message=f"The requested slot conflicts with an existing appointment ({dimensions})",
            code="SLOT_CONFLICT",
            details={"conflicts": conflicts, **(details or {})},
        )
        self.conflicts = conflicts


class InvalidResourceException(ValidationException):
    """Raised when a resource id is inactive or belongs to another company."""

    def __init__(self, owner_type: str, owner_id: str):
        super().__init__(
            message=f"The {owner_type} is not active for this company",
            code="INVALID_RESOURCE",
            details={"owner_type": owner_type, "owner_id": owner_id},
        )


class NotRepositionableException(BusinessRuleException):
    """Raised when an appointment cannot be operationally cancelled."""

    def __init__(self, appointment_id: str, reason: str):
        super().__init__(
            message=f"Appointment cannot be repositioned: {reason}",
            code="NOT_REPOSITIONABLE",
            details={"appointment_id": appointment_id, "reason": reason},
        )


class InvalidStatusTransitionException(BusinessRuleException):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot change appointment status from {current} to {requested}",
            code="INVALID_STATUS_TRANSITION",
            details={"current": current, "requested": requested},
        )


class LessonPolicyViolationException(ValidationException):
    """Raised when a lesson type is booked outside its allowed hours."""

    def __init__(self, lesson_type: str):
        super().__init__(
            message=f"Lessons of type {lesson_type} are not allowed at the requested time",
            code="LESSON_POLICY_VIOLATION",
            details={"lesson_type": lesson_type},
        )


class StudentPaymentBlockedException(BusinessRuleException):
    """Raised when a student with an unpaid (insoluto) balance tries to book."""

    def __init__(self, student_id: str, appointment_ids: List[str]):
        super().__init__(
            message="The student has unpaid lessons and cannot book until the balance is settled",
            code="STUDENT_PAYMENT_BLOCKED",
            details={"student_id": student_id, "insoluto_appointment_ids": appointment_ids},
        )


class PaymentMethodRequiredException(BusinessRuleException):
    """Raised when payments are enabled and the student has no usable payment method."""

    def __init__(self, student_id: str):
        super().__init__(
            message="A saved payment method is required to book paid lessons",
            code="PAYMENT_METHOD_REQUIRED",
            details={"student_id": student_id},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
