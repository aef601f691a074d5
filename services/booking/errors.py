# ============================================================
# errors.py — Booking domain errors
# ------------------------------------------------------------
# Every error carries a user-facing message and the HTTP status
# the API answers with. Validation errors are never retried;
# StoreError marks a transient backend failure the caller may retry.
# ============================================================
from typing import Any, Dict, Optional

from fastapi import status


class BookingError(Exception):
    """Base class for all booking domain errors."""

    http_status: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

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

    def to_dict(self) -> Dict[str, Any]:
        body = {"message": self.message, "code": self.code, "details": self.details}
        if self.retryable:
            body["retryable"] = True
        return body


class NotFound(BookingError):
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} not found",
            details={"entity": entity.lower(), "id": entity_id},
        )


class MemberInactive(BookingError):
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, member_id: int) -> None:
        super().__init__("Your membership is not active", details={"member_id": member_id})


class InsufficientBalance(BookingError):
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, member_id: int) -> None:
        super().__init__("No sessions remaining", details={"member_id": member_id})


class ClassUnavailable(BookingError):
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, class_id: int, reason: str) -> None:
        super().__init__(
            "This class is no longer open for booking",
            details={"class_id": class_id, "reason": reason},
        )


class EligibilityViolation(BookingError):
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, class_id: int) -> None:
        super().__init__("This class is for women only", details={"class_id": class_id})


class AlreadyBooked(BookingError):
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, member_id: int, class_id: int) -> None:
        super().__init__(
            "You have already booked this class",
            details={"member_id": member_id, "class_id": class_id},
        )


class ClassFull(BookingError):
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, class_id: int, capacity: int) -> None:
        super().__init__(
            "This class is full",
            details={"class_id": class_id, "capacity": capacity},
        )


class InvalidState(BookingError):
    http_status = status.HTTP_409_CONFLICT


class CancellationWindowClosed(BookingError):
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, booking_id: int, hours: int) -> None:
        super().__init__(
            f"Bookings can't be cancelled less than {hours} hours before class",
            details={"booking_id": booking_id, "cancellation_hours": hours},
        )


class StoreError(BookingError):
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        details = {"operation": operation}
        if cause is not None:
            details["cause"] = type(cause).__name__
        super().__init__("Something went wrong, please try again", details=details)
