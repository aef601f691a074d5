# ============================================================
# service.py — Booking consistency rules
# ------------------------------------------------------------
# BookingService owns every write that touches a booking so that
#   - a member's remaining sessions and a class's enrolled count
#     follow the set of confirmed bookings,
#   - female-only classes reject male members,
#   - a member holds at most one confirmed booking per class,
#   - cancel and delete can be repeated safely.
#
# The service is built per request around the request Session;
# the settings and the notification dispatcher are injected.
# ============================================================
import logging
import time
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from config import Settings
from errors import (
    AlreadyBooked,
    BookingError,
    CancellationWindowClosed,
    ClassFull,
    ClassUnavailable,
    EligibilityViolation,
    InsufficientBalance,
    InvalidState,
    MemberInactive,
    NotFound,
    StoreError,
)
from models import (
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    CLASS_ACTIVE,
    GENDER_FEMALE,
    GENDER_MALE,
    MEMBER_ACTIVE,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    BalanceRequest,
    Booking,
    GymClass,
    utcnow,
)
from publisher import NotificationDispatcher
from repository import (
    BalanceRequestRepository,
    BookingRepository,
    ClassRepository,
    MemberRepository,
)

logger = logging.getLogger(__name__)


def _same(value: Optional[str], expected: str) -> bool:
    return (value or "").strip().lower() == expected.lower()


class BookingService:
    def __init__(
        self,
        session: Session,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.dispatcher = dispatcher
        self.settings = settings
        self.sleep = sleep
        self.now = now or (lambda: datetime.now(settings.tz))

        self.members = MemberRepository(session)
        self.classes = ClassRepository(session)
        self.bookings = BookingRepository(session)
        self.requests = BalanceRequestRepository(session)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------
    @contextmanager
    def _store(self, operation: str):
        """Turn backend failures into StoreError; domain errors pass through."""
        try:
            yield
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("[booking] %s failed on the store: %s", operation, e)
            raise StoreError(operation, e) from e

    def _notify(self, event_type: str, payload: dict) -> None:
        try:
            self.dispatcher.emit(event_type, payload)
        except Exception:
            logger.warning("[booking] could not dispatch %s", event_type, exc_info=True)

    def _class_start(self, gym_class: GymClass) -> datetime:
        return datetime.combine(gym_class.schedule, gym_class.start_time, tzinfo=self.settings.tz)

    def _adjust_enrolled(self, class_id: int, delta: int, booking_id: int) -> None:
        # a failure here leaves drift that reconcile_enrollment repairs
        try:
            if not self.classes.update_enrolled(class_id, delta):
                logger.warning("[booking] class %s vanished while adjusting enrolled (booking %s)", class_id, booking_id)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                "[booking] enrolled %+d failed for class %s after booking %s, count drifts until reconciled: %s",
                delta, class_id, booking_id, e,
            )

    # ------------------------------------------------------------
    # create_booking
    # ------------------------------------------------------------
    def create_booking(self, member_id: int, class_id: int) -> Booking:
        with self._store("create_booking"):
            member = self.members.get(member_id)
            if member is None:
                raise NotFound("Member", member_id)
            if member.status != MEMBER_ACTIVE:
                raise MemberInactive(member_id)
            if member.remaining_sessions <= 0:
                raise InsufficientBalance(member_id)

            gym_class = self.classes.get(class_id)
            if gym_class is None:
                raise NotFound("Class", class_id)
            if gym_class.status != CLASS_ACTIVE:
                raise ClassUnavailable(class_id, "inactive")
            if gym_class.schedule < self.now().date():
                raise ClassUnavailable(class_id, "past")

            # only female-only classes are restricted
            if _same(gym_class.gender, GENDER_FEMALE) and _same(member.gender, GENDER_MALE):
                raise EligibilityViolation(class_id)

            if self.bookings.find_confirmed(member_id, class_id) is not None:
                raise AlreadyBooked(member_id, class_id)
            if gym_class.enrolled >= gym_class.capacity:
                raise ClassFull(class_id, gym_class.capacity)

        # insert + session debit commit together
        consume = self.settings.booking_consumes_session
        booking = Booking(user_id=member_id, class_id=class_id, session_consumed=consume)
        try:
            self.bookings.create(booking, commit=False)
            if consume and not self.members.update_remaining_sessions(member_id, -1, commit=False):
                self.session.rollback()
                raise InsufficientBalance(member_id)
            self.session.commit()
            self.session.refresh(booking)
        except IntegrityError as e:
            # unique confirmed index: a concurrent request booked the same seat
            self.session.rollback()
            raise AlreadyBooked(member_id, class_id) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("[booking] insert failed for member %s class %s: %s", member_id, class_id, e)
            raise StoreError("create_booking", e) from e

        booking_id = booking.id
        payload = {
            "bookingId": booking_id,
            "memberId": member_id,
            "classId": class_id,
            "bookingDate": booking.booking_date.isoformat(),
        }
        self._adjust_enrolled(class_id, 1, booking_id)
        logger.info("[booking] created booking %s member=%s class=%s", booking_id, member_id, class_id)

        self._notify("BookingCreated", payload)
        # the enrolled commit expired the instance
        with self._store("create_booking"):
            return self.bookings.get(booking_id)

    # ------------------------------------------------------------
    # cancel_booking
    # ------------------------------------------------------------
    def cancel_booking(self, booking_id: int, enforce_window: bool = False) -> Booking:
        with self._store("cancel_booking"):
            booking = self.bookings.get(booking_id)
            if booking is None:
                raise NotFound("Booking", booking_id)
            if booking.status == BOOKING_CANCELLED:
                logger.info("[booking] booking %s already cancelled, nothing to do", booking_id)
                return booking

            member_id, class_id = booking.user_id, booking.class_id
            credit = booking.session_consumed

            if enforce_window:
                gym_class = self.classes.get(class_id)
                hours = self.settings.cancellation_hours
                if gym_class is not None and self._class_start(gym_class) - self.now() < timedelta(hours=hours):
                    raise CancellationWindowClosed(booking_id, hours)

            if not self.bookings.mark_cancelled(booking_id, commit=False):
                # lost a race with another cancel
                self.session.rollback()
                logger.info("[booking] booking %s was cancelled concurrently", booking_id)
                return self.bookings.get(booking_id)
            if credit:
                self.members.update_remaining_sessions(member_id, 1, commit=False)
            self.session.commit()

        self._adjust_enrolled(class_id, -1, booking_id)
        logger.info("[booking] cancelled booking %s member=%s class=%s", booking_id, member_id, class_id)

        self._notify("BookingCancelled", {
            "bookingId": booking_id,
            "memberId": member_id,
            "classId": class_id,
            "sessionRestored": credit,
        })
        with self._store("cancel_booking"):
            return self.bookings.get(booking_id)

    # ------------------------------------------------------------
    # delete_booking
    # ------------------------------------------------------------
    # The store gives the client no transaction it can observe, so
    # every delete is verified by reading back:
    #   1. delete by id, verify the id is gone
    #   2. retry with a linear backoff (backoff × retry number)
    #   3. fallback: delete the cancelled rows of (member, class)
    #   4. verify no cancelled row of (member, class) is left
    # ------------------------------------------------------------
    def delete_booking(self, booking_id: int) -> None:
        with self._store("delete_booking"):
            booking = self.bookings.get(booking_id)
        if booking is None:
            logger.info("[booking] booking %s already deleted", booking_id)
            return
        if booking.status == BOOKING_CONFIRMED:
            raise InvalidState(
                "Cancel the booking before deleting it",
                details={"booking_id": booking_id, "status": booking.status},
            )
        member_id, class_id = booking.user_id, booking.class_id

        if not self._delete_with_retries(booking_id):
            self._fallback_delete(booking_id, member_id, class_id)

        logger.info("[booking] deleted booking %s", booking_id)
        self._notify("BookingDeleted", {"bookingId": booking_id, "memberId": member_id, "classId": class_id})

    def _delete_with_retries(self, booking_id: int) -> bool:
        attempts = self.settings.delete_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.bookings.delete(booking_id)
                if self.bookings.get(booking_id) is None:
                    return True
                logger.warning("[booking] booking %s still present after delete attempt %d", booking_id, attempt)
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.warning("[booking] delete attempt %d/%d for booking %s failed: %s", attempt, attempts, booking_id, e)
            if attempt < attempts:
                self.sleep(self.settings.delete_backoff_seconds * attempt)
        return False

    def _fallback_delete(self, booking_id: int, member_id: int, class_id: int) -> None:
        logger.warning(
            "[booking] retries exhausted for booking %s, deleting cancelled rows of member=%s class=%s",
            booking_id, member_id, class_id,
        )
        try:
            self.bookings.delete_cancelled_for(member_id, class_id)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning("[booking] fallback delete failed for booking %s: %s", booking_id, e)

        with self._store("delete_booking"):
            remaining = self.bookings.count_cancelled_for(member_id, class_id)
        if remaining:
            logger.error("[booking] %d row(s) left for member=%s class=%s after fallback", remaining, member_id, class_id)
            raise StoreError("delete_booking")

    # ------------------------------------------------------------
    # Enrollment reconciliation
    # ------------------------------------------------------------
    def reconcile_enrollment(self, class_id: int) -> int:
        with self._store("reconcile_enrollment"):
            gym_class = self.classes.get(class_id)
            if gym_class is None:
                raise NotFound("Class", class_id)
            actual = self.bookings.count_confirmed(class_id)
            if gym_class.enrolled != actual:
                logger.warning("[reconcile] class %s enrolled=%s but %s confirmed booking(s), fixing",
                               class_id, gym_class.enrolled, actual)
                if actual > gym_class.capacity:
                    logger.warning("[reconcile] class %s is overbooked (%s/%s)", class_id, actual, gym_class.capacity)
                self.classes.set_enrolled(class_id, actual)
            return actual

    def reconcile_active(self, after: Optional[date] = None) -> Dict[int, int]:
        after = after or self.now().date()
        with self._store("reconcile_enrollment"):
            class_ids = [c.id for c in self.classes.list_active(after)]
        counts = {}
        for class_id in class_ids:
            try:
                counts[class_id] = self.reconcile_enrollment(class_id)
            except NotFound:
                logger.info("[reconcile] class %s was removed during the pass, skipping", class_id)
        return counts

    # ------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------
    def mark_attendance(self, booking_id: int, attended: bool) -> Booking:
        with self._store("mark_attendance"):
            booking = self.bookings.get(booking_id)
            if booking is None:
                raise NotFound("Booking", booking_id)
            if booking.status != BOOKING_CONFIRMED:
                raise InvalidState(
                    "Attendance can only be recorded on a confirmed booking",
                    details={"booking_id": booking_id, "status": booking.status},
                )
            return self.bookings.set_attendance(booking_id, attended)

    # ------------------------------------------------------------
    # Session balance requests
    # ------------------------------------------------------------
    def request_balance(self, member_id: int, sessions: int) -> BalanceRequest:
        if sessions <= 0:
            raise BookingError("Requested sessions must be a positive number", details={"sessions": sessions})
        with self._store("request_balance"):
            if self.members.get(member_id) is None:
                raise NotFound("Member", member_id)
            request = self.requests.create(BalanceRequest(member_id=member_id, sessions=sessions))

        self._notify("BalanceRequested", {"requestId": request.id, "memberId": member_id, "sessions": sessions})
        return request

    def approve_balance_request(self, request_id: int) -> BalanceRequest:
        with self._store("approve_balance_request"):
            request = self._pending_request(request_id)
            member_id, sessions = request.member_id, request.sessions
            if not self.members.grant_sessions(member_id, sessions, commit=False):
                self.session.rollback()
                raise NotFound("Member", member_id)
            request.status = REQUEST_APPROVED
            request.decided_at = utcnow()
            self.session.commit()
            self.session.refresh(request)

        logger.info("[balance] request %s approved, %s session(s) added to member %s", request_id, sessions, member_id)
        self._notify("BalanceRequestApproved", {"requestId": request_id, "memberId": member_id, "sessions": sessions})
        return request

    def reject_balance_request(self, request_id: int) -> BalanceRequest:
        with self._store("reject_balance_request"):
            request = self._pending_request(request_id)
            request.status = REQUEST_REJECTED
            request.decided_at = utcnow()
            self.session.commit()
            self.session.refresh(request)

        self._notify("BalanceRequestRejected", {"requestId": request_id, "memberId": request.member_id})
        return request

    def _pending_request(self, request_id: int) -> BalanceRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise NotFound("Balance request", request_id)
        if request.status != REQUEST_PENDING:
            raise InvalidState(
                f"Request already {request.status.lower()}",
                details={"request_id": request_id, "status": request.status},
            )
        return request
