# ============================================================
# repository.py — Data access for the Booking service
# ------------------------------------------------------------
# One repository per table, all sharing the request Session:
#   - MemberRepository : the Member Directory
#   - ClassRepository : the Class Catalog
#   - BookingRepository : bookings
#   - BalanceRequestRepository : session top-up requests
# Counters are updated with store-side expressions so two
# concurrent requests can't lose an increment.
# ============================================================
from datetime import date
from typing import List, Optional

from sqlalchemy import case, delete, func, update
from sqlmodel import Session, select

from models import (
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    CLASS_ACTIVE,
    BalanceRequest,
    Booking,
    GymClass,
    Member,
    utcnow,
)


class MemberRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, member_id: int) -> Optional[Member]:
        return self.session.get(Member, member_id)

    def get_by_email(self, email: str) -> Optional[Member]:
        return self.session.exec(select(Member).where(func.lower(Member.email) == email.strip().lower())).first()

    def update_remaining_sessions(self, member_id: int, delta: int, commit: bool = True) -> bool:
        """Apply ``delta`` to the balance; a debit only applies if it can't go negative.

        Returns False when no row was updated (unknown member or balance too low).
        """
        stmt = update(Member).where(Member.id == member_id)
        if delta < 0:
            stmt = stmt.where(Member.remaining_sessions >= -delta)
        stmt = stmt.values(remaining_sessions=Member.remaining_sessions + delta)
        updated = self.session.execute(stmt).rowcount > 0
        if commit:
            self.session.commit()
        return updated

    def grant_sessions(self, member_id: int, sessions: int, commit: bool = True) -> bool:
        stmt = (
            update(Member)
            .where(Member.id == member_id)
            .values(
                remaining_sessions=Member.remaining_sessions + sessions,
                total_sessions=Member.total_sessions + sessions,
            )
        )
        updated = self.session.execute(stmt).rowcount > 0
        if commit:
            self.session.commit()
        return updated


class ClassRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, class_id: int) -> Optional[GymClass]:
        return self.session.get(GymClass, class_id)

    def update_enrolled(self, class_id: int, delta: int) -> bool:
        # floor at 0
        new_value = case((GymClass.enrolled + delta < 0, 0), else_=GymClass.enrolled + delta)
        stmt = update(GymClass).where(GymClass.id == class_id).values(enrolled=new_value)
        updated = self.session.execute(stmt).rowcount > 0
        self.session.commit()
        return updated

    def set_enrolled(self, class_id: int, enrolled: int) -> None:
        self.session.execute(update(GymClass).where(GymClass.id == class_id).values(enrolled=enrolled))
        self.session.commit()

    def list_active(self, after_date: date) -> List[GymClass]:
        return list(self.session.exec(
            select(GymClass)
            .where(GymClass.status == CLASS_ACTIVE, GymClass.schedule >= after_date)
            .order_by(GymClass.schedule, GymClass.start_time)
        ).all())


# BookingRepository
# CRUD on the bookings table. Used by the service and by the
# reconciler; the service decides when a change is committed.
class BookingRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, b: Booking, commit: bool = True) -> Booking:
        self.session.add(b)
        if commit:
            self.session.commit()
            self.session.refresh(b)
        else:
            self.session.flush()
        return b

    def get(self, booking_id: int) -> Optional[Booking]:
        return self.session.exec(select(Booking).where(Booking.id == booking_id)).first()

    def mark_cancelled(self, booking_id: int, commit: bool = True) -> bool:
        """Flip a confirmed booking to cancelled; False if it was not confirmed anymore."""
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BOOKING_CONFIRMED)
            .values(status=BOOKING_CANCELLED, cancelled_at=utcnow())
        )
        updated = self.session.execute(stmt).rowcount > 0
        if commit:
            self.session.commit()
        return updated

    def find_confirmed(self, user_id: int, class_id: int) -> Optional[Booking]:
        return self.session.exec(
            select(Booking).where(
                Booking.user_id == user_id,
                Booking.class_id == class_id,
                Booking.status == BOOKING_CONFIRMED,
            )
        ).first()

    def count_confirmed(self, class_id: int) -> int:
        return self.session.exec(
            select(func.count(Booking.id)).where(
                Booking.class_id == class_id,
                Booking.status == BOOKING_CONFIRMED,
            )
        ).one()

    def set_attendance(self, booking_id: int, attended: bool) -> Optional[Booking]:
        b = self.get(booking_id)
        if b:
            b.attendance = attended
            self.session.commit()
            self.session.refresh(b)
        return b

    def delete(self, booking_id: int) -> int:
        deleted = self.session.execute(delete(Booking).where(Booking.id == booking_id)).rowcount
        self.session.commit()
        return deleted

    def delete_cancelled_for(self, user_id: int, class_id: int) -> int:
        deleted = self.session.execute(
            delete(Booking).where(
                Booking.user_id == user_id,
                Booking.class_id == class_id,
                Booking.status == BOOKING_CANCELLED,
            )
        ).rowcount
        self.session.commit()
        return deleted

    def count_cancelled_for(self, user_id: int, class_id: int) -> int:
        return self.session.exec(
            select(func.count(Booking.id)).where(
                Booking.user_id == user_id,
                Booking.class_id == class_id,
                Booking.status == BOOKING_CANCELLED,
            )
        ).one()


class BalanceRequestRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, r: BalanceRequest) -> BalanceRequest:
        self.session.add(r)
        self.session.commit()
        self.session.refresh(r)
        return r

    def get(self, request_id: int) -> Optional[BalanceRequest]:
        return self.session.get(BalanceRequest, request_id)
