# ============================================================
# models.py — SQLModel tables (Booking service)
# ------------------------------------------------------------
#   1. Member : gym customer holding a session balance
#   2. GymClass : scheduled class with a capacity and an enrolled counter
#   3. Booking : one member's seat in one class
#   4. BalanceRequest : member request for more sessions, approved by staff
# ============================================================
from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

MEMBER_ACTIVE = "Active"
MEMBER_INACTIVE = "Inactive"

CLASS_ACTIVE = "Active"

GENDER_MALE = "Male"
GENDER_FEMALE = "Female"
GENDER_ALL = "All"

BOOKING_CONFIRMED = "confirmed"
BOOKING_CANCELLED = "cancelled"

REQUEST_PENDING = "Pending"
REQUEST_APPROVED = "Approved"
REQUEST_REJECTED = "Rejected"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Member(SQLModel, table=True):
    __tablename__ = "members"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    phone: Optional[str] = None
    gender: Optional[str] = None            # Male | Female | None
    remaining_sessions: int = Field(default=0, ge=0)
    total_sessions: int = Field(default=0, ge=0)
    status: str = MEMBER_ACTIVE             # Active | Inactive
    created_at: datetime = Field(default_factory=utcnow)


class GymClass(SQLModel, table=True):
    __tablename__ = "classes"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    trainer: Optional[str] = None
    schedule: date
    start_time: time = time(9, 0)
    end_time: time = time(10, 0)
    capacity: int = Field(default=10, gt=0)
    enrolled: int = Field(default=0, ge=0)
    gender: str = GENDER_ALL                # All | Male | Female
    status: str = CLASS_ACTIVE
    location: Optional[str] = None


# ------------------------------------------------------------
# Booking
# ------------------------------------------------------------
# confirmed → cancelled → (deleted). A cancelled row is kept as
# audit trail until explicitly deleted. The partial unique index
# allows a single confirmed booking per (member, class).
# ------------------------------------------------------------
class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "uq_bookings_confirmed_member_class",
            "user_id",
            "class_id",
            unique=True,
            postgresql_where=text("status = 'confirmed'"),
            sqlite_where=text("status = 'confirmed'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="members.id", index=True)
    class_id: int = Field(foreign_key="classes.id", index=True)
    status: str = BOOKING_CONFIRMED
    booking_date: datetime = Field(default_factory=utcnow)
    attendance: Optional[bool] = None
    session_consumed: bool = False
    cancelled_at: Optional[datetime] = None


class BalanceRequest(SQLModel, table=True):
    __tablename__ = "membership_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    member_id: int = Field(foreign_key="members.id", index=True)
    sessions: int = Field(gt=0)
    status: str = REQUEST_PENDING           # Pending | Approved | Rejected
    created_at: datetime = Field(default_factory=utcnow)
    decided_at: Optional[datetime] = None


# ------------------------------------------------------------
# Request / response bodies (not tables)
# ------------------------------------------------------------
class BookingCreate(SQLModel):
    member_id: int
    class_id: int


class AttendanceUpdate(SQLModel):
    attended: bool


class BalanceRequestCreate(SQLModel):
    member_id: int
    sessions: int = Field(gt=0)


class ReconcileResult(SQLModel):
    class_id: int
    enrolled: int
