# ============================================================
# Booking API Router
# ------------------------------------------------------------
# REST endpoints over BookingService: create / cancel / delete a
# booking, record attendance, reconcile a class's enrolled count
# and handle session balance requests.
# ============================================================
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session, create_engine

from config import Settings, get_settings
from errors import NotFound
from models import (
    AttendanceUpdate,
    BalanceRequest,
    BalanceRequestCreate,
    Booking,
    BookingCreate,
    GymClass,
    Member,
    ReconcileResult,
)
from publisher import NotificationDispatcher
from repository import BookingRepository, ClassRepository, MemberRepository
from service import BookingService

engine = create_engine(get_settings().database_url, pool_pre_ping=True)
# one publisher pool for the whole process
dispatcher = NotificationDispatcher(get_settings())
router = APIRouter()


# One DB session per request, closed automatically
def get_session():
    with Session(engine) as s:
        yield s


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher


def get_service(
    s: Session = Depends(get_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
) -> BookingService:
    return BookingService(s, dispatcher, settings)


# ------------------------------------------------------------
# Bookings
# ------------------------------------------------------------
@router.post("/v1/bookings", response_model=Booking, status_code=status.HTTP_201_CREATED)
def create_booking(body: BookingCreate, service: BookingService = Depends(get_service)):
    return service.create_booking(body.member_id, body.class_id)


@router.get("/v1/bookings/{booking_id}", response_model=Booking)
def get_booking(booking_id: int, s: Session = Depends(get_session)):
    b = BookingRepository(s).get(booking_id)
    if not b:
        raise NotFound("Booking", booking_id)
    return b


# self_service=true applies the cancellation window (member app);
# staff cancellations skip it
@router.post("/v1/bookings/{booking_id}/cancel", response_model=Booking)
def cancel_booking(booking_id: int, self_service: bool = False, service: BookingService = Depends(get_service)):
    return service.cancel_booking(booking_id, enforce_window=self_service)


@router.delete("/v1/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_booking(booking_id: int, service: BookingService = Depends(get_service)):
    service.delete_booking(booking_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/v1/bookings/{booking_id}/attendance", response_model=Booking)
def mark_attendance(booking_id: int, body: AttendanceUpdate, service: BookingService = Depends(get_service)):
    return service.mark_attendance(booking_id, body.attended)


# ------------------------------------------------------------
# Classes
# ------------------------------------------------------------
@router.get("/v1/classes", response_model=List[GymClass])
def list_classes(after: Optional[date] = None, s: Session = Depends(get_session),
                 settings: Settings = Depends(get_settings)):
    return ClassRepository(s).list_active(after or datetime.now(settings.tz).date())


@router.post("/v1/classes/{class_id}/reconcile", response_model=ReconcileResult)
def reconcile_class(class_id: int, service: BookingService = Depends(get_service)):
    return ReconcileResult(class_id=class_id, enrolled=service.reconcile_enrollment(class_id))


# ------------------------------------------------------------
# Members & session balance
# ------------------------------------------------------------
@router.get("/v1/members", response_model=Member)
def find_member(email: str, s: Session = Depends(get_session)):
    m = MemberRepository(s).get_by_email(email)
    if not m:
        raise NotFound("Member", email)
    return m


@router.get("/v1/members/{member_id}", response_model=Member)
def get_member(member_id: int, s: Session = Depends(get_session)):
    m = MemberRepository(s).get(member_id)
    if not m:
        raise NotFound("Member", member_id)
    return m


@router.post("/v1/balance-requests", response_model=BalanceRequest, status_code=status.HTTP_201_CREATED)
def request_balance(body: BalanceRequestCreate, service: BookingService = Depends(get_service)):
    return service.request_balance(body.member_id, body.sessions)


@router.post("/v1/balance-requests/{request_id}/approve", response_model=BalanceRequest)
def approve_balance_request(request_id: int, service: BookingService = Depends(get_service)):
    return service.approve_balance_request(request_id)


@router.post("/v1/balance-requests/{request_id}/reject", response_model=BalanceRequest)
def reject_balance_request(request_id: int, service: BookingService = Depends(get_service)):
    return service.reject_balance_request(request_id)
