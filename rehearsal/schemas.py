from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from .config import get_settings
from .models import Reservation, ReservationStatus
from .usecases.reconciliation import ConfirmOutcome
from .utils.time import get_zone, utc_naive_to_local

ROOM_ZONE = get_zone(get_settings().timezone)


def _serialize_local(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return utc_naive_to_local(dt, ROOM_ZONE).isoformat()


class BookingCreate(BaseModel):
    date: date
    slots: list[str] = Field(min_length=1, max_length=24)
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    phone: str = Field(min_length=6, max_length=32)
    captcha_token: Optional[str] = None


class BookingRead(BaseModel):
    reservation_id: int
    status: ReservationStatus
    date: date
    slots: list[str]
    amount: int
    currency: str
    hold_deadline: Optional[datetime]
    payment_url: Optional[str]

    @field_serializer("hold_deadline")
    def _ser_deadline(self, dt: Optional[datetime]) -> Optional[str]:
        return _serialize_local(dt)

    @classmethod
    def from_db(cls, *, reservation: Reservation) -> "BookingRead":
        return cls(
            reservation_id=reservation.id,
            status=reservation.status,
            date=reservation.date,
            slots=list(reservation.slots),
            amount=reservation.amount,
            currency=reservation.currency,
            hold_deadline=reservation.hold_deadline,
            payment_url=reservation.payment_url,
        )


class AvailabilityRead(BaseModel):
    date: date
    slots: list[str]


class ConfirmRead(BaseModel):
    reservation_id: int
    status: ReservationStatus
    payment_state: Optional[str]

    @classmethod
    def from_outcome(cls, outcome: ConfirmOutcome) -> "ConfirmRead":
        return cls(
            reservation_id=outcome.reservation_id,
            status=outcome.status,
            payment_state=outcome.payment_state.describe() if outcome.payment_state is not None else None,
        )


class ReservationRead(BaseModel):
    reservation_id: int
    date: date
    slots: list[str]
    name: str
    email: str
    phone: str
    amount: int
    currency: str
    status: ReservationStatus
    hold_deadline: Optional[datetime]
    payment_handle: Optional[str]
    last_payment_note: Optional[str]
    created_at: datetime

    @field_serializer("hold_deadline", "created_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _serialize_local(dt)

    @classmethod
    def from_db(cls, *, reservation: Reservation) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            date=reservation.date,
            slots=list(reservation.slots),
            name=reservation.customer_name,
            email=reservation.customer_email,
            phone=reservation.customer_phone,
            amount=reservation.amount,
            currency=reservation.currency,
            status=reservation.status,
            hold_deadline=reservation.hold_deadline,
            payment_handle=reservation.payment_handle,
            last_payment_note=reservation.last_payment_note,
            created_at=reservation.created_at,
        )


class ReservationCancel(BaseModel):
    message: Optional[str] = Field(default=None, max_length=500)


class AdminLogin(BaseModel):
    password: str = Field(min_length=1)


class TokenRead(BaseModel):
    access_token: str
    token_type: str = "bearer"
