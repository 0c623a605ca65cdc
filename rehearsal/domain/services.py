import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from .errors import ValidationError
from .slots import normalize_slots

_PHONE_NOISE = re.compile(r"[\s\-().]")
_E164 = re.compile(r"^\+[1-9]\d{6,14}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class Customer:
    name: str
    email: str
    phone: str


@dataclass(frozen=True)
class BookingRequest:
    date: date
    slots: list[str]
    customer: Customer


def normalize_phone(raw: str, *, default_prefix: str) -> str:
    """Normalize a phone number to E.164, adding `default_prefix` to national numbers."""
    phone = _PHONE_NOISE.sub("", raw or "")
    if phone.startswith("00"):
        phone = "+" + phone[2:]
    elif phone and not phone.startswith("+"):
        phone = default_prefix + phone.lstrip("0")
    if not _E164.match(phone):
        raise ValidationError("phone must be a valid E.164 number")
    return phone


def normalize_customer(name: str, email: str, phone: str, *, default_prefix: str) -> Customer:
    clean_name = " ".join((name or "").split())
    if not clean_name:
        raise ValidationError("name is required")
    clean_email = (email or "").strip().lower()
    if not _EMAIL.match(clean_email):
        raise ValidationError("email is invalid")
    return Customer(
        name=clean_name,
        email=clean_email,
        phone=normalize_phone(phone, default_prefix=default_prefix),
    )


def validate_booking(
    *,
    booking_date: date,
    slots: list[str],
    customer: Customer,
    today: date,
) -> BookingRequest:
    """
    Pure validation of a booking request.
    `today` is the current calendar day in the room's timezone; earlier dates are rejected.
    """
    if booking_date < today:
        raise ValidationError("cannot book a date in the past")
    return BookingRequest(date=booking_date, slots=normalize_slots(slots), customer=customer)


def compute_amount(slot_count: int, price_per_slot: int) -> int:
    if slot_count < 1:
        raise ValidationError("at least one slot is required")
    if price_per_slot < 0:
        raise ValueError("price_per_slot must not be negative")
    return slot_count * price_per_slot


def hold_deadline(now: datetime, *, minutes: int) -> datetime:
    return now + timedelta(minutes=minutes)
