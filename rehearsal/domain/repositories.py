from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from ..models import NotificationChannel, NotificationStatus, Reservation, ReservationStatus
from .services import Customer


class ReservationRepository(Protocol):
    """The ledger. Every method runs in its own transaction."""

    async def create_hold(
        self,
        *,
        booking_date: date,
        slots: list[str],
        customer: Customer,
        amount: int,
        currency: str,
        hold_deadline: datetime,
        now: datetime,
    ) -> Reservation: ...

    async def transition_if(
        self,
        reservation_id: int,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> Reservation | None: ...

    async def attach_payment(self, reservation_id: int, *, handle: str, pay_url: str) -> bool: ...

    async def note_payment_state(self, reservation_id: int, note: str) -> bool: ...

    async def get(self, reservation_id: int) -> Reservation | None: ...

    async def get_by_handle(self, handle: str) -> Reservation | None: ...

    async def list_reconcilable(self, *, now: datetime, limit: int) -> list[Reservation]: ...

    async def list_expirable(self, *, now: datetime) -> list[Reservation]: ...

    async def list_active_slots(self, booking_date: date, *, now: datetime) -> list[str]: ...

    async def list_all(self, booking_date: date | None = None) -> list[Reservation]: ...

    async def delete(self, reservation_id: int, *, expected: ReservationStatus | None = None) -> bool: ...

    async def acquire_notification(self, reservation_id: int, channel: NotificationChannel) -> bool: ...

    async def finish_notification(
        self,
        reservation_id: int,
        channel: NotificationChannel,
        status: NotificationStatus,
    ) -> None: ...


class SettingsStore(Protocol):
    async def get_price_per_slot(self) -> int: ...

    async def get_access_code(self) -> str: ...
