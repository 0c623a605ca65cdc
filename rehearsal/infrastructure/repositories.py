from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, List, Optional

from sqlalchemy import ColumnElement, and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain.errors import ConflictError, PersistenceError
from ..domain.repositories import ReservationRepository
from ..domain.services import Customer
from ..domain.slots import has_conflict, is_active
from ..models import (
    NotificationChannel,
    NotificationStatus,
    Reservation,
    ReservationSlot,
    ReservationStatus,
)
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

_RELEASING = (ReservationStatus.FAILED, ReservationStatus.EXPIRED)
_LOCKABLE = (NotificationStatus.UNSET, NotificationStatus.FAILED)
MAX_NOTE_LENGTH = 500
# MySQL deadlock (1213) and lock wait timeout (1205): competing claims for the same slot.
LOCK_CONFLICT_CODES = frozenset({1205, 1213})


def _is_lock_conflict(exc: OperationalError) -> bool:
    args = getattr(exc.orig, "args", ())
    return bool(args) and args[0] in LOCK_CONFLICT_CODES


def _active_clause(now: datetime) -> ColumnElement[bool]:
    """SQL twin of `domain.slots.is_active`."""
    return or_(
        Reservation.status == ReservationStatus.PAID,
        and_(Reservation.status == ReservationStatus.PENDING, Reservation.hold_deadline >= now),
    )


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, *, claims_slots: bool = False) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except IntegrityError as exc:
            if claims_slots:
                raise ConflictError("slot is already reserved") from exc
            raise PersistenceError("integrity error in reservation ledger") from exc
        except OperationalError as exc:
            if claims_slots and _is_lock_conflict(exc):
                logger.info("Lost a lock race while claiming slots: %s", exc.orig)
                raise ConflictError("slot is already reserved") from exc
            logger.error("Reservation ledger unavailable: %s", exc)
            raise PersistenceError("reservation ledger unavailable") from exc
        except SQLAlchemyError as exc:
            logger.error("Reservation ledger unavailable: %s", exc)
            raise PersistenceError("reservation ledger unavailable") from exc

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
    ) -> Reservation:
        async with self._transaction(claims_slots=True) as session:
            claims = (
                await session.execute(
                    select(
                        ReservationSlot.slot,
                        Reservation.id,
                        Reservation.status,
                        Reservation.hold_deadline,
                    )
                    .join(Reservation, Reservation.id == ReservationSlot.reservation_id)
                    .where(ReservationSlot.date == booking_date, ReservationSlot.slot.in_(slots))
                    .with_for_update()
                )
            ).all()
            active = [slot for slot, _, status, deadline in claims if is_active(status, deadline, now)]
            if has_conflict(slots, active):
                raise ConflictError("slot is already reserved")

            # Claims still held by lapsed holds: expire the hold, the sweeper notifies and deletes it later.
            for stale_id in {reservation_id for _, reservation_id, _, _ in claims}:
                if await self._transition(session, stale_id, ReservationStatus.PENDING, ReservationStatus.EXPIRED):
                    logger.info("Reclaimed lapsed hold %s for %s", stale_id, booking_date)
                else:
                    await self._release_claims(session, stale_id)

            reservation = Reservation(
                date=booking_date,
                slots=list(slots),
                customer_name=customer.name,
                customer_email=customer.email,
                customer_phone=customer.phone,
                amount=amount,
                currency=currency,
                status=ReservationStatus.PENDING,
                hold_deadline=hold_deadline,
                created_at=now,
                updated_at=now,
            )
            session.add(reservation)
            await session.flush()
            session.add_all(
                ReservationSlot(reservation_id=reservation.id, date=booking_date, slot=slot) for slot in slots
            )
            await session.flush()
        return reservation

    async def transition_if(
        self,
        reservation_id: int,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> Reservation | None:
        async with self._transaction() as session:
            return await self._transition(session, reservation_id, expected, new)

    async def _transition(
        self,
        session: AsyncSession,
        reservation_id: int,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> Reservation | None:
        values: dict[str, object] = {"status": new, "updated_at": utc_now_naive()}
        if new != ReservationStatus.PENDING:
            values["hold_deadline"] = None
        result = await session.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        if new in _RELEASING:
            await self._release_claims(session, reservation_id)
        return await session.get(Reservation, reservation_id, populate_existing=True)

    async def _release_claims(self, session: AsyncSession, reservation_id: int) -> None:
        await session.execute(delete(ReservationSlot).where(ReservationSlot.reservation_id == reservation_id))

    async def attach_payment(self, reservation_id: int, *, handle: str, pay_url: str) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, Reservation.status == ReservationStatus.PENDING)
                .values(payment_handle=handle, payment_url=pay_url, updated_at=utc_now_naive())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def note_payment_state(self, reservation_id: int, note: str) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, Reservation.status == ReservationStatus.PENDING)
                .values(last_payment_note=note[:MAX_NOTE_LENGTH], updated_at=utc_now_naive())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def get(self, reservation_id: int) -> Optional[Reservation]:
        async with self._transaction() as session:
            return await session.get(Reservation, reservation_id)

    async def get_by_handle(self, handle: str) -> Optional[Reservation]:
        async with self._transaction() as session:
            return await session.scalar(select(Reservation).where(Reservation.payment_handle == handle))

    async def list_reconcilable(self, *, now: datetime, limit: int) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(
                Reservation.status == ReservationStatus.PENDING,
                Reservation.hold_deadline >= now,
                Reservation.payment_handle.is_not(None),
            )
            .order_by(Reservation.created_at, Reservation.id)
            .limit(limit)
        )
        async with self._transaction() as session:
            return list((await session.scalars(stmt)).all())

    async def list_expirable(self, *, now: datetime) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(
                or_(
                    and_(Reservation.status == ReservationStatus.PENDING, Reservation.hold_deadline < now),
                    Reservation.status == ReservationStatus.EXPIRED,
                )
            )
            .order_by(Reservation.id)
        )
        async with self._transaction() as session:
            return list((await session.scalars(stmt)).all())

    async def list_active_slots(self, booking_date: date, *, now: datetime) -> List[str]:
        stmt = (
            select(ReservationSlot.slot)
            .join(Reservation, Reservation.id == ReservationSlot.reservation_id)
            .where(ReservationSlot.date == booking_date, _active_clause(now))
            .order_by(ReservationSlot.slot)
        )
        async with self._transaction() as session:
            return list((await session.scalars(stmt)).all())

    async def list_all(self, booking_date: date | None = None) -> List[Reservation]:
        stmt = select(Reservation).order_by(Reservation.date, Reservation.id)
        if booking_date is not None:
            stmt = stmt.where(Reservation.date == booking_date)
        async with self._transaction() as session:
            return list((await session.scalars(stmt)).all())

    async def delete(self, reservation_id: int, *, expected: ReservationStatus | None = None) -> bool:
        stmt = delete(Reservation).where(Reservation.id == reservation_id)
        if expected is not None:
            stmt = stmt.where(Reservation.status == expected)
        async with self._transaction() as session:
            result = await session.execute(stmt.execution_options(synchronize_session=False))
            if result.rowcount != 1:
                return False
            await self._release_claims(session, reservation_id)
            return True

    async def acquire_notification(self, reservation_id: int, channel: NotificationChannel) -> bool:
        column = getattr(Reservation, channel.value)
        async with self._transaction() as session:
            result = await session.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, column.in_(_LOCKABLE))
                .values({channel.value: NotificationStatus.PENDING})
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def finish_notification(
        self,
        reservation_id: int,
        channel: NotificationChannel,
        status: NotificationStatus,
    ) -> None:
        column = getattr(Reservation, channel.value)
        async with self._transaction() as session:
            await session.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, column == NotificationStatus.PENDING)
                .values({channel.value: status})
                .execution_options(synchronize_session=False)
            )
