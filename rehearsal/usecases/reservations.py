import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from ..config import Settings
from ..domain.errors import GatewayError, ReservationError, ReservationNotFoundError
from ..domain.payments import PaymentGateway
from ..domain.repositories import ReservationRepository, SettingsStore
from ..domain.services import compute_amount, hold_deadline, normalize_customer, validate_booking
from ..models import Reservation, ReservationStatus
from ..utils.audit_log import AuditInitiator, emit_audit_log_quietly
from ..utils.time import get_zone, local_today, utc_now_naive
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """`won` is True only for the call that actually performed the transition."""

    won: bool
    reservation: Optional[Reservation] = None


async def create_reservation(
    repo: ReservationRepository,
    gateway: PaymentGateway,
    settings_store: SettingsStore,
    dispatcher: NotificationDispatcher,
    *,
    settings: Settings,
    booking_date: date,
    slots: list[str],
    name: str,
    email: str,
    phone: str,
    now: Optional[datetime] = None,
) -> Reservation:
    now = now or utc_now_naive()
    customer = normalize_customer(name, email, phone, default_prefix=settings.default_phone_prefix)
    request = validate_booking(
        booking_date=booking_date,
        slots=slots,
        customer=customer,
        today=local_today(get_zone(settings.timezone), now),
    )

    price = await settings_store.get_price_per_slot()
    amount = compute_amount(len(request.slots), price)
    reservation = await repo.create_hold(
        booking_date=request.date,
        slots=request.slots,
        customer=request.customer,
        amount=amount,
        currency=settings.currency,
        hold_deadline=hold_deadline(now, minutes=settings.hold_minutes),
        now=now,
    )
    emit_audit_log_quietly(
        action="reservation.created",
        initiator="customer",
        reservation_id=reservation.id,
        booking_date=reservation.date,
        slots=reservation.slots,
        amount=reservation.amount,
        status_to=reservation.status,
    )

    try:
        payment = await gateway.create_payment(
            amount=amount,
            currency=settings.currency,
            order_ref=str(reservation.id),
            return_url=settings.payment_return_url,
            notify_url=settings.payment_notify_url,
            payer_email=customer.email,
        )
    except GatewayError:
        await _fail_hold(repo, reservation.id, reason="payment creation failed")
        raise

    try:
        attached = await repo.attach_payment(reservation.id, handle=payment.handle, pay_url=payment.pay_url)
    except ReservationError:
        logger.error("Payment %s for reservation %s is orphaned: attaching it failed", payment.handle, reservation.id)
        await _fail_hold(repo, reservation.id, reason=f"attaching payment {payment.handle} failed")
        raise
    if not attached:
        logger.warning("Reservation %s left pending before payment %s was attached", reservation.id, payment.handle)
    reservation.payment_handle = payment.handle
    reservation.payment_url = payment.pay_url

    await dispatcher.notify_payment_request(reservation)
    return reservation


async def _fail_hold(repo: ReservationRepository, reservation_id: int, *, reason: str) -> None:
    """Release the slots now rather than after the hold window. Best effort; the sweeper is the fallback."""
    try:
        failed = await repo.transition_if(reservation_id, ReservationStatus.PENDING, ReservationStatus.FAILED)
    except ReservationError as exc:
        logger.error("Could not release hold %s after %s: %s", reservation_id, reason, exc)
        return
    if failed is None:
        return
    emit_audit_log_quietly(
        action="reservation.failed",
        initiator="system",
        reservation_id=reservation_id,
        status_from=ReservationStatus.PENDING,
        status_to=ReservationStatus.FAILED,
        message=reason,
    )


async def mark_paid(
    repo: ReservationRepository,
    reservation_id: int,
    *,
    initiator: AuditInitiator = "gateway",
) -> TransitionResult:
    updated = await repo.transition_if(reservation_id, ReservationStatus.PENDING, ReservationStatus.PAID)
    if updated is None:
        return TransitionResult(won=False)
    emit_audit_log_quietly(
        action="reservation.paid",
        initiator=initiator,
        reservation_id=updated.id,
        booking_date=updated.date,
        slots=updated.slots,
        amount=updated.amount,
        payment_handle=updated.payment_handle,
        status_from=ReservationStatus.PENDING,
        status_to=ReservationStatus.PAID,
    )
    return TransitionResult(won=True, reservation=updated)


async def mark_expired(repo: ReservationRepository, reservation_id: int) -> TransitionResult:
    updated = await repo.transition_if(reservation_id, ReservationStatus.PENDING, ReservationStatus.EXPIRED)
    if updated is None:
        return TransitionResult(won=False)
    emit_audit_log_quietly(
        action="reservation.expired",
        initiator="system",
        reservation_id=updated.id,
        booking_date=updated.date,
        slots=updated.slots,
        status_from=ReservationStatus.PENDING,
        status_to=ReservationStatus.EXPIRED,
    )
    return TransitionResult(won=True, reservation=updated)


async def cancel_reservation(
    repo: ReservationRepository,
    dispatcher: NotificationDispatcher,
    *,
    reservation_id: int,
    message: Optional[str] = None,
) -> Reservation:
    reservation = await repo.get(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")

    # Notification state lives on the row, so notify before deleting it.
    try:
        await dispatcher.notify_cancellation(reservation, message)
    except Exception:
        logger.exception("Cancellation notice for reservation %s failed", reservation_id)

    if not await repo.delete(reservation_id):
        raise ReservationNotFoundError("reservation not found")
    emit_audit_log_quietly(
        action="reservation.cancelled",
        initiator="admin",
        reservation_id=reservation.id,
        booking_date=reservation.date,
        slots=reservation.slots,
        payment_handle=reservation.payment_handle,
        status_from=reservation.status,
        message=message,
    )
    return reservation


async def list_availability(
    repo: ReservationRepository,
    *,
    booking_date: date,
    now: Optional[datetime] = None,
) -> list[str]:
    return await repo.list_active_slots(booking_date, now=now or utc_now_naive())


async def list_reservations(
    repo: ReservationRepository,
    *,
    booking_date: Optional[date] = None,
) -> list[Reservation]:
    return await repo.list_all(booking_date)
