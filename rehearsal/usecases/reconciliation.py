"""Payment reconciliation: webhook push, periodic poll, manual confirm.

All three paths end in the same conditional `mark_paid`, so any number of
duplicate or concurrent confirmations produce one transition and one
confirmation notice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..domain.errors import ReservationError, ReservationNotFoundError
from ..domain.payments import PaymentGateway, PaymentState
from ..domain.repositories import ReservationRepository
from ..models import Reservation, ReservationStatus
from ..utils.audit_log import AuditInitiator
from ..utils.time import utc_now_naive
from .notifications import NotificationDispatcher
from .reservations import mark_paid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmOutcome:
    reservation_id: int
    status: ReservationStatus
    payment_state: Optional[PaymentState]


@dataclass
class PollReport:
    checked: int = 0
    paid: int = 0
    errors: int = 0


async def _apply_state(
    repo: ReservationRepository,
    dispatcher: NotificationDispatcher,
    reservation: Reservation,
    state: PaymentState,
    *,
    initiator: AuditInitiator,
) -> bool:
    """Drive `reservation` from an observed gateway state. Returns True if this call won `paid`."""
    if not state.is_paid:
        await repo.note_payment_state(reservation.id, state.describe())
        return False
    result = await mark_paid(repo, reservation.id, initiator=initiator)
    if result.won and result.reservation is not None:
        await dispatcher.notify_confirmation(result.reservation)
        return True
    return False


async def handle_payment_notification(
    repo: ReservationRepository,
    gateway: PaymentGateway,
    dispatcher: NotificationDispatcher,
    *,
    handle: Optional[str],
) -> bool:
    """Webhook entry point. Never raises; the gateway always gets a success reply."""
    if not handle:
        logger.warning("Payment notification without a payment id")
        return False
    try:
        reservation = await repo.get_by_handle(handle)
        if reservation is None:
            logger.warning("Payment notification for unknown payment %s", handle)
            return False
        state = await gateway.get_payment_state(handle)
        if state.is_paid and reservation.status not in (ReservationStatus.PENDING, ReservationStatus.PAID):
            logger.warning("Payment %s settled after reservation %s became %s", handle, reservation.id, reservation.status)
        return await _apply_state(repo, dispatcher, reservation, state, initiator="gateway")
    except ReservationError as exc:
        logger.error("Payment notification for %s not processed: %s", handle, exc)
    except Exception:
        logger.exception("Unexpected error handling payment notification for %s", handle)
    return False


async def poll_pending_payments(
    repo: ReservationRepository,
    gateway: PaymentGateway,
    dispatcher: NotificationDispatcher,
    *,
    limit: int,
    now: Optional[datetime] = None,
) -> PollReport:
    report = PollReport()
    try:
        pending = await repo.list_reconcilable(now=now or utc_now_naive(), limit=limit)
    except ReservationError as exc:
        logger.error("Payment poll skipped: %s", exc)
        report.errors += 1
        return report

    for reservation in pending:
        report.checked += 1
        try:
            state = await gateway.get_payment_state(reservation.payment_handle or "")
            if await _apply_state(repo, dispatcher, reservation, state, initiator="system"):
                report.paid += 1
        except ReservationError as exc:
            report.errors += 1
            logger.warning("Polling payment for reservation %s failed: %s", reservation.id, exc)
        except Exception:
            report.errors += 1
            logger.exception("Unexpected error polling reservation %s", reservation.id)
    if report.checked:
        logger.info("Payment poll checked=%s paid=%s errors=%s", report.checked, report.paid, report.errors)
    return report


async def confirm_reservation(
    repo: ReservationRepository,
    gateway: PaymentGateway,
    dispatcher: NotificationDispatcher,
    *,
    reservation_id: int,
) -> ConfirmOutcome:
    reservation = await repo.get(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")
    if reservation.payment_handle is None:
        return ConfirmOutcome(reservation_id=reservation.id, status=reservation.status, payment_state=None)

    state = await gateway.get_payment_state(reservation.payment_handle)
    if reservation.status == ReservationStatus.PENDING:
        await _apply_state(repo, dispatcher, reservation, state, initiator="customer")

    current = await repo.get(reservation_id)
    status = current.status if current is not None else reservation.status
    return ConfirmOutcome(reservation_id=reservation.id, status=status, payment_state=state)
