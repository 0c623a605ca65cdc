import logging
from datetime import datetime
from typing import Optional

from ..domain.errors import ReservationError
from ..domain.repositories import ReservationRepository
from ..models import Reservation, ReservationStatus
from ..utils.time import utc_now_naive
from .notifications import NotificationDispatcher
from .reservations import mark_expired

logger = logging.getLogger(__name__)


async def _expire_one(
    repo: ReservationRepository,
    dispatcher: NotificationDispatcher,
    reservation: Reservation,
) -> bool:
    snapshot: Optional[Reservation] = reservation
    if reservation.status == ReservationStatus.PENDING:
        result = await mark_expired(repo, reservation.id)
        if result.won:
            snapshot = result.reservation
        else:
            # Lost to mark_paid, or someone else already expired it.
            snapshot = await repo.get(reservation.id)
            if snapshot is None or snapshot.status != ReservationStatus.EXPIRED:
                return False

    if snapshot is None:
        return False
    try:
        await dispatcher.notify_expiry(snapshot)
    except Exception:
        logger.exception("Expiry notice for reservation %s failed", reservation.id)
    return await repo.delete(reservation.id, expected=ReservationStatus.EXPIRED)


async def sweep_expired_holds(
    repo: ReservationRepository,
    dispatcher: NotificationDispatcher,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Expire lapsed holds, notify once, delete. Returns the number of rows removed."""
    try:
        candidates = await repo.list_expirable(now=now or utc_now_naive())
    except ReservationError as exc:
        logger.error("Expiry sweep skipped: %s", exc)
        return 0

    removed = 0
    for reservation in candidates:
        try:
            if await _expire_one(repo, dispatcher, reservation):
                removed += 1
        except ReservationError as exc:
            logger.warning("Expiring reservation %s failed: %s", reservation.id, exc)
    if removed:
        logger.info("Expiry sweep removed %s reservation(s)", removed)
    return removed
