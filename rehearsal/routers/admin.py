from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from ..config import Settings
from ..deps import check_admin_password, get_app_settings, get_dispatcher, get_reservation_repo, require_admin
from ..domain.errors import PersistenceError, ReservationNotFoundError
from ..domain.repositories import ReservationRepository
from ..schemas import AdminLogin, ReservationCancel, ReservationRead, TokenRead
from ..usecases import reservations as reservation_usecase
from ..usecases.notifications import NotificationDispatcher
from ..utils.auth import ADMIN_SUBJECT, create_access_token

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/token", response_model=TokenRead)
async def issue_token(
    payload: AdminLogin,
    settings: Settings = Depends(get_app_settings),
) -> TokenRead:
    if not check_admin_password(payload.password, settings):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    token = create_access_token(subject=ADMIN_SUBJECT, secret=settings.auth_secret, algorithm=settings.auth_algorithm)
    return TokenRead(access_token=token)


@router.get("/reservations", response_model=List[ReservationRead], dependencies=[Depends(require_admin)])
async def list_reservations(
    booking_date: Optional[date] = Query(default=None, alias="date"),
    repo: ReservationRepository = Depends(get_reservation_repo),
) -> list[ReservationRead]:
    try:
        rows = await reservation_usecase.list_reservations(repo, booking_date=booking_date)
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Chyba serveru")
    return [ReservationRead.from_db(reservation=row) for row in rows]


@router.post(
    "/reservations/{reservation_id}/cancel",
    response_model=ReservationRead,
    dependencies=[Depends(require_admin)],
)
async def cancel_reservation(
    payload: Optional[ReservationCancel] = None,
    reservation_id: int = Path(..., ge=1),
    repo: ReservationRepository = Depends(get_reservation_repo),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ReservationRead:
    try:
        reservation = await reservation_usecase.cancel_reservation(
            repo,
            dispatcher,
            reservation_id=reservation_id,
            message=payload.message if payload is not None else None,
        )
    except ReservationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Chyba serveru")
    return ReservationRead.from_db(reservation=reservation)
