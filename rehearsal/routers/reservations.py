from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Path, status

from ..config import Settings
from ..deps import get_app_settings, get_dispatcher, get_gateway, get_reservation_repo, get_settings_store
from ..domain.errors import ConflictError, GatewayError, PersistenceError, ReservationNotFoundError, ValidationError
from ..domain.payments import PaymentGateway
from ..domain.repositories import ReservationRepository, SettingsStore
from ..schemas import AvailabilityRead, BookingCreate, BookingRead, ConfirmRead
from ..usecases import reconciliation as reconciliation_usecase
from ..usecases import reservations as reservation_usecase
from ..usecases.notifications import NotificationDispatcher

router = APIRouter(prefix="", tags=["reservations"])


@router.post("/reservations", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: BookingCreate,
    repo: ReservationRepository = Depends(get_reservation_repo),
    gateway: PaymentGateway = Depends(get_gateway),
    settings_store: SettingsStore = Depends(get_settings_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
) -> BookingRead:
    try:
        reservation = await reservation_usecase.create_reservation(
            repo,
            gateway,
            settings_store,
            dispatcher,
            settings=settings,
            booking_date=payload.date,
            slots=payload.slots,
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except ConflictError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Termín je již rezervovaný.")
    except GatewayError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="payment gateway unavailable")
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Chyba serveru")

    return BookingRead.from_db(reservation=reservation)


@router.get("/availability/{booking_date}", response_model=AvailabilityRead)
async def get_availability(
    booking_date: date,
    repo: ReservationRepository = Depends(get_reservation_repo),
) -> AvailabilityRead:
    try:
        slots = await reservation_usecase.list_availability(repo, booking_date=booking_date)
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Chyba serveru")
    return AvailabilityRead(date=booking_date, slots=slots)


@router.post("/reservations/{reservation_id}/confirm", response_model=ConfirmRead)
async def confirm_reservation(
    reservation_id: int = Path(..., ge=1),
    repo: ReservationRepository = Depends(get_reservation_repo),
    gateway: PaymentGateway = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ConfirmRead:
    try:
        outcome = await reconciliation_usecase.confirm_reservation(
            repo,
            gateway,
            dispatcher,
            reservation_id=reservation_id,
        )
    except ReservationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
    except GatewayError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="payment gateway unavailable")
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Chyba serveru")
    return ConfirmRead.from_outcome(outcome)
