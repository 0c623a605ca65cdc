from datetime import date, datetime, timedelta

import pytest
from helpers import CUSTOMER, FakeGateway, RecordingEmailSender, StaticSettingsStore, future_date
from rehearsal.config import Settings
from rehearsal.domain.errors import (
    ConflictError,
    GatewayError,
    PersistenceError,
    ReservationNotFoundError,
    ValidationError,
)
from rehearsal.infrastructure.repositories import SqlAlchemyReservationRepository
from rehearsal.models import NotificationStatus, ReservationStatus
from rehearsal.usecases.notifications import NotificationDispatcher
from rehearsal.usecases.reservations import (
    cancel_reservation,
    create_reservation,
    list_availability,
    mark_paid,
)


@pytest.mark.asyncio
async def test_booking_creates_pending_hold_with_payment(
    book,
    repo: SqlAlchemyReservationRepository,
    gateway: FakeGateway,
    email_sender: RecordingEmailSender,
) -> None:
    now = datetime(2026, 1, 5, 15, 0)
    reservation = await book(["20:00-21:00"], booking_date=date(2026, 1, 5), now=now)

    assert reservation.status == ReservationStatus.PENDING
    assert reservation.amount == 200
    assert reservation.currency == "CZK"
    assert reservation.hold_deadline == now + timedelta(minutes=15)
    assert reservation.payment_handle == f"pay-{reservation.id}"
    assert gateway.created[0]["amount"] == 200

    stored = await repo.get(reservation.id)
    assert stored is not None
    assert stored.payment_handle == reservation.payment_handle
    assert stored.payment_request_email_status == NotificationStatus.SENT
    assert email_sender.subjects_to("kapela@example.com") == ["Platba rezervace – 2026-01-05"]


@pytest.mark.asyncio
async def test_amount_uses_stored_price(book, settings_store: StaticSettingsStore) -> None:
    settings_store.price = 350
    reservation = await book(["18:00-19:00", "19:00-20:00"])
    assert reservation.amount == 700


@pytest.mark.asyncio
async def test_second_booking_for_same_slot_conflicts(book, repo: SqlAlchemyReservationRepository) -> None:
    await book(["20:00-21:00"])
    with pytest.raises(ConflictError):
        await book(["20:00–21:00"], name="Jiná Kapela", email="jina@example.com")
    assert len(await repo.list_all(future_date())) == 1


@pytest.mark.asyncio
async def test_disjoint_slots_on_same_day_coexist(book) -> None:
    first = await book(["18:00-19:00"])
    second = await book(["19:00-20:00"])
    assert first.id != second.id


@pytest.mark.asyncio
async def test_gateway_failure_releases_slot(
    book,
    repo: SqlAlchemyReservationRepository,
    gateway: FakeGateway,
    email_sender: RecordingEmailSender,
) -> None:
    gateway.fail_create = True
    with pytest.raises(GatewayError):
        await book(["20:00-21:00"])

    [failed] = await repo.list_all(future_date())
    assert failed.status == ReservationStatus.FAILED
    assert await list_availability(repo, booking_date=future_date()) == []
    assert email_sender.sent == []

    gateway.fail_create = False
    retry = await book(["20:00-21:00"])
    assert retry.status == ReservationStatus.PENDING


class _AttachFailsRepository(SqlAlchemyReservationRepository):
    async def attach_payment(self, reservation_id: int, *, handle: str, pay_url: str) -> bool:
        raise PersistenceError("reservation ledger unavailable")


class _ReleaseFailsRepository(SqlAlchemyReservationRepository):
    async def transition_if(self, reservation_id, expected, new):
        if new == ReservationStatus.FAILED:
            raise PersistenceError("reservation ledger unavailable")
        return await super().transition_if(reservation_id, expected, new)


@pytest.mark.asyncio
async def test_attach_failure_releases_hold(
    session_factory,
    repo: SqlAlchemyReservationRepository,
    gateway: FakeGateway,
    settings_store: StaticSettingsStore,
    dispatcher: NotificationDispatcher,
    email_sender: RecordingEmailSender,
    settings: Settings,
) -> None:
    with pytest.raises(PersistenceError):
        await create_reservation(
            _AttachFailsRepository(session_factory),
            gateway,
            settings_store,
            dispatcher,
            settings=settings,
            booking_date=future_date(),
            slots=["20:00-21:00"],
            **CUSTOMER,
        )

    [failed] = await repo.list_all(future_date())
    assert failed.status == ReservationStatus.FAILED
    assert failed.payment_handle is None
    assert len(gateway.created) == 1
    assert await list_availability(repo, booking_date=future_date()) == []
    assert email_sender.sent == []


@pytest.mark.asyncio
async def test_release_failure_keeps_gateway_error(
    session_factory,
    repo: SqlAlchemyReservationRepository,
    gateway: FakeGateway,
    settings_store: StaticSettingsStore,
    dispatcher: NotificationDispatcher,
    settings: Settings,
) -> None:
    gateway.fail_create = True
    with pytest.raises(GatewayError):
        await create_reservation(
            _ReleaseFailsRepository(session_factory),
            gateway,
            settings_store,
            dispatcher,
            settings=settings,
            booking_date=future_date(),
            slots=["20:00-21:00"],
            **CUSTOMER,
        )

    # Left for the expiry sweeper.
    [pending] = await repo.list_all(future_date())
    assert pending.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_past_date_is_rejected_before_any_write(
    book,
    repo: SqlAlchemyReservationRepository,
    gateway: FakeGateway,
) -> None:
    with pytest.raises(ValidationError):
        await book(["20:00-21:00"], booking_date=date(2026, 1, 4), now=datetime(2026, 1, 5, 12, 0))
    assert gateway.created == []
    assert await repo.list_all() == []


@pytest.mark.asyncio
async def test_invalid_phone_is_rejected(book) -> None:
    with pytest.raises(ValidationError):
        await book(["20:00-21:00"], phone="unknown")


@pytest.mark.asyncio
async def test_mark_paid_has_one_winner(book, repo: SqlAlchemyReservationRepository) -> None:
    reservation = await book(["20:00-21:00"])
    first = await mark_paid(repo, reservation.id)
    second = await mark_paid(repo, reservation.id)
    assert first.won
    assert first.reservation is not None
    assert first.reservation.status == ReservationStatus.PAID
    assert not second.won


@pytest.mark.asyncio
async def test_cancel_notifies_and_frees_slot(
    book,
    repo: SqlAlchemyReservationRepository,
    dispatcher: NotificationDispatcher,
    email_sender: RecordingEmailSender,
    sms_sender,
) -> None:
    reservation = await book(["20:00-21:00"])
    await mark_paid(repo, reservation.id)

    cancelled = await cancel_reservation(repo, dispatcher, reservation_id=reservation.id, message="Havárie topení.")

    assert cancelled.id == reservation.id
    assert await repo.get(reservation.id) is None
    subject = f"Zrušení rezervace – {future_date().isoformat()}"
    assert email_sender.subjects_to("kapela@example.com")[-1] == subject
    assert email_sender.subjects_to("info@test.cz") == [f"Kopie: {subject}"]
    assert "Havárie topení." in sms_sender.sent[-1]["body"]
    await book(["20:00-21:00"])


@pytest.mark.asyncio
async def test_cancel_survives_notification_failure(
    book,
    repo: SqlAlchemyReservationRepository,
    dispatcher: NotificationDispatcher,
    email_sender: RecordingEmailSender,
) -> None:
    reservation = await book(["20:00-21:00"])
    email_sender.fail = True
    await cancel_reservation(repo, dispatcher, reservation_id=reservation.id)
    assert await repo.get(reservation.id) is None


@pytest.mark.asyncio
async def test_cancel_unknown_reservation(repo: SqlAlchemyReservationRepository, dispatcher: NotificationDispatcher) -> None:
    with pytest.raises(ReservationNotFoundError):
        await cancel_reservation(repo, dispatcher, reservation_id=999)
