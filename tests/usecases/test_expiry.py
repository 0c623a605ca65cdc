from datetime import timedelta

import pytest
from helpers import FakeGateway, RecordingEmailSender, RecordingSmsSender, future_date
from rehearsal.infrastructure.repositories import SqlAlchemyReservationRepository
from rehearsal.models import ReservationStatus
from rehearsal.usecases.expiry import sweep_expired_holds
from rehearsal.usecases.notifications import NotificationDispatcher
from rehearsal.usecases.reconciliation import handle_payment_notification
from rehearsal.usecases.reservations import list_availability
from rehearsal.utils.time import utc_now_naive


@pytest.mark.asyncio
async def test_lapsed_hold_is_expired_notified_and_removed(
    book,
    repo: SqlAlchemyReservationRepository,
    dispatcher: NotificationDispatcher,
    email_sender: RecordingEmailSender,
    sms_sender: RecordingSmsSender,
) -> None:
    reservation = await book(["20:00-21:00"])
    after_deadline = reservation.hold_deadline + timedelta(seconds=1)

    assert await list_availability(repo, booking_date=future_date()) == ["20:00-21:00"]
    assert await sweep_expired_holds(repo, dispatcher, now=after_deadline) == 1

    assert await repo.get(reservation.id) is None
    assert await list_availability(repo, booking_date=future_date()) == []
    subject = f"Rezervace vypršela – {future_date().isoformat()}"
    assert email_sender.subjects_to("kapela@example.com").count(subject) == 1
    assert len(sms_sender.sent) == 1
    assert "vypršela" in sms_sender.sent[0]["body"]

    assert await sweep_expired_holds(repo, dispatcher, now=after_deadline) == 0
    assert len(sms_sender.sent) == 1


@pytest.mark.asyncio
async def test_live_and_paid_reservations_survive_sweep(
    book,
    repo: SqlAlchemyReservationRepository,
    gateway: FakeGateway,
    dispatcher: NotificationDispatcher,
) -> None:
    live = await book(["18:00-19:00"])
    paid = await book(["19:00-20:00"])
    gateway.states[paid.payment_handle] = "PAID"
    await handle_payment_notification(repo, gateway, dispatcher, handle=paid.payment_handle)

    assert await sweep_expired_holds(repo, dispatcher) == 0
    assert await repo.get(live.id) is not None
    still_paid = await repo.get(paid.id)
    assert still_paid is not None
    assert still_paid.status == ReservationStatus.PAID

    # Long after the hold window the paid row still stays.
    assert await sweep_expired_holds(repo, dispatcher, now=utc_now_naive() + timedelta(days=1)) == 1
    assert await repo.get(paid.id) is not None
    assert await repo.get(live.id) is None


@pytest.mark.asyncio
async def test_reclaimed_hold_is_cleaned_up_by_sweep(
    book,
    repo: SqlAlchemyReservationRepository,
    dispatcher: NotificationDispatcher,
    sms_sender: RecordingSmsSender,
) -> None:
    stale = await book(["20:00-21:00"], now=utc_now_naive() - timedelta(minutes=20))
    fresh = await book(["20:00-21:00"], name="Druhá Kapela", email="druha@example.com", phone="+420777000111")

    assert await sweep_expired_holds(repo, dispatcher) == 1
    assert await repo.get(stale.id) is None
    assert await repo.get(fresh.id) is not None
    assert [sms["to"] for sms in sms_sender.sent] == ["+420777123456"]


@pytest.mark.asyncio
async def test_expiry_notice_failure_does_not_block_cleanup(
    book,
    repo: SqlAlchemyReservationRepository,
    dispatcher: NotificationDispatcher,
    email_sender: RecordingEmailSender,
    sms_sender: RecordingSmsSender,
) -> None:
    reservation = await book(["20:00-21:00"], now=utc_now_naive() - timedelta(minutes=20))
    email_sender.fail = True
    sms_sender.fail = True

    assert await sweep_expired_holds(repo, dispatcher) == 1
    assert await repo.get(reservation.id) is None
