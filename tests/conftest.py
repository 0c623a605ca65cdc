from datetime import date, datetime
from typing import AsyncIterator, Awaitable, Callable, Optional

import pytest
import pytest_asyncio
from helpers import CUSTOMER, FakeGateway, RecordingEmailSender, RecordingSmsSender, StaticSettingsStore, future_date
from rehearsal.config import Settings
from rehearsal.infrastructure.repositories import SqlAlchemyReservationRepository
from rehearsal.models import Base, Reservation
from rehearsal.usecases.notifications import NotificationDispatcher
from rehearsal.usecases.reservations import create_reservation
from rehearsal.utils.time import get_zone
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        hold_minutes=15,
        currency="CZK",
        internal_email="info@test.cz",
        auth_secret="testsecret",
        admin_password="letmein",
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
def repo(session_factory: async_sessionmaker[AsyncSession]) -> SqlAlchemyReservationRepository:
    return SqlAlchemyReservationRepository(session_factory)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def sms_sender() -> RecordingSmsSender:
    return RecordingSmsSender()


@pytest.fixture
def settings_store() -> StaticSettingsStore:
    return StaticSettingsStore()


@pytest.fixture
def dispatcher(
    repo: SqlAlchemyReservationRepository,
    email_sender: RecordingEmailSender,
    sms_sender: RecordingSmsSender,
    settings_store: StaticSettingsStore,
    settings: Settings,
) -> NotificationDispatcher:
    return NotificationDispatcher(
        repo,
        email_sender=email_sender,
        sms_sender=sms_sender,
        settings_store=settings_store,
        internal_email=settings.internal_email,
        zone=get_zone(settings.timezone),
    )


@pytest.fixture
def book(
    repo: SqlAlchemyReservationRepository,
    gateway: FakeGateway,
    settings_store: StaticSettingsStore,
    dispatcher: NotificationDispatcher,
    settings: Settings,
) -> Callable[..., Awaitable[Reservation]]:
    """Book through the full use case; keyword overrides replace the default customer fields."""

    async def _book(
        slots: list[str],
        *,
        booking_date: Optional[date] = None,
        now: Optional[datetime] = None,
        **customer: str,
    ) -> Reservation:
        return await create_reservation(
            repo,
            gateway,
            settings_store,
            dispatcher,
            settings=settings,
            booking_date=booking_date or future_date(),
            slots=slots,
            now=now,
            **{**CUSTOMER, **customer},
        )

    return _book
