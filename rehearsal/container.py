"""Wires ledger, collaborators, dispatcher and background jobs together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings
from .domain.payments import PaymentGateway
from .domain.repositories import ReservationRepository, SettingsStore
from .infrastructure.gateway import GoPayGateway
from .infrastructure.notifications import EmailSender, ResendEmailSender, SmsSender, TwilioSmsSender
from .infrastructure.repositories import SqlAlchemyReservationRepository
from .infrastructure.settings_store import SqlAlchemySettingsStore
from .scheduler import Scheduler
from .usecases.expiry import sweep_expired_holds
from .usecases.notifications import NotificationDispatcher
from .usecases.reconciliation import poll_pending_payments
from .utils.time import get_zone

POLL_TASK = "payment-poll"
EXPIRY_TASK = "expiry-sweep"


@dataclass(frozen=True)
class Services:
    settings: Settings
    repo: ReservationRepository
    settings_store: SettingsStore
    gateway: PaymentGateway
    dispatcher: NotificationDispatcher
    scheduler: Scheduler


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    gateway: Optional[PaymentGateway] = None,
    email_sender: Optional[EmailSender] = None,
    sms_sender: Optional[SmsSender] = None,
) -> Services:
    repo = SqlAlchemyReservationRepository(session_factory)
    settings_store = SqlAlchemySettingsStore(
        session_factory,
        default_price_per_slot=settings.default_price_per_slot,
        default_access_code=settings.default_access_code,
    )
    gateway = gateway or GoPayGateway(
        base_url=settings.gopay_base_url,
        client_id=settings.gopay_client_id,
        client_secret=settings.gopay_client_secret,
        goid=settings.gopay_goid,
        timeout=settings.gateway_timeout_seconds,
    )
    dispatcher = NotificationDispatcher(
        repo,
        email_sender=email_sender or ResendEmailSender(api_key=settings.resend_api_key, sender=settings.email_from),
        sms_sender=sms_sender
        or TwilioSmsSender(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            sender=settings.twilio_from,
            messaging_service_sid=settings.twilio_messaging_service_sid,
        ),
        settings_store=settings_store,
        internal_email=settings.internal_email,
        zone=get_zone(settings.timezone),
    )
    scheduler = Scheduler()
    scheduler.add(
        POLL_TASK,
        lambda: poll_pending_payments(repo, gateway, dispatcher, limit=settings.poll_batch_limit),
        interval=settings.poll_interval_seconds,
    )
    scheduler.add(
        EXPIRY_TASK,
        lambda: sweep_expired_holds(repo, dispatcher),
        interval=settings.expiry_interval_seconds,
    )
    return Services(
        settings=settings,
        repo=repo,
        settings_store=settings_store,
        gateway=gateway,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )


async def close_services(services: Services) -> None:
    await services.scheduler.stop()
    for client in (services.gateway, services.dispatcher.email_sender, services.dispatcher.sms_sender):
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()
