"""At-most-once customer notifications.

Each (reservation, channel) pair carries its own status column. A send first
moves that column from ``unset``/``failed`` to ``pending``; whoever loses that
compare-and-swap does nothing. Delivery outcomes are recorded but never raised.
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union
from zoneinfo import ZoneInfo

from ..domain.repositories import ReservationRepository, SettingsStore
from ..infrastructure.notifications import EmailSender, SmsSender
from ..models import NotificationChannel, NotificationStatus, Reservation
from ..utils.time import utc_naive_to_local

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    copies: tuple[str, ...] = ()


@dataclass(frozen=True)
class SmsMessage:
    to: str
    body: str


Message = Union[EmailMessage, SmsMessage]
MessageBuilder = Callable[[], Awaitable[Message]]


def _hours(reservation: Reservation) -> str:
    return ", ".join(reservation.slots)


def _details_html(reservation: Reservation) -> str:
    return (
        f"<p><strong>Datum:</strong> {reservation.date.isoformat()}</p>"
        f"<p><strong>Hodiny:</strong> {html.escape(_hours(reservation))}</p>"
        f"<p><strong>Jméno:</strong> {html.escape(reservation.customer_name)}</p>"
        f"<p><strong>Email:</strong> {html.escape(reservation.customer_email)}</p>"
        f"<p><strong>Telefon:</strong> {html.escape(reservation.customer_phone)}</p>"
    )


class NotificationDispatcher:
    def __init__(
        self,
        repo: ReservationRepository,
        *,
        email_sender: EmailSender,
        sms_sender: SmsSender,
        settings_store: SettingsStore,
        internal_email: str,
        zone: ZoneInfo,
    ) -> None:
        self.repo = repo
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.settings_store = settings_store
        self.internal_email = internal_email
        self.zone = zone

    async def send_once(
        self,
        reservation_id: int,
        channel: NotificationChannel,
        builder: MessageBuilder,
    ) -> bool:
        """Deliver at most once per channel. Returns True only when this call delivered."""
        try:
            acquired = await self.repo.acquire_notification(reservation_id, channel)
        except Exception:
            logger.exception("Could not lock %s for reservation %s", channel, reservation_id)
            return False
        if not acquired:
            logger.debug("Skipping %s for reservation %s: already handled", channel, reservation_id)
            return False

        outcome = NotificationStatus.FAILED
        try:
            message = await builder()
            await self._deliver(message)
            outcome = NotificationStatus.SENT
        except asyncio.CancelledError:
            # Release the lock as failed so a later trigger can retry.
            logger.warning("Sending %s for reservation %s was cancelled", channel, reservation_id)
            await self._finish(reservation_id, channel, outcome)
            raise
        except Exception:
            logger.exception("Sending %s for reservation %s failed", channel, reservation_id)
        await self._finish(reservation_id, channel, outcome)
        return outcome == NotificationStatus.SENT

    async def _finish(
        self,
        reservation_id: int,
        channel: NotificationChannel,
        outcome: NotificationStatus,
    ) -> None:
        try:
            await self.repo.finish_notification(reservation_id, channel, outcome)
        except Exception:
            logger.exception("Could not record %s=%s for reservation %s", channel, outcome, reservation_id)

    async def _deliver(self, message: Message) -> None:
        if isinstance(message, SmsMessage):
            await self.sms_sender.send_sms(to=message.to, body=message.body)
            return
        await self.email_sender.send_email(to=message.to, subject=message.subject, html=message.html)
        for copy_to in message.copies:
            try:
                await self.email_sender.send_email(to=copy_to, subject=f"Kopie: {message.subject}", html=message.html)
            except Exception:
                logger.exception("Internal copy of %r to %s failed", message.subject, copy_to)

    def _local_time(self, value: Optional[datetime]) -> str:
        if value is None:
            return "-"
        return utc_naive_to_local(value, self.zone).strftime("%H:%M")

    async def notify_payment_request(self, reservation: Reservation) -> bool:
        async def build() -> Message:
            pay_url = html.escape(reservation.payment_url or "")
            return EmailMessage(
                to=reservation.customer_email,
                subject=f"Platba rezervace – {reservation.date.isoformat()}",
                html=(
                    "<h2>Dokončete platbu</h2>"
                    f"<p>Termín držíme do {self._local_time(reservation.hold_deadline)}.</p>"
                    f"<p><strong>Částka:</strong> {reservation.amount} {reservation.currency}</p>"
                    f"{_details_html(reservation)}"
                    f'<p><a href="{pay_url}">Zaplatit</a></p>'
                ),
            )

        return await self.send_once(reservation.id, NotificationChannel.PAYMENT_REQUEST_EMAIL, build)

    async def notify_confirmation(self, reservation: Reservation) -> None:
        async def build_email() -> Message:
            return EmailMessage(
                to=reservation.customer_email,
                subject=f"Potvrzení rezervace – {reservation.date.isoformat()}",
                html=f"<h2>Potvrzení rezervace</h2><p>Potvrzujeme Vaši rezervaci.</p>{_details_html(reservation)}",
                copies=(self.internal_email,) if self.internal_email else (),
            )

        async def build_sms() -> Message:
            access_code = await self.settings_store.get_access_code()
            body = f"Rezervace {reservation.date.isoformat()} ({_hours(reservation)}) je zaplacena."
            if access_code:
                body += f" Kód ke dveřím: {access_code}"
            return SmsMessage(to=reservation.customer_phone, body=body)

        await self.send_once(reservation.id, NotificationChannel.CONFIRMATION_EMAIL, build_email)
        await self.send_once(reservation.id, NotificationChannel.CONFIRMATION_SMS, build_sms)

    async def notify_expiry(self, reservation: Reservation) -> None:
        async def build_email() -> Message:
            return EmailMessage(
                to=reservation.customer_email,
                subject=f"Rezervace vypršela – {reservation.date.isoformat()}",
                html=(
                    "<h2>Rezervace vypršela</h2>"
                    "<p>Platba nedorazila včas, termín jsme uvolnili.</p>"
                    f"{_details_html(reservation)}"
                ),
            )

        async def build_sms() -> Message:
            return SmsMessage(
                to=reservation.customer_phone,
                body=f"Rezervace {reservation.date.isoformat()} ({_hours(reservation)}) vypršela bez platby.",
            )

        await self.send_once(reservation.id, NotificationChannel.EXPIRY_EMAIL, build_email)
        await self.send_once(reservation.id, NotificationChannel.EXPIRY_SMS, build_sms)

    async def notify_cancellation(self, reservation: Reservation, message: Optional[str] = None) -> None:
        note = f"<p>{html.escape(message)}</p>" if message else ""

        async def build_email() -> Message:
            return EmailMessage(
                to=reservation.customer_email,
                subject=f"Zrušení rezervace – {reservation.date.isoformat()}",
                html=f"<h2>Rezervace byla zrušena</h2>{note}{_details_html(reservation)}",
                copies=(self.internal_email,) if self.internal_email else (),
            )

        async def build_sms() -> Message:
            body = f"Rezervace {reservation.date.isoformat()} ({_hours(reservation)}) byla zrušena."
            if message:
                body += f" {message}"
            return SmsMessage(to=reservation.customer_phone, body=body)

        await self.send_once(reservation.id, NotificationChannel.CANCELLATION_EMAIL, build_email)
        await self.send_once(reservation.id, NotificationChannel.CANCELLATION_SMS, build_sms)
