from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from ..domain.errors import NotificationError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com"
TWILIO_API_URL = "https://api.twilio.com"


class EmailSender(Protocol):
    async def send_email(self, *, to: str, subject: str, html: str) -> None: ...


class SmsSender(Protocol):
    async def send_sms(self, *, to: str, body: str) -> None: ...


async def _post(client: httpx.AsyncClient, url: str, **kwargs: Any) -> dict[str, Any]:
    try:
        response = await client.post(url, **kwargs)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        raise NotificationError(f"transport rejected message: {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise NotificationError(f"transport unreachable: {exc}") from exc
    except ValueError as exc:
        raise NotificationError("transport returned malformed body") from exc


class ResendEmailSender(EmailSender):
    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self._client = client or httpx.AsyncClient(base_url=RESEND_API_URL, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_email(self, *, to: str, subject: str, html: str) -> None:
        if not self.api_key:
            raise NotificationError("RESEND_API_KEY is not configured")
        body = await _post(
            self._client,
            "/emails",
            json={"from": self.sender, "to": [to], "subject": subject, "html": html},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        logger.info("Email %s sent to %s", body.get("id"), to)


class TwilioSmsSender(SmsSender):
    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        sender: str = "",
        messaging_service_sid: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.sender = sender
        self.messaging_service_sid = messaging_service_sid
        self._client = client or httpx.AsyncClient(base_url=TWILIO_API_URL, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_sms(self, *, to: str, body: str) -> None:
        if not self.account_sid or not self.auth_token:
            raise NotificationError("Missing TWILIO_ACCOUNT_SID or TWILIO_AUTH_TOKEN")
        if not to or not to.startswith("+"):
            raise NotificationError(f"Invalid recipient (must be E.164): {to}")
        form = {"To": to, "Body": body}
        if self.messaging_service_sid:
            form["MessagingServiceSid"] = self.messaging_service_sid
        elif self.sender:
            form["From"] = self.sender
        else:
            raise NotificationError("Set TWILIO_MESSAGING_SERVICE_SID or TWILIO_FROM")
        result = await _post(
            self._client,
            f"/2010-04-01/Accounts/{self.account_sid}/Messages.json",
            data=form,
            auth=(self.account_sid, self.auth_token),
        )
        logger.info("SMS %s queued to %s with status %s", result.get("sid"), to, result.get("status"))
