from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx

from ..domain.errors import GatewayError
from ..domain.payments import PaymentGateway, PaymentHandle, PaymentState

logger = logging.getLogger(__name__)

# Refresh the OAuth token this many seconds before the provider says it expires.
TOKEN_REFRESH_MARGIN = 60


class GoPayGateway(PaymentGateway):
    """GoPay REST client. Every failure surfaces as GatewayError; nothing is retried here."""

    def __init__(
        self,
        *,
        base_url: str,
        client_id: str,
        client_secret: str,
        goid: str,
        timeout: float,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.goid = goid
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            raise GatewayError(f"payment gateway timed out on {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                f"payment gateway rejected {method} {url}: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"payment gateway unreachable: {exc}") from exc
        except ValueError as exc:
            raise GatewayError(f"payment gateway returned malformed body for {url}") from exc
        if not isinstance(body, dict):
            raise GatewayError(f"payment gateway returned unexpected body for {url}")
        return body

    async def _access_token(self) -> str:
        if self._token is not None and time.monotonic() < self._token_expires_at:
            return self._token
        body = await self._request(
            "POST",
            "/api/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials", "scope": "payment-all"},
            headers={"Accept": "application/json"},
        )
        token = body.get("access_token")
        if not token:
            raise GatewayError("payment gateway did not issue an access token")
        expires_in = int(body.get("expires_in", 0) or 0)
        self._token = str(token)
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_REFRESH_MARGIN, 0)
        return self._token

    async def _authorized_headers(self) -> dict[str, str]:
        token = await self._access_token()
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def create_payment(
        self,
        *,
        amount: int,
        currency: str,
        order_ref: str,
        return_url: str,
        notify_url: str,
        payer_email: str | None = None,
    ) -> PaymentHandle:
        payload: dict[str, Any] = {
            "target": {"type": "ACCOUNT", "goid": self.goid},
            "amount": amount * 100,  # minor units
            "currency": currency,
            "order_number": order_ref,
            "order_description": f"Rezervace zkušebny #{order_ref}",
            "callback": {"return_url": return_url, "notification_url": notify_url},
            "lang": "CS",
        }
        if payer_email:
            payload["payer"] = {"contact": {"email": payer_email}}
        body = await self._request(
            "POST",
            "/api/payments/payment",
            json=payload,
            headers=await self._authorized_headers(),
        )
        handle = body.get("id")
        pay_url = body.get("gw_url")
        if handle is None or not pay_url:
            raise GatewayError("payment gateway response is missing id or gw_url")
        logger.info("Created payment %s for order %s", handle, order_ref)
        return PaymentHandle(handle=str(handle), pay_url=str(pay_url))

    async def get_payment_state(self, handle: str) -> PaymentState:
        body = await self._request(
            "GET",
            f"/api/payments/payment/{handle}",
            headers=await self._authorized_headers(),
        )
        return PaymentState.from_provider(body.get("state"))
