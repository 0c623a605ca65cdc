from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Optional, Protocol


class PaymentStateKind(StrEnum):
    CREATED = "created"
    PAID = "paid"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    UNKNOWN = "unknown"


# Provider spellings mapped onto the closed set above. Anything else is UNKNOWN.
_PROVIDER_STATES = {
    "CREATED": PaymentStateKind.CREATED,
    "PAYMENT_METHOD_CHOSEN": PaymentStateKind.CREATED,
    "AUTHORIZED": PaymentStateKind.CREATED,
    "PAID": PaymentStateKind.PAID,
    "CANCELED": PaymentStateKind.CANCELED,
    "CANCELLED": PaymentStateKind.CANCELED,
    "TIMEOUTED": PaymentStateKind.TIMED_OUT,
    "TIMED_OUT": PaymentStateKind.TIMED_OUT,
    "FAILED": PaymentStateKind.FAILED,
}


@dataclass(frozen=True)
class PaymentState:
    kind: PaymentStateKind
    raw: Optional[str] = None

    @classmethod
    def from_provider(cls, raw: Optional[str]) -> "PaymentState":
        key = (raw or "").strip().upper()
        return cls(kind=_PROVIDER_STATES.get(key, PaymentStateKind.UNKNOWN), raw=raw)

    @property
    def is_paid(self) -> bool:
        return self.kind == PaymentStateKind.PAID

    def describe(self) -> str:
        if self.kind == PaymentStateKind.UNKNOWN:
            return f"unknown({self.raw})"
        return self.kind.value


@dataclass(frozen=True)
class PaymentHandle:
    handle: str
    pay_url: str


class PaymentGateway(Protocol):
    async def create_payment(
        self,
        *,
        amount: int,
        currency: str,
        order_ref: str,
        return_url: str,
        notify_url: str,
        payer_email: str | None = None,
    ) -> PaymentHandle: ...

    async def get_payment_state(self, handle: str) -> PaymentState: ...
