import asyncio
from datetime import date, timedelta

from rehearsal.domain.errors import GatewayError, NotificationError
from rehearsal.domain.payments import PaymentHandle, PaymentState
from rehearsal.utils.time import get_zone, local_today


class FakeGateway:
    def __init__(self) -> None:
        self.states: dict[str, str] = {}
        self.created: list[dict[str, object]] = []
        self.fail_create = False
        self.fail_state = False
        self.state_calls = 0

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
        if self.fail_create:
            raise GatewayError("gateway down")
        handle = f"pay-{order_ref}"
        self.created.append({"amount": amount, "currency": currency, "order_ref": order_ref, "handle": handle})
        self.states.setdefault(handle, "CREATED")
        return PaymentHandle(handle=handle, pay_url=f"https://gw.test/{handle}")

    async def get_payment_state(self, handle: str) -> PaymentState:
        self.state_calls += 1
        if self.fail_state:
            raise GatewayError("gateway timed out")
        return PaymentState.from_provider(self.states.get(handle))


class RecordingEmailSender:
    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False

    async def send_email(self, *, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise NotificationError("mail transport down")
        self.sent.append({"to": to, "subject": subject, "html": html})

    def subjects_to(self, recipient: str) -> list[str]:
        return [mail["subject"] for mail in self.sent if mail["to"] == recipient]


class RecordingSmsSender:
    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False

    async def send_sms(self, *, to: str, body: str) -> None:
        if self.fail:
            raise NotificationError("sms transport down")
        self.sent.append({"to": to, "body": body})


class SlowSmsSender(RecordingSmsSender):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.started = asyncio.Event()

    async def send_sms(self, *, to: str, body: str) -> None:
        self.started.set()
        await asyncio.sleep(self.delay)
        await super().send_sms(to=to, body=body)


class StaticSettingsStore:
    def __init__(self, price: int = 200, access_code: str = "4321") -> None:
        self.price = price
        self.access_code = access_code

    async def get_price_per_slot(self) -> int:
        return self.price

    async def get_access_code(self) -> str:
        return self.access_code


def future_date(days: int = 30) -> date:
    return local_today(get_zone("Europe/Prague")) + timedelta(days=days)


CUSTOMER = {"name": "Jan Novák", "email": "kapela@example.com", "phone": "+420777123456"}
