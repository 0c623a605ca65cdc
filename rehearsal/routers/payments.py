import json
import logging
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request

from ..deps import get_dispatcher, get_gateway, get_reservation_repo
from ..domain.payments import PaymentGateway
from ..domain.repositories import ReservationRepository
from ..usecases import reconciliation as reconciliation_usecase
from ..usecases.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

# Field names the gateway (and older integrations) have used for the payment id.
PAYMENT_ID_FIELDS = ("id", "paymentId", "payment_id", "idPayment", "parentId")


def extract_payment_id(*sources: Mapping[str, Any]) -> Optional[str]:
    for source in sources:
        for field in PAYMENT_ID_FIELDS:
            value = source.get(field)
            if isinstance(value, list):
                value = value[0] if value else None
            if value is not None and str(value).strip():
                return str(value).strip()
    return None


def _parse_body(raw: bytes) -> Mapping[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return parse_qs(raw.decode("utf-8", errors="replace"))
    return parsed if isinstance(parsed, dict) else {}


@router.api_route("/notify", methods=["GET", "POST"])
async def payment_notification(
    request: Request,
    repo: ReservationRepository = Depends(get_reservation_repo),
    gateway: PaymentGateway = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict[str, str]:
    # Always 200: an error reply only makes the gateway retry harder.
    try:
        body = _parse_body(await request.body())
    except Exception:
        logger.exception("Unreadable payment notification body")
        body = {}
    handle = extract_payment_id(request.query_params, body)
    await reconciliation_usecase.handle_payment_notification(repo, gateway, dispatcher, handle=handle)
    return {"status": "ok"}
