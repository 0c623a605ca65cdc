"""One JSON line per reservation lifecycle event, on the ``rehearsal.audit`` logger."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.failed",
    "reservation.paid",
    "reservation.expired",
    "reservation.cancelled",
]
AuditInitiator = Literal["customer", "system", "gateway", "admin"]

logger = logging.getLogger(__name__)

_audit_logger = logging.getLogger("rehearsal.audit")
_audit_logger.setLevel(logging.INFO)
_audit_logger.propagate = False
if not _audit_logger.handlers:
    _stream = logging.StreamHandler()
    _stream.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(_stream)


@dataclass
class AuditRecord:
    action: str
    initiator: str
    reservation_id: int
    request_id: Optional[str] = None
    date: Optional[str] = None
    slots: Optional[list[str]] = None
    amount: Optional[int] = None
    payment_handle: Optional[str] = None
    status_from: Optional[str] = None
    status_to: Optional[str] = None
    message: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    level: str = "info"

    def to_json(self, extra: Optional[dict[str, Any]] = None) -> str:
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        if extra:
            payload.update(extra)
        return json.dumps(payload, ensure_ascii=False)


def _plain(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value.value) if isinstance(value, Enum) else str(value)


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    reservation_id: int,
    booking_date: Optional[date] = None,
    slots: Optional[list[str]] = None,
    amount: Optional[int] = None,
    payment_handle: Optional[str] = None,
    status_from: Optional[str] = None,
    status_to: Optional[str] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    record = AuditRecord(
        action=action,
        initiator=initiator,
        reservation_id=reservation_id,
        request_id=get_request_id(),
        date=booking_date.isoformat() if booking_date is not None else None,
        slots=list(slots) if slots is not None else None,
        amount=amount,
        payment_handle=payment_handle,
        status_from=_plain(status_from),
        status_to=_plain(status_to),
        message=message,
    )
    try:
        _audit_logger.info(record.to_json(extra))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc


def emit_audit_log_quietly(**kwargs: Any) -> None:
    """Audit from timer and webhook paths, where a logging failure must not abort the work."""
    try:
        emit_audit_log(**kwargs)
    except RuntimeError:
        logger.exception("Audit log failed for %s", kwargs.get("action"))
