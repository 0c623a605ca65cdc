"""Slot tokens and the conflict detector.

A slot is an opaque token for one interval of a day, usually spelled
``"HH:MM-HH:MM"``. Overlap between reservations is decided by token equality
after normalization; the clock parsing below is only used to reject requests
whose own intervals overlap or run backwards.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..models import ReservationStatus
from .errors import ValidationError

# en-dash, em-dash and minus sign have all been seen as separators
_SEPARATORS = str.maketrans({"–": "-", "—": "-", "−": "-"})
_CLOCK_RANGE = re.compile(r"^(\d{1,2}):(\d{2})-(\d{1,2}):(\d{2})$")
MAX_SLOT_LENGTH = 32


def normalize_slot(raw: str) -> str:
    token = "".join(str(raw).split()).translate(_SEPARATORS)
    if not token:
        raise ValidationError("slot must not be empty")
    if len(token) > MAX_SLOT_LENGTH:
        raise ValidationError(f"slot token too long: {raw!r}")
    return token


def parse_clock_range(token: str) -> Optional[tuple[int, int]]:
    """Return (start, end) minutes for ``HH:MM-HH:MM`` tokens, None for anything else."""
    match = _CLOCK_RANGE.match(token)
    if match is None:
        return None
    sh, sm, eh, em = (int(part) for part in match.groups())
    if sh > 24 or eh > 24 or sm > 59 or em > 59:
        raise ValidationError(f"invalid clock range: {token}")
    return sh * 60 + sm, eh * 60 + em


def normalize_slots(raw_slots: Iterable[str]) -> list[str]:
    """Normalize a requested slot set, preserving order.

    Rejects empty sets, duplicates, backwards ranges and clock ranges that
    overlap each other.
    """
    tokens = [normalize_slot(raw) for raw in raw_slots]
    if not tokens:
        raise ValidationError("at least one slot is required")
    if len(set(tokens)) != len(tokens):
        raise ValidationError("slots must not repeat")

    ranges: list[tuple[int, int]] = []
    for token in tokens:
        parsed = parse_clock_range(token)
        if parsed is None:
            continue
        start, end = parsed
        if start >= end:
            raise ValidationError(f"slot ends before it starts: {token}")
        ranges.append(parsed)
    ranges.sort()
    for (_, prev_end), (next_start, _) in zip(ranges, ranges[1:]):
        if next_start < prev_end:
            raise ValidationError("slots overlap each other")
    return tokens


def is_active(status: ReservationStatus, hold_deadline: Optional[datetime], now: datetime) -> bool:
    """A reservation blocks its slots when paid, or pending with a live hold."""
    if status == ReservationStatus.PAID:
        return True
    if status == ReservationStatus.PENDING:
        return hold_deadline is not None and hold_deadline >= now
    return False


def has_conflict(requested: Sequence[str], active: Iterable[str]) -> bool:
    taken = {normalize_slot(slot) for slot in active}
    return any(normalize_slot(slot) in taken for slot in requested)
