from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"unknown timezone: {name}") from exc


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_naive_to_local(dt: datetime, zone: ZoneInfo) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(zone)


def local_today(zone: ZoneInfo, now_utc: datetime | None = None) -> date:
    """Calendar day in `zone` for the given naive UTC instant (default: now)."""
    instant = now_utc if now_utc is not None else utc_now_naive()
    return utc_naive_to_local(instant, zone).date()
