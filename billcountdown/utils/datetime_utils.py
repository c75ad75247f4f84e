from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    Queue and lock timestamps are stored this way.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to UTC timezone-aware datetime.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: UTC timezone-aware datetime
    """
    if dt.tzinfo is None:
        # Assume naive datetime is in UTC
        return dt.replace(tzinfo=timezone.utc)
    else:
        return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    utc_dt = dt.astimezone(timezone.utc)
    return utc_dt.replace(tzinfo=None)


def from_naive_utc(dt: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> datetime:
    """
    Convert a naive UTC datetime (no timezone info) to a timezone-aware datetime.

    Args:
        dt: Naive UTC datetime to convert
        zone: Timezone to use for the conversion (default: UTC)

    Returns:
        datetime: Timezone-aware datetime
    """
    if dt.tzinfo is not None:
        raise ValueError("Input datetime must be naive (no timezone info)")
    return dt.replace(tzinfo=timezone.utc).astimezone(zone)


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ValueError for unknown zones."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def is_valid_timezone(name: str) -> bool:
    try:
        get_zone(name)
    except ValueError:
        return False
    return True


def local_datetime(day: date, at: time, zone: ZoneInfo) -> datetime:
    """
    Wall-clock time `at` on `day` in `zone` as an aware datetime.

    zoneinfo applies the DST rules in force on that day; a wall time that does
    not exist (spring-forward gap) resolves with fold=0 semantics.
    """
    return datetime.combine(day, at, tzinfo=zone)


def resolve_zone(name: str) -> ZoneInfo:
    """Like get_zone, but unknown names fall back to UTC."""
    try:
        return get_zone(name)
    except ValueError:
        return ZoneInfo("UTC")
