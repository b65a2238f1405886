from datetime import datetime, date, timezone


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def round_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def parse_datetime(value) -> datetime | None:
    """
    Parse an ISO-8601 string (a trailing "Z" is accepted) into a datetime.
    Datetimes pass through, dates become midnight. Returns None for
    empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def format_day(value) -> str:
    """YYYY-MM-DD for a date or datetime (aware datetimes are shown in UTC)"""
    if isinstance(value, datetime):
        return to_naive_utc(value).strftime("%Y-%m-%d")
    return value.strftime("%Y-%m-%d")


def half_up(value: float) -> int:
    """Round .5 away from zero for positive values (3.5 -> 4)"""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)
