from datetime import datetime
from zoneinfo import ZoneInfo


def get_utc_now() -> datetime:
    """
    Get the current date and time in UTC.

    This function returns the current time with timezone information set to UTC,
    ensuring that the returned datetime object is offset-aware.

    Returns:
        datetime: The current date and time in UTC with tzinfo set to ZoneInfo("UTC").
    """
    return datetime.now(ZoneInfo("UTC"))


def get_utc_timestamp() -> float:
    """Seconds since the epoch as a float; compared against JWT ``exp`` claims."""
    return get_utc_now().timestamp()
