from datetime import date, datetime, timezone
from typing import Optional


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def date_key(today: Optional[date] = None) -> str:
    """YYYY-MM-DD key used for daily cost resets."""
    return (today or today_utc()).strftime("%Y-%m-%d")


def month_key(today: Optional[date] = None) -> str:
    """YYYY-MM key used for monthly resets."""
    return (today or today_utc()).strftime("%Y-%m")
