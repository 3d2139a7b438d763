from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


def yesterday_date_string(tz: str = "America/Bogota", now: Optional[datetime] = None) -> str:
    """Yesterday in ``tz`` as MM/DD/YYYY (the AppSheet filter format)"""
    now = now or datetime.now(ZoneInfo(tz))
    return (now - timedelta(days=1)).strftime("%m/%d/%Y")


def next_day(date_str: str) -> str:
    d = datetime.strptime(date_str, "%m/%d/%Y")
    return (d + timedelta(days=1)).strftime("%m/%d/%Y")


def date_path(date_str: str) -> str:
    """MM/DD/YYYY -> YYYY/MM/DD"""
    month, day, year = date_str.split("/")
    return f"{year}/{month}/{day}"


def to_display_date(date_str: str) -> str:
    """MM/DD/YYYY -> DD/MM/YYYY"""
    month, day, year = date_str.split("/")
    return f"{day}/{month}/{year}"


def format_appsheet_date(value: Optional[str]) -> Optional[str]:
    """AppSheet ``MM/DD/YYYY[ HH:MM:SS]`` -> DD/MM/YYYY, None when unusable"""
    if not value:
        return None
    parts = str(value).split(" ")[0].split("/")
    if len(parts) != 3 or not all(parts):
        return None
    month, day, year = parts
    return f"{day}/{month}/{year}"
