"""
Game Time Normalization

Single source of truth for schedule time arithmetic. Game Time is a fixed
UTC-5 zone that never observes daylight saving time; storage is UTC.

Conventions:
- Aware datetimes are converted between zones (same instant).
- Naive datetimes are wall-clock values: to_game_time() shifts a naive UTC
  value by -5h, to_utc() shifts a naive Game Time value by +5h.
- Rows store naive UTC (see to_storage / from_storage).
"""

from datetime import date, datetime, timedelta
from typing import Optional, Union

import pytz

from utils.constants import (
    BATTLE_CADENCE_DAYS,
    BATTLE_ID_LENGTH,
    GAME_TIME_OFFSET_MINUTES,
    MONTH_ID_LENGTH,
    YEAR_ID_LENGTH,
)

GAME_TZ = pytz.FixedOffset(GAME_TIME_OFFSET_MINUTES)
_GAME_OFFSET = timedelta(minutes=GAME_TIME_OFFSET_MINUTES)

DateLike = Union[date, datetime]


# ------------------------------- Conversions ------------------------------- #

def to_game_time(instant: datetime) -> datetime:
    """Convert a UTC (or any aware) instant to Game Time."""
    if instant.tzinfo is None:
        return instant + _GAME_OFFSET
    return instant.astimezone(GAME_TZ)


def to_utc(instant: datetime) -> datetime:
    """Convert a Game Time (or any aware) instant to UTC."""
    if instant.tzinfo is None:
        return instant - _GAME_OFFSET
    return instant.astimezone(pytz.utc)


def now_game_time() -> datetime:
    """Current instant expressed in Game Time."""
    return datetime.now(pytz.utc).astimezone(GAME_TZ)


def to_storage(instant: datetime) -> datetime:
    """Naive UTC value for a DateTimeField. Naive input is assumed UTC."""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(pytz.utc).replace(tzinfo=None)


def from_storage(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC instant from a stored naive UTC value."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(pytz.utc)
    return pytz.utc.localize(value)


def game_calendar_date(value: DateLike) -> date:
    """
    Calendar date of a value as observed in Game Time.

    Plain dates are taken as-is and naive datetimes are treated as Game Time
    wall clock; aware datetimes are converted first.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(GAME_TZ)
        return value.date()
    return value


def game_midnight(value: DateLike) -> datetime:
    """Midnight Game Time (aware) on the value's Game Time calendar date."""
    d = game_calendar_date(value)
    return GAME_TZ.localize(datetime(d.year, d.month, d.day))


# ------------------------------- Identifiers ------------------------------- #

def derive_battle_id(value: DateLike) -> str:
    """YYYYMMDD from the Game Time calendar fields of value."""
    d = game_calendar_date(value)
    return f"{d.year:04d}{d.month:02d}{d.day:02d}"


def derive_month_id(value: DateLike) -> str:
    """YYYYMM; always the 6-digit prefix of derive_battle_id(value)."""
    return derive_battle_id(value)[:MONTH_ID_LENGTH]


def derive_year_id(value: DateLike) -> str:
    """YYYY; always the 4-digit prefix of derive_battle_id(value)."""
    return derive_battle_id(value)[:YEAR_ID_LENGTH]


def month_id_of(battle_id: str) -> str:
    return battle_id[:MONTH_ID_LENGTH]


def year_id_of(battle_id: str) -> str:
    return battle_id[:YEAR_ID_LENGTH]


def parse_battle_id(battle_id: str) -> date:
    """
    Parse a YYYYMMDD battle id into its calendar date.

    Raises:
        ValueError: If the id is not 8 digits or names an impossible date
    """
    if len(battle_id) != BATTLE_ID_LENGTH or not battle_id.isdigit():
        raise ValueError(f"Invalid battle ID format: {battle_id!r}")

    year = int(battle_id[0:4])
    month = int(battle_id[4:6])
    day = int(battle_id[6:8])
    try:
        return date(year, month, day)
    except ValueError:
        raise ValueError(f"Invalid date in battle ID: {battle_id!r}")


def validate_battle_id(battle_id: str) -> bool:
    try:
        parse_battle_id(battle_id)
        return True
    except ValueError:
        return False


def next_battle_id(battle_id: str) -> str:
    """Battle id one cadence (3 calendar days) later."""
    return derive_battle_id(parse_battle_id(battle_id) + timedelta(days=BATTLE_CADENCE_DAYS))


def previous_battle_id(battle_id: str) -> str:
    """Battle id one cadence (3 calendar days) earlier."""
    return derive_battle_id(parse_battle_id(battle_id) - timedelta(days=BATTLE_CADENCE_DAYS))


def parse_month_id(month_id: str) -> date:
    """
    Parse a YYYYMM month id into the first day of that month.

    Raises:
        ValueError: If the id is not 6 digits or the month is out of range
    """
    if len(month_id) != MONTH_ID_LENGTH or not month_id.isdigit():
        raise ValueError(f"Invalid month ID format: {month_id!r}")
    month = int(month_id[4:6])
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in month ID: {month_id!r}")
    return date(int(month_id[0:4]), month, 1)


def parse_year_id(year_id: str) -> date:
    """Parse a YYYY year id into January 1st of that year."""
    if len(year_id) != YEAR_ID_LENGTH or not year_id.isdigit() or int(year_id) < 1:
        raise ValueError(f"Invalid year ID format: {year_id!r}")
    return date(int(year_id), 1, 1)


# ------------------------------- Windows ------------------------------- #

def battle_window(start_date: DateLike) -> tuple[datetime, datetime]:
    """
    UTC (start, end) of the battle starting on start_date.

    Start is midnight Game Time on the date; end is 23:59:59.999 Game Time on
    the next calendar day, so every window spans 48 hours minus 1ms.

    Example:
        battle_window(date(2025, 11, 8))
        # (2025-11-08 05:00:00+00:00, 2025-11-10 04:59:59.999000+00:00)
    """
    d = game_calendar_date(start_date)
    start = game_midnight(d)

    # Calendar-day addition keeps month/year rollovers correct
    last_day = d + timedelta(days=1)
    end = GAME_TZ.localize(
        datetime(last_day.year, last_day.month, last_day.day, 23, 59, 59, 999000)
    )
    return to_utc(start), to_utc(end)


def advance_battle_start(start: datetime, cadence_days: int = BATTLE_CADENCE_DAYS) -> datetime:
    """Next battle start: exactly cadence_days calendar days after start, in Game Time."""
    if start.tzinfo is not None:
        start = to_game_time(start)
    return start + timedelta(days=cadence_days)
