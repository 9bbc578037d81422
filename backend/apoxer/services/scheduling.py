"""
Calendar helpers shared by rounds and event materialization.

All times are UTC. Weekdays use Python's numbering (monday=0 .. sunday=6).
"""

import random
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, Optional

DAY_INDEX = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

# (start hour, end hour) of each preference slot
SLOT_RANGES = {
    "morning": (9, 12),
    "noon": (12, 15),
    "afternoon": (15, 18),
    "evening": (18, 21),
    "late_night": (21, 24),
}

DEFAULT_DAY = "saturday"
DEFAULT_SELECTION_SLOT = ("saturday", "evening")


def iso_week_key(moment: datetime) -> str:
    """ISO-8601 week label, e.g. 2026-W07."""
    iso_year, iso_week, _ = moment.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def voting_deadline(now: datetime, days: int) -> datetime:
    """Last millisecond of the day `days` days from now."""
    return (now + timedelta(days=days)).replace(hour=23, minute=59, second=59, microsecond=999000)


def slot_start_hour(time_slot: str) -> int:
    if time_slot == "late_night":
        return 21
    if time_slot == "afternoon":
        return 15
    return SLOT_RANGES.get(time_slot, SLOT_RANGES["afternoon"])[0]


def next_weekday_start(day_slot: str, time_slot: str, now: datetime) -> datetime:
    """
    Next occurrence of `day_slot` at the slot's start hour.

    Today, or any day already passed this week, rolls forward a full week.
    """
    target = DAY_INDEX[day_slot]
    days_until = target - now.weekday()
    if days_until <= 0:
        days_until += 7
    start_day = now + timedelta(days=days_until)
    return start_day.replace(hour=slot_start_hour(time_slot), minute=0, second=0, microsecond=0)


def event_window(day_slot: str, time_slot: str, now: datetime, duration_hours: int) -> tuple[datetime, datetime]:
    starts_at = next_weekday_start(day_slot, time_slot, now)
    return starts_at, starts_at + timedelta(hours=duration_hours)


def dominant_time_slot(time_prefs: Iterable[str], rng: Optional[random.Random] = None) -> str:
    """afternoon vs late_night by vote count; a tie is broken at random."""
    rng = rng or random
    counts = Counter(time_prefs)
    afternoon = counts.get("afternoon", 0)
    late_night = counts.get("late_night", 0)
    if afternoon > late_night:
        return "afternoon"
    if late_night > afternoon:
        return "late_night"
    return rng.choice(["afternoon", "late_night"])


def dominant_day(day_prefs: Iterable[Optional[str]], rng: Optional[random.Random] = None) -> str:
    """Most voted day; saturday when nobody picked a day; random among ties."""
    rng = rng or random
    counts = Counter(day for day in day_prefs if day)
    if not counts:
        return DEFAULT_DAY
    best = max(counts.values())
    tied = sorted((day for day, n in counts.items() if n == best), key=DAY_INDEX.get)
    return tied[0] if len(tied) == 1 else rng.choice(tied)


def most_popular_slot(prefs: Iterable[tuple[str, str]]) -> tuple[str, str]:
    """Most common (day, time) pair; first seen wins a tie."""
    counts = Counter(prefs)
    if not counts:
        return DEFAULT_SELECTION_SLOT
    return counts.most_common(1)[0][0]
