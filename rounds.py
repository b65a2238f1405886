"""
Round calendar.

A round is two weeks long: it opens on a Monday at 08:00 and closes on the
Sunday of the following week at 23:59. Rounds are counted from
ROUND_ANCHOR_DATE (a Monday) and labelled "{year}-R{n}", where n counts the
rounds that started in that calendar year.
"""

import os
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from utils import parse_date, to_naive_utc

ROUND_LENGTH_DAYS = 14
ROUND_START_TIME = time(8, 0)
ROUND_END_TIME = time(23, 59)
DEFAULT_ANCHOR = date(2026, 1, 5)

ROUND_START = "round_start"
MID_ROUND_REMINDER = "mid_round_reminder"
NO_NOTIFICATION = "none"

LABEL_RE = re.compile(r"^(\d{4})-R(\d+)$")


@dataclass(frozen=True)
class Round:
    label: str
    start_date: date
    end_date: date

    @property
    def starts_at(self):
        return datetime.combine(self.start_date, ROUND_START_TIME)

    @property
    def ends_at(self):
        return datetime.combine(self.end_date, ROUND_END_TIME)

    def contains(self, day):
        return self.start_date <= day <= self.end_date


def anchor_date():
    configured = parse_date(os.getenv("ROUND_ANCHOR_DATE"))
    return configured or DEFAULT_ANCHOR


def _first_start_in_year(year, anchor):
    jan_first = date(year, 1, 1)
    offset = (jan_first - anchor).days % ROUND_LENGTH_DAYS
    return jan_first + timedelta(days=(ROUND_LENGTH_DAYS - offset) % ROUND_LENGTH_DAYS)


def round_starting(start, anchor=None):
    """Round record for a known start date"""
    anchor = anchor or anchor_date()
    number = (start - _first_start_in_year(start.year, anchor)).days // ROUND_LENGTH_DAYS + 1
    return Round(
        label=f"{start.year}-R{number}",
        start_date=start,
        end_date=start + timedelta(days=ROUND_LENGTH_DAYS - 1),
    )


def round_for(moment, anchor=None):
    """The round a date or datetime falls in"""
    anchor = anchor or anchor_date()
    if isinstance(moment, datetime):
        day = to_naive_utc(moment).date()
    else:
        day = moment
    elapsed = (day - anchor).days // ROUND_LENGTH_DAYS
    return round_starting(anchor + timedelta(days=elapsed * ROUND_LENGTH_DAYS), anchor)


def parse_round_label(label):
    """(year, number), or (0, 0) for missing or malformed labels"""
    match = LABEL_RE.match(label or "")
    if not match:
        return 0, 0
    return int(match.group(1)), int(match.group(2))


def round_sort_key(label):
    return parse_round_label(label)


def first_friday_on_or_after(day):
    return day + timedelta(days=(4 - day.weekday()) % 7)


def mid_round_reminder_date(round_start_date):
    """The second Friday of the round: first Friday on/after the start, plus a week"""
    return first_friday_on_or_after(round_start_date) + timedelta(days=7)


def classify_notification_window(round_start_date, today):
    """Which batch email, if any, is due for a round on a given day"""
    start = parse_date(round_start_date)
    if start is None:
        return NO_NOTIFICATION
    if today == start:
        return ROUND_START
    if today == mid_round_reminder_date(start):
        return MID_ROUND_REMINDER
    return NO_NOTIFICATION


def is_in_window(match, today):
    """True when today falls inside the match's round window"""
    start = parse_date(match.round_start_date)
    end = parse_date(match.round_end_date)
    if start is None or end is None:
        return False
    return start <= today <= end
