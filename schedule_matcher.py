#!/usr/bin/env python3
"""
Workload Scaler Schedule Matching
=================================

Time matchers for schedule-triggered scaling. Two schedule formats are
understood:

* five-field cron expressions (``0 20 * * *``), evaluated with croniter
* simple day-class entries (``weekdays 8:00``, ``daily 20:30``, ``sat 09:15``)

A matcher only fires within the calendar minute it names. Ticks missed while
nothing was running are not caught up.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple, Union

from croniter import croniter

from scaling_errors import ValidationError

logger = logging.getLogger(__name__)

CRON_PATTERN = re.compile(r"^[0-9*,\-/]+(\s+[0-9*,\-/]+){4}$")
SIMPLE_PATTERN = re.compile(r"^([a-z]+)\s+(\d{1,2}):(\d{2})$")

# isoweekday numbers, Monday is 1
DAY_CLASSES = {
    "daily": (1, 2, 3, 4, 5, 6, 7),
    "weekdays": (1, 2, 3, 4, 5),
    "weekends": (6, 7),
    "monday": (1,), "mon": (1,),
    "tuesday": (2,), "tue": (2,),
    "wednesday": (3,), "wed": (3,),
    "thursday": (4,), "thu": (4,),
    "friday": (5,), "fri": (5,),
    "saturday": (6,), "sat": (6,),
    "sunday": (7,), "sun": (7,),
}


class CronMatcher:
    """Matches when the previous cron fire time is under a minute old"""

    def __init__(self, expression: str):
        expression = " ".join(expression.split())
        if not croniter.is_valid(expression):
            raise ValidationError(f"Failed to parse cron schedule: {expression}")
        self.expression = expression

    def matches(self, now: datetime) -> bool:
        # croniter steps back to the minute start once now is past it
        minute_start = now.replace(second=0, microsecond=0)
        previous = croniter(self.expression, minute_start + timedelta(seconds=1)).get_prev(datetime)
        return (now - previous).total_seconds() < 60

    def __repr__(self) -> str:
        return f"CronMatcher({self.expression!r})"


class DayTimeMatcher:
    """Matches an exact hour:minute on the days of a day class"""

    def __init__(self, day_class: str, hour: int, minute: int):
        day_class = day_class.lower()
        if day_class not in DAY_CLASSES:
            raise ValidationError(
                f"Invalid day specification: {day_class}. "
                "Expected one of: daily, weekdays, weekends, monday, tuesday, etc."
            )
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValidationError(f"Invalid time format: {hour}:{minute:02d}. Expected format: 'HH:MM'")
        self.day_class = day_class
        self.hour = hour
        self.minute = minute

    @property
    def days(self) -> Tuple[int, ...]:
        return DAY_CLASSES[self.day_class]

    def matches(self, now: datetime) -> bool:
        if now.hour != self.hour or now.minute != self.minute:
            return False
        return now.isoweekday() in self.days

    def __repr__(self) -> str:
        return f"DayTimeMatcher({self.day_class!r}, {self.hour:02d}:{self.minute:02d})"


TimeMatcher = Union[CronMatcher, DayTimeMatcher]


def parse_time_matcher(schedule: str) -> TimeMatcher:
    """Build the matcher for a cron or simple-format schedule string"""
    text = (schedule or "").strip()
    if CRON_PATTERN.match(text):
        logger.debug(f"Detected cron format schedule: {text}")
        return CronMatcher(text)

    simple = SIMPLE_PATTERN.match(text.lower())
    if not simple:
        raise ValidationError(
            f"Invalid schedule format: {schedule}. "
            "Expected cron or '[weekdays|weekends|daily|monday|...] HH:MM'"
        )
    day_class, hour, minute = simple.groups()
    return DayTimeMatcher(day_class, int(hour), int(minute))


@dataclass(frozen=True)
class ScheduleEntry:
    matcher: TimeMatcher
    replicas: int
    schedule: str = ""

    def matches(self, now: datetime) -> bool:
        return self.matcher.matches(now)


def build_schedule_entry(schedule: str, replicas: int) -> ScheduleEntry:
    if replicas is None or replicas < 0:
        raise ValidationError("Replica count is required when using a schedule.")
    return ScheduleEntry(parse_time_matcher(schedule), int(replicas), schedule.strip())


def parse_schedule_lines(lines: Iterable[str]) -> List[ScheduleEntry]:
    """Parse ``schedule,replicas`` lines; malformed lines are skipped"""
    entries = []
    for line_number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        schedule, sep, replicas = line.rpartition(",")
        if not sep or not schedule.strip() or not replicas.strip().isdigit():
            logger.warning(f"⚠️ Invalid line format in schedule file (line {line_number}): {line}")
            logger.warning("⚠️ Expected format: 'schedule,replicas'")
            continue

        try:
            entries.append(build_schedule_entry(schedule, int(replicas)))
        except ValidationError as e:
            logger.warning(f"⚠️ Skipping schedule line {line_number}: {e}")
    return entries


def load_schedule_file(path: str) -> List[ScheduleEntry]:
    if not os.path.isfile(path):
        raise ValidationError(f"Schedule file not found: {path}")
    with open(path) as f:
        entries = parse_schedule_lines(f)
    logger.info(f"Loaded {len(entries)} schedule entries from {path}")
    return entries


def first_matching_entry(entries: Iterable[ScheduleEntry], now: datetime) -> Optional[ScheduleEntry]:
    for entry in entries:
        if entry.matches(now):
            return entry
    return None
