"""Schedule compiler.

Turns operator input into the schedule string stored in the registry:

- ``--interval N``    -> ``"N"`` (every N hours, 1-23)
- ``--at T [--days D]`` -> ``"M H * * D"`` (``*`` when no days are given)
- ``--cron EXPR``     -> ``EXPR`` verbatim, after validation

and converts stored schedules back into cron expressions and short labels.
"""

from __future__ import annotations

import re

from croniter import croniter

from compose_updater.constants import DEFAULT_INTERVAL_HOURS, MAX_INTERVAL_HOURS
from compose_updater.errors import ScheduleError

_TIME_12H_RE = re.compile(r"^(\d{1,2})[.:](\d{2})([AaPp][Mm])$")
_TIME_24H_RE = re.compile(r"^(\d{1,2})[.:](\d{2})$")
_INTERVAL_RE = re.compile(r"^[1-9][0-9]*$")

_DAY_ALIASES: dict[str, str] = {
    "SUN": "Sun",
    "SUNDAY": "Sun",
    "MON": "Mon",
    "MONDAY": "Mon",
    "TUE": "Tue",
    "TUES": "Tue",
    "TUESDAY": "Tue",
    "WED": "Wed",
    "WEDNESDAY": "Wed",
    "THU": "Thu",
    "THUR": "Thu",
    "THURS": "Thu",
    "THURSDAY": "Thu",
    "FRI": "Fri",
    "FRIDAY": "Fri",
    "SAT": "Sat",
    "SATURDAY": "Sat",
}


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------


def normalize_time(raw: str) -> str:
    """Parse ``HH:MM``/``HH.MM`` (24h) or ``hh:mm AM``/``PM`` into ``HH:MM``.

    Raises:
        ScheduleError: if the input does not match either form or is out of range.
    """
    trimmed = "".join(raw.split())

    m = _TIME_12H_RE.match(trimmed)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
        if not 1 <= hour <= 12 or minute > 59:
            raise ScheduleError(f"Invalid time format: {raw}")
        if m.group(3).upper() == "AM":
            hour = 0 if hour == 12 else hour
        else:
            hour = 12 if hour == 12 else hour + 12
        return f"{hour:02d}:{minute:02d}"

    m = _TIME_24H_RE.match(trimmed)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
        if hour > 23 or minute > 59:
            raise ScheduleError(f"Invalid time format: {raw}")
        return f"{hour:02d}:{minute:02d}"

    raise ScheduleError(f"Invalid time format: {raw} (use HH:MM, HH.MM, or hh:mm AM/PM)")


def normalize_day(token: str) -> str | None:
    """Return the canonical 3-letter weekday for ``token``, or None."""
    return _DAY_ALIASES.get(token.strip().upper())


def normalize_days(raw: str) -> list[str]:
    """Normalize a comma/semicolon separated weekday list.

    A single unknown token rejects the whole list.
    """
    cleaned = "".join(raw.split()).replace(";", ",")
    tokens = [token for token in cleaned.split(",") if token]
    if not tokens:
        raise ScheduleError(f"Invalid days format: {raw!r}")

    days: list[str] = []
    for token in tokens:
        day = normalize_day(token)
        if day is None:
            raise ScheduleError(f"Invalid days format: {raw} (unknown day {token!r})")
        days.append(day)
    return days


def validate_interval(raw: str | int) -> int:
    text = str(raw).strip()
    if not _INTERVAL_RE.match(text) or int(text) > MAX_INTERVAL_HOURS:
        raise ScheduleError(
            f"Interval must be a positive integer between 1 and {MAX_INTERVAL_HOURS} hours"
        )
    return int(text)


def validate_cron(expression: str) -> str:
    """Check that ``expression`` is something cron will accept."""
    expr = expression.strip()
    if not expr:
        raise ScheduleError("Cron expression must not be empty")
    if "\n" in expr or "|" in expr:
        raise ScheduleError(f"Invalid cron expression: {expression!r}")
    # croniter also accepts seconds and year fields; crontab(5) does not
    if not expr.startswith("@") and len(expr.split()) != 5:
        raise ScheduleError(
            f"Invalid cron expression: {expression!r} (expected 5 fields or an @macro)"
        )
    if not croniter.is_valid(expr):
        raise ScheduleError(f"Invalid cron expression: {expression!r}")
    return expr


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def compile_schedule(
    interval: str | int | None = None,
    at: str | None = None,
    days: str | None = None,
    cron: str | None = None,
) -> str:
    """Compile schedule options into the string stored in the registry.

    Precedence follows the command line: ``cron`` over ``at`` over
    ``interval``; nothing at all means every 12 hours.
    """
    if days is not None and at is None and cron is None:
        raise ScheduleError("--days requires --at")

    if cron is not None:
        return validate_cron(cron)

    if at is not None:
        hour, minute = (int(part) for part in normalize_time(at).split(":"))
        dow = ",".join(normalize_days(days)) if days is not None else "*"
        return f"{minute} {hour} * * {dow}"

    if interval is not None:
        return str(validate_interval(interval))

    return str(DEFAULT_INTERVAL_HOURS)


def is_interval(schedule: str) -> bool:
    return schedule.isdigit()


def to_cron(schedule: str) -> str:
    """Return the cron expression for a stored schedule."""
    if is_interval(schedule):
        return f"0 */{int(schedule)} * * *"
    return schedule


def describe(schedule: str) -> str:
    """Short human label for list output."""
    if is_interval(schedule):
        return f"Every {int(schedule)}h"

    fields = schedule.split()
    if len(fields) != 5:
        return "Custom"
    minute, hour, dom, month, dow = fields
    if not (minute.isdigit() and hour.isdigit()):
        return "Custom"
    if dom == "*" and month == "*":
        if dow == "*":
            return f"Daily {int(hour):02d}:{int(minute):02d}"
        return f"Wkly {dow} {int(hour):02d}:{int(minute):02d}"
    return "Custom"
