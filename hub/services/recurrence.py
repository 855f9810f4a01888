"""
Recurrence rules for repeating tasks.

A rule is stored as JSON on ``process_tasks.recurrence_rule``::

    {"type": "weekly", "interval": 2, "dayOfWeek": 1, "endDate": "2026-12-31"}

``dayOfWeek`` uses 0 = Sunday. When a recurring task is completed a new task
is spawned due on ``next_due_date(completed_at, rule)``.
"""

import calendar
from datetime import date, datetime, timedelta, timezone

RECURRENCE_TYPES = ("daily", "weekly", "monthly")
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def _utc_date(value) -> date:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def _sunday_based_weekday(d: date) -> int:
    return (d.weekday() + 1) % 7


def next_due_date(completed, rule: dict):
    """Next due date after ``completed``, or None once ``endDate`` has passed."""
    base = _utc_date(completed)
    interval = rule.get("interval") or 1
    kind = rule.get("type")

    if kind == "daily":
        nxt = base + timedelta(days=interval)
    elif kind == "weekly":
        nxt = base + timedelta(weeks=interval)
        if rule.get("dayOfWeek") is not None:
            diff = (rule["dayOfWeek"] - _sunday_based_weekday(nxt) + 7) % 7
            nxt += timedelta(days=diff)
    elif kind == "monthly":
        month_index = base.month - 1 + interval
        year = base.year + month_index // 12
        month = month_index % 12 + 1
        target_day = rule.get("dayOfMonth") or base.day
        nxt = date(year, month, min(target_day, calendar.monthrange(year, month)[1]))
    else:
        return None

    end = rule.get("endDate")
    if end and nxt > date.fromisoformat(str(end)[:10]):
        return None
    return nxt


def _ordinal_suffix(day: int) -> str:
    if day in (1, 21, 31):
        return "st"
    if day in (2, 22):
        return "nd"
    if day in (3, 23):
        return "rd"
    return "th"


def describe_recurrence(rule: dict) -> str:
    interval = rule.get("interval") or 1
    kind = rule.get("type")
    if kind == "daily":
        return "Every day" if interval == 1 else f"Every {interval} days"
    if kind == "weekly":
        if rule.get("dayOfWeek") is not None:
            day_name = DAY_NAMES[rule["dayOfWeek"]]
            return f"Every {day_name}" if interval == 1 else f"Every {interval} weeks on {day_name}"
        return "Every week" if interval == 1 else f"Every {interval} weeks"
    if kind == "monthly":
        dom = rule.get("dayOfMonth")
        if dom:
            nth = f"{dom}{_ordinal_suffix(dom)}"
            return f"Monthly on the {nth}" if interval == 1 else f"Every {interval} months on the {nth}"
        return "Every month" if interval == 1 else f"Every {interval} months"
    return "Recurring"


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def validate_recurrence_rule(rule):
    """Return an error message, or None when the rule is valid."""
    if not isinstance(rule, dict):
        return "Invalid recurrence rule"
    if rule.get("type") not in RECURRENCE_TYPES:
        return "Type must be daily, weekly, or monthly"
    interval = rule.get("interval")
    if not _is_int(interval) or not 1 <= interval <= 365:
        return "Interval must be between 1 and 365"
    if "dayOfWeek" in rule and rule["dayOfWeek"] is not None:
        if not _is_int(rule["dayOfWeek"]) or not 0 <= rule["dayOfWeek"] <= 6:
            return "dayOfWeek must be 0-6"
    if "dayOfMonth" in rule and rule["dayOfMonth"] is not None:
        if not _is_int(rule["dayOfMonth"]) or not 1 <= rule["dayOfMonth"] <= 31:
            return "dayOfMonth must be 1-31"
    if "endDate" in rule and rule["endDate"] is not None and not isinstance(rule["endDate"], str):
        return "endDate must be an ISO date string"
    return None
