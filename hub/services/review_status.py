"""Metric review cadence: is the latest entry current, due soon, overdue, or missing?"""

from datetime import date, datetime, timezone

CADENCE_DAYS = {
    "monthly": 30,
    "quarterly": 90,
    "semi-annual": 182,
    "annual": 365,
}
DEFAULT_CADENCE_DAYS = 365
DUE_SOON_BUFFER_DAYS = 7

REVIEW_STATUSES = ("current", "due-soon", "overdue", "no-data")

_STATUS_COLORS = {
    "current": "#b1bd37",
    "due-soon": "#f79935",
    "overdue": "#dc2626",
    "no-data": "#dc2626",
}
_STATUS_LABELS = {
    "current": "Current",
    "due-soon": "Due Soon",
    "overdue": "Overdue",
    "no-data": "No Data",
}


def days_since(value, today=None) -> int:
    """Whole days between ``value`` (date, datetime or ISO string) and today (UTC)."""
    today = today or datetime.now(timezone.utc).date()
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.date()
    return (today - value).days


def review_status(cadence: str, last_entry_date, today: date | None = None) -> str:
    """Return one of ``current``, ``due-soon``, ``overdue`` or ``no-data``.

    ``no-data`` is returned exactly when ``last_entry_date`` is None.
    Unknown cadences are treated as annual.
    """
    if last_entry_date is None:
        return "no-data"
    elapsed = days_since(last_entry_date, today)
    cadence_days = CADENCE_DAYS.get(cadence, DEFAULT_CADENCE_DAYS)
    if elapsed > cadence_days:
        return "overdue"
    if elapsed > cadence_days - DUE_SOON_BUFFER_DAYS:
        return "due-soon"
    return "current"


def status_color(status: str) -> str:
    return _STATUS_COLORS.get(status, "#dc2626")


def status_label(status: str) -> str:
    return _STATUS_LABELS.get(status, status)
