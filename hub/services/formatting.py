"""
Display formatting shared by API payloads and CSV/markdown exports.

Covers metric values by unit, fiscal years (July-June), trend direction over
recent values, relative times and freshness colors, and CSV cell escaping.
"""

import math
import re
from datetime import date, datetime, timezone

NO_VALUE = "N/A"

FRESHNESS_GREEN = "#b1bd37"
FRESHNESS_GRAY = "#9ca3af"
FRESHNESS_ORANGE = "#f79935"
FRESHNESS_RED = "#dc2626"


def round_half_up(value, digits=0):
    """Round halves upward (12.5 → 13, -12.5 → -12), matching browser rounding."""
    factor = 10 ** digits
    result = math.floor(value * factor + 0.5) / factor
    return int(result) if digits == 0 else result


def _trim(number: float) -> str:
    """42.0 → "42", 42.5 → "42.5"."""
    if float(number).is_integer():
        return str(int(number))
    return f"{number:.2f}".rstrip("0").rstrip(".")


def format_value(value, unit: str) -> str:
    """Format a metric value for display based on its unit.

    >>> format_value(42, "currency")
    '$42.00'
    >>> format_value(42, "%")
    '42%'
    """
    if value is None:
        return NO_VALUE
    if unit == "currency":
        return f"${value:,.2f}"
    if unit in ("%", "percent"):
        return f"{_trim(value)}%"
    if unit == "days":
        return f"{_trim(value)} day" if value == 1 else f"{_trim(value)} days"
    if unit == "rate":
        return f"{_trim(value)}x"
    return _trim(value)


def to_fiscal_year(value) -> str:
    """July 2024 through June 2025 is FY25."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    fy = value.year + 1 if value.month >= 7 else value.year
    return f"FY{str(fy)[-2:]}"


def get_trend_direction(values, is_higher_better: bool) -> str:
    """Compare the first and last of the final three values.

    A change within 2% of the first value is ``flat``; fewer than three
    values is ``insufficient``.
    """
    if len(values) < 3:
        return "insufficient"
    recent = values[-3:]
    first, last = recent[0], recent[-1]
    diff = last - first
    if abs(diff) <= abs(first) * 0.02:
        return "flat"
    rising = diff > 0
    if is_higher_better:
        return "improving" if rising else "declining"
    return "declining" if rising else "improving"


def _days_ago(value, now=None) -> int:
    now = now or datetime.now(timezone.utc)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int((now - value).total_seconds() // 86400)


def format_relative_time(value, now=None) -> str:
    days = _days_ago(value, now)
    if days == 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    if days < 14:
        return "1 week ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    if days < 60:
        return "1 month ago"
    if days < 365:
        return f"{days // 30} months ago"
    return f"{days // 365}y ago"


def freshness_days(value, now=None) -> int:
    return _days_ago(value, now)


def freshness_color(value, now=None) -> str:
    """green (≤30d), gray (31-60d), orange (61-90d), red (90+d)."""
    days = _days_ago(value, now)
    if days <= 30:
        return FRESHNESS_GREEN
    if days <= 60:
        return FRESHNESS_GRAY
    if days <= 90:
        return FRESHNESS_ORANGE
    return FRESHNESS_RED


# ── CSV ──────────────────────────────────────────────────────────────────────

def csv_escape(value) -> str:
    """Quote a CSV cell when it holds a comma, quote or line break (RFC 4180)."""
    if value is None:
        return ""
    text = str(value)
    if any(ch in text for ch in (",", '"', "\n", "\r")):
        return '"' + text.replace('"', '""') + '"'
    return text


def csv_row(values) -> str:
    return ",".join(csv_escape(v) for v in values)


_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    return _NON_ALNUM.sub("-", (text or "").lower()).strip("-")
