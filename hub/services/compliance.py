"""
Process-owner compliance rules.

Pure function of pre-fetched data; nothing here touches the database.
An owner is compliant when all four checks pass:

    onboardingComplete   onboarding was finished
    metricsAllCurrent    every metric on an owned process is within its
                         cadence window plus grace, or not yet expected
    healthScoreGrowing   at least one owned process scores >= 60 ("On Track")
    adliImproving        average ADLI score across ALL owned processes >= 25,
                         unassessed processes counting as 0

Owners with zero processes pass the health and ADLI checks and have no
metrics to be late on, so only onboarding decides for them.
"""

from datetime import date, datetime, timezone

from hub.services.review_status import days_since

HEALTH_SCORE_HEALTHY_THRESHOLD = 60
ADLI_AVG_SCORE_THRESHOLD = 25

# Days after the last entry before a metric counts as late
CADENCE_GRACE = {
    "monthly": 36,
    "quarterly": 108,
    "semi-annual": 218,
    "annual": 438,
}
DEFAULT_GRACE = 438

_REASONS = {
    "onboardingComplete": "Onboarding has not been completed",
    "metricsAllCurrent": "One or more metrics are overdue for a new entry",
    "healthScoreGrowing": (
        f"No owned process has reached a health score of {HEALTH_SCORE_HEALTHY_THRESHOLD}"
    ),
    "adliImproving": (
        f"Average ADLI score across owned processes is below {ADLI_AVG_SCORE_THRESHOLD}"
    ),
}


def _as_date(value):
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])


def _metric_is_current(metric: dict, today: date) -> bool:
    next_expected = _as_date(metric.get("nextEntryExpected"))
    if next_expected is not None and next_expected > today:
        return True
    last = metric.get("lastEntryDate")
    if not last:
        return False
    grace = CADENCE_GRACE.get(metric.get("cadence"), DEFAULT_GRACE)
    return days_since(last, today) <= grace


def compute_compliance(data: dict, today: date | None = None) -> dict:
    """Evaluate the four compliance checks.

    ``data`` keys: ``onboardingCompletedAt``, ``processHealthScores``,
    ``avgAdliScore`` and ``processes`` (each ``{"metrics": [...]}`` with
    ``cadence``, ``lastEntryDate`` and ``nextEntryExpected``).

    Returns ``{"isCompliant", "checks", "reasons"}``; ``reasons`` names
    every failed check in check order.
    """
    today = today or datetime.now(timezone.utc).date()
    processes = data.get("processes") or []
    all_metrics = [m for p in processes for m in (p.get("metrics") or [])]

    checks = {
        "onboardingComplete": bool(data.get("onboardingCompletedAt")),
        "metricsAllCurrent": all(_metric_is_current(m, today) for m in all_metrics),
        "healthScoreGrowing": (
            not processes
            or any(s >= HEALTH_SCORE_HEALTHY_THRESHOLD for s in data.get("processHealthScores") or [])
        ),
        "adliImproving": (
            not processes
            or (data.get("avgAdliScore") or 0) >= ADLI_AVG_SCORE_THRESHOLD
        ),
    }
    reasons = [_REASONS[name] for name, passed in checks.items() if not passed]
    return {
        "isCompliant": not reasons,
        "checks": checks,
        "reasons": reasons,
    }
