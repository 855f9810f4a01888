"""
Process health scoring.

A 0-100 score over five dimensions:

    documentation  25   charter 5, four ADLI sections 4 each, workflow 2,
                        Baldrige connections 2
    maturity       25   ADLI overall score x 0.25
    measurement    20   linked metrics 5, 3+ metrics 3, recent data 4,
                        LeTCI >= 3 4, comparison value 4
    operations     15   Asana link 5, ADLI exported 4, has tasks 3, approved 3
    freshness      15   <=30 days 15, <=60 10, <=90 5, else 0

Every unmet item becomes a "next action" with the points it would earn.
"""

from datetime import datetime, timezone

from hub.models.process import ADLI_FIELDS, ADLI_LABELS
from hub.services.formatting import round_half_up

MAX_NEXT_ACTIONS = 3
KEY_PROCESS_WEIGHT = 2

_LEVELS = (
    (80, "Baldrige Ready", "#b1bd37"),
    (60, "On Track", "#55787c"),
    (40, "Developing", "#f79935"),
    (0, "Getting Started", "#dc2626"),
)


def health_level(score):
    for floor, label, color in _LEVELS:
        if score >= floor:
            return {"label": label, "color": color}
    return {"label": "Getting Started", "color": "#dc2626"}


def has_content(field) -> bool:
    """True when a JSON section holds a non-blank ``content`` string or any
    non-empty scalar/list value."""
    if not field or not isinstance(field, dict):
        return False
    content = field.get("content")
    if isinstance(content, str) and content.strip():
        return True
    for value in field.values():
        if value is None or value == "":
            continue
        if isinstance(value, dict):
            continue
        if isinstance(value, list) and not value:
            continue
        return True
    return False


def _days_since(value, now):
    if value is None:
        return 999
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return 999
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int((now - value).total_seconds() // 86400)


def _dimension(details, maximum):
    return {
        "score": sum(d["earned"] for d in details),
        "max": maximum,
        "details": details,
    }


def _detail(label, earned, possible):
    return {"label": label, "earned": earned, "possible": possible}


def calculate_health_score(process, adli_score, metrics, tasks, latest_improvement=None, now=None):
    """Score one process.

    Args:
        process: dict with ``id``, ``charter``, the four ``adli_*`` fields,
            ``workflow``, ``baldrige_mapping_count``, ``status``,
            ``asana_project_gid``, ``asana_adli_task_gids`` and ``updated_at``.
        adli_score: overall ADLI score (0-100) or None when never assessed.
        metrics: list of dicts with ``has_recent_data``, ``has_comparison``,
            ``letci_score`` and ``entry_count``.
        tasks: dict with ``pending_count`` and ``exported_count``.
        latest_improvement: datetime of the newest improvement journal entry.

    Returns:
        dict with ``total``, ``level``, ``dimensions`` and ``nextActions``.
    """
    now = now or datetime.now(timezone.utc)
    pid = process["id"]
    actions = []

    # ── Documentation ──
    doc = [_detail("Charter", 5 if has_content(process.get("charter")) else 0, 5)]
    if not doc[0]["earned"]:
        actions.append({"label": "Write a charter for this process",
                        "href": f"/processes/{pid}/edit#charter", "points": 5})
    for key in ADLI_FIELDS:
        filled = has_content(process.get(key))
        doc.append(_detail(ADLI_LABELS[key], 4 if filled else 0, 4))
        if not filled:
            actions.append({"label": f"Write the {ADLI_LABELS[key]} section",
                            "href": f"/processes/{pid}/edit#{key}", "points": 4})
    doc.append(_detail("Workflow", 2 if has_content(process.get("workflow")) else 0, 2))
    doc.append(_detail("Baldrige Connections", 2 if process.get("baldrige_mapping_count", 0) > 0 else 0, 2))

    # ── Maturity ──
    if adli_score is None:
        maturity = [_detail("No ADLI assessment", 0, 25)]
        actions.append({"label": "Run an AI assessment to get ADLI maturity scores",
                        "href": f"/processes/{pid}?openAI=assessment", "points": 13})
    else:
        maturity = [_detail(f"ADLI Score: {adli_score}%", round_half_up(adli_score * 0.25), 25)]
        if adli_score < 50:
            actions.append({"label": "Improve ADLI maturity through an AI deep dive",
                            "href": f"/processes/{pid}?openAI=deep_dive", "points": 5})

    # ── Measurement ──
    has_metrics = len(metrics) >= 1
    has_recent = any(m.get("has_recent_data") for m in metrics)
    has_comparison = any(m.get("has_comparison") for m in metrics)
    measurement = [
        _detail("Has linked metrics", 5 if has_metrics else 0, 5),
        _detail("3+ linked metrics", 3 if len(metrics) >= 3 else 0, 3),
        _detail("Metrics have recent data", 4 if has_recent else 0, 4),
        _detail("LeTCI score 3+", 4 if any(m.get("letci_score", 0) >= 3 for m in metrics) else 0, 4),
        _detail("Comparison value set", 4 if has_comparison else 0, 4),
    ]
    if not has_metrics:
        actions.append({"label": "Link at least one metric to this process",
                        "href": f"/processes/{pid}?openAI=metrics", "points": 5})
    else:
        if not has_comparison:
            actions.append({"label": "Add a comparison value to a linked metric",
                            "href": "/data-health", "points": 4})
        if not has_recent:
            actions.append({"label": "Log recent data for linked metrics", "href": "/log", "points": 4})

    # ── Operations ──
    asana_linked = bool(process.get("asana_project_gid"))
    adli_exported = bool(process.get("asana_adli_task_gids"))
    has_tasks = tasks.get("pending_count", 0) > 0 or tasks.get("exported_count", 0) > 0
    operations = [
        _detail("Linked to Asana", 5 if asana_linked else 0, 5),
        _detail("ADLI exported to Asana", 4 if adli_exported else 0, 4),
        _detail("Has improvement tasks", 3 if has_tasks else 0, 3),
        _detail("Status: Approved", 3 if process.get("status") == "approved" else 0, 3),
    ]
    if not asana_linked:
        actions.append({"label": "Link this process to an Asana project",
                        "href": f"/processes/{pid}?openExport=true", "points": 5})
    elif not adli_exported:
        actions.append({"label": "Export ADLI documentation to Asana",
                        "href": f"/processes/{pid}?openExport=true", "points": 4})

    # ── Freshness ──
    most_recent = process.get("updated_at")
    if latest_improvement is not None and (most_recent is None or _days_since(latest_improvement, now)
                                           < _days_since(most_recent, now)):
        most_recent = latest_improvement
    days = _days_since(most_recent, now)
    if days <= 30:
        fresh_pts, fresh_label = 15, f"Updated {days} day{'s' if days != 1 else ''} ago"
    elif days <= 60:
        fresh_pts, fresh_label = 10, f"Updated {days} days ago"
    elif days <= 90:
        fresh_pts, fresh_label = 5, f"Updated {days} days ago"
    else:
        fresh_pts, fresh_label = 0, f"Updated {days} days ago, needs attention"
    freshness = [_detail(fresh_label, fresh_pts, 15)]
    if days > 60:
        actions.append({"label": f"Run an improvement cycle (last updated {days} days ago)",
                        "href": f"/processes/{pid}?openAI=charter",
                        "points": 15 if days > 90 else 10})

    dimensions = {
        "documentation": _dimension(doc, 25),
        "maturity": _dimension(maturity, 25),
        "measurement": _dimension(measurement, 20),
        "operations": _dimension(operations, 15),
        "freshness": _dimension(freshness, 15),
    }
    total = sum(d["score"] for d in dimensions.values())
    actions.sort(key=lambda a: a["points"], reverse=True)
    return {
        "total": total,
        "level": health_level(total),
        "dimensions": dimensions,
        "nextActions": actions[:MAX_NEXT_ACTIONS],
    }


def normalize_action_label(label: str) -> str:
    return label.lower().replace("for this process", "").strip()


def dedupe_actions(actions):
    """Sort by points (highest first), keeping the first action per normalized label."""
    seen = set()
    result = []
    for action in sorted(actions, key=lambda a: a["points"], reverse=True):
        key = normalize_action_label(action["label"])
        if key in seen:
            continue
        seen.add(key)
        result.append(action)
    return result


def weighted_account_score(items) -> int:
    """Mean of ``(score, is_key)`` pairs with key processes weighted 2x."""
    total_weight = 0
    weighted = 0
    for score, is_key in items:
        weight = KEY_PROCESS_WEIGHT if is_key else 1
        weighted += score * weight
        total_weight += weight
    if not total_weight:
        return 0
    return round_half_up(weighted / total_weight)
