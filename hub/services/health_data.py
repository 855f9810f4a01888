"""
Bulk loader for health scoring.

Fetches every process with its score, metrics, entries, tasks, improvements
and Baldrige mappings in a fixed number of queries, then scores each process.
Shared by the process list, readiness, scorecards and sidebar endpoints.
"""

from collections import defaultdict

from sqlalchemy import func, select

from hub.models import db
from hub.models.metric import Entry, Metric, metric_processes
from hub.models.process import (
    Category, Process, ProcessAdliScore, ProcessImprovement, ProcessQuestionMapping,
)
from hub.models.task import ProcessTask
from hub.services.process_health import calculate_health_score
from hub.services.review_status import review_status
from hub.utils.helpers import iso


def letci_score(entry_count, has_comparison) -> int:
    """Level (any data), Trend (3+ entries), Comparison, Integration (always,
    since the metric is linked)."""
    score = 1
    if entry_count >= 1:
        score += 1
    if entry_count >= 3:
        score += 1
    if has_comparison:
        score += 1
    return score


def fetch_health_data(process_ids=None, now=None) -> dict:
    """Score processes (all, or those in *process_ids*).

    Returns a dict with ``processes`` (``Process.to_dict()`` rows ordered by
    name), ``categories``, ``health_scores`` (id → result), ``last_activity``
    (id → ISO date) and ``adli_scores`` (id → overall score).
    """
    query = Process.query.order_by(Process.name)
    if process_ids is not None:
        if not process_ids:
            return {"processes": [], "categories": [], "health_scores": {},
                    "last_activity": {}, "adli_scores": {}}
        query = query.filter(Process.id.in_(process_ids))
    processes = [p.to_dict() for p in query.all()]
    categories = [c.to_dict() for c in Category.query.order_by(Category.sort_order).all()]

    adli_scores = dict(db.session.execute(
        select(ProcessAdliScore.process_id, ProcessAdliScore.overall_score)
    ).all())

    metric_ids_by_process = defaultdict(list)
    for pid, mid in db.session.execute(select(metric_processes.c.process_id, metric_processes.c.metric_id)):
        metric_ids_by_process[pid].append(mid)

    metrics = {m.id: m for m in Metric.query.all()}

    entry_stats = {
        mid: (latest, count)
        for mid, latest, count in db.session.execute(
            select(Entry.metric_id, func.max(Entry.date), func.count(Entry.id)).group_by(Entry.metric_id)
        )
    }

    tasks = defaultdict(lambda: {"pending_count": 0, "exported_count": 0})
    for pid, status, count in db.session.execute(
        select(ProcessTask.process_id, ProcessTask.status, func.count(ProcessTask.id))
        .group_by(ProcessTask.process_id, ProcessTask.status)
    ):
        key = "pending_count" if status == "pending" else "exported_count"
        tasks[pid][key] += count

    latest_improvement = dict(db.session.execute(
        select(ProcessImprovement.process_id, func.max(ProcessImprovement.committed_date))
        .group_by(ProcessImprovement.process_id)
    ).all())

    mapping_counts = dict(db.session.execute(
        select(ProcessQuestionMapping.process_id, func.count(ProcessQuestionMapping.id))
        .group_by(ProcessQuestionMapping.process_id)
    ).all())

    today = now.date() if now else None
    health_scores = {}
    last_activity = {}
    for proc in processes:
        pid = proc["id"]
        proc["baldrige_mapping_count"] = mapping_counts.get(pid, 0)

        metric_inputs = []
        for mid in metric_ids_by_process.get(pid, []):
            metric = metrics.get(mid)
            if metric is None:
                continue
            latest, count = entry_stats.get(mid, (None, 0))
            has_comparison = metric.comparison_value is not None
            metric_inputs.append({
                "has_recent_data": (
                    latest is not None and review_status(metric.cadence, latest, today) == "current"
                ),
                "has_comparison": has_comparison,
                "letci_score": letci_score(count, has_comparison),
                "entry_count": count,
            })

        improvement_at = latest_improvement.get(pid)
        health_scores[pid] = calculate_health_score(
            proc, adli_scores.get(pid), metric_inputs, tasks[pid], improvement_at, now=now,
        )

        latest = proc["updated_at"] or ""
        candidates = [iso(improvement_at)] + [
            iso(entry_stats[mid][0]) for mid in metric_ids_by_process.get(pid, []) if mid in entry_stats
        ]
        for candidate in candidates:
            if candidate and candidate > latest:
                latest = candidate
        last_activity[pid] = latest or None

    return {
        "processes": processes,
        "categories": categories,
        "health_scores": health_scores,
        "last_activity": last_activity,
        "adli_scores": adli_scores,
    }
