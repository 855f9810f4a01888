"""
Owner scorecards and account-level health.

A user owns a process when ``owner_email`` matches their email
(case-insensitive) or, for processes with no ``owner_email``, when ``owner``
matches their display name.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy import func, select

from hub.models import db
from hub.models.metric import Entry, Metric, metric_processes
from hub.models.process import Process, ProcessImprovement
from hub.models.task import ProcessTask
from hub.models.user import UserRole
from hub.services.compliance import compute_compliance
from hub.services.formatting import round_half_up
from hub.services.health_data import fetch_health_data
from hub.services.process_health import dedupe_actions, health_level, weighted_account_score
from hub.utils.helpers import iso

logger = logging.getLogger(__name__)


def owned_processes(user: UserRole, processes=None):
    """Processes owned by *user*, email matches first."""
    processes = processes if processes is not None else Process.query.order_by(Process.name).all()
    email = (user.email or "").lower()
    name = user.full_name or user.email
    by_email = [p for p in processes if email and (p.owner_email or "").lower() == email]
    seen = {p.id for p in by_email}
    by_name = [p for p in processes if not p.owner_email and p.owner == name and p.id not in seen]
    return by_email + by_name


def _metrics_by_process(process_ids):
    """process id → ``[{cadence, lastEntryDate, nextEntryExpected}]``."""
    if not process_ids:
        return {}
    latest = dict(db.session.execute(
        select(Entry.metric_id, func.max(Entry.date)).group_by(Entry.metric_id)
    ).all())
    rows = db.session.execute(
        select(metric_processes.c.process_id, Metric)
        .join(Metric, Metric.id == metric_processes.c.metric_id)
        .where(metric_processes.c.process_id.in_(process_ids))
    ).all()
    result = defaultdict(list)
    for pid, metric in rows:
        result[pid].append({
            "cadence": metric.cadence,
            "lastEntryDate": latest.get(metric.id),
            "nextEntryExpected": metric.next_entry_expected,
        })
    return result


def _owner_compliance(user, owned, health, metrics, today):
    scores = [health["health_scores"][p.id]["total"] for p in owned if p.id in health["health_scores"]]
    adli = [health["adli_scores"].get(p.id) or 0 for p in owned]
    return compute_compliance({
        "onboardingCompletedAt": user.onboarding_completed_at,
        "processHealthScores": scores,
        "avgAdliScore": sum(adli) / len(adli) if adli else 0,
        "processes": [{"metrics": metrics.get(p.id, [])} for p in owned],
    }, today=today)


def list_scorecards(now=None) -> list[dict]:
    """One row per user, non-compliant users first, then by name."""
    now = now or datetime.now(timezone.utc)
    users = UserRole.query.order_by(UserRole.full_name).all()
    processes = Process.query.order_by(Process.name).all()
    health = fetch_health_data(now=now)
    metrics = _metrics_by_process([p.id for p in processes])

    scorecards = []
    for user in users:
        owned = owned_processes(user, processes)
        row = user.to_dict()
        row["processCount"] = len(owned)
        row["compliance"] = _owner_compliance(user, owned, health, metrics, now.date())
        scorecards.append(row)

    scorecards.sort(key=lambda r: (
        r["compliance"]["isCompliant"],
        (r["full_name"] or r["email"] or "").lower(),
    ))
    return scorecards


def owner_scorecard(user: UserRole, now=None) -> dict:
    now = now or datetime.now(timezone.utc)
    owned = owned_processes(user)
    ids = [p.id for p in owned]
    health = fetch_health_data(process_ids=ids, now=now)
    metrics = _metrics_by_process(ids)

    year_start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
    improvement_count = 0
    total_tasks = completed_tasks = 0
    if ids:
        improvement_count = ProcessImprovement.query.filter(
            ProcessImprovement.process_id.in_(ids),
            ProcessImprovement.committed_date >= year_start,
        ).count()
        tasks = ProcessTask.query.filter(
            ProcessTask.process_id.in_(ids),
            ProcessTask.origin.in_(("hub_manual", "asana")),
        ).all()
        total_tasks = len(tasks)
        completed_tasks = sum(1 for t in tasks if t.completed)

    return {
        "owner": user.to_dict(),
        "processes": [
            dict(
                p.to_dict(include_content=False),
                adliScore=health["adli_scores"].get(p.id),
                healthScore=health["health_scores"][p.id]["total"],
            )
            for p in owned
        ],
        "compliance": _owner_compliance(user, owned, health, metrics, now.date()),
        "growth": {
            "improvementCount": improvement_count,
            "taskCompletionRate": (
                round_half_up(completed_tasks / total_tasks * 100) if total_tasks else None
            ),
            "totalTasks": total_tasks,
            "completedTasks": completed_tasks,
        },
    }


def complete_onboarding(user: UserRole, now=None) -> None:
    user.onboarding_completed_at = now or datetime.now(timezone.utc)
    db.session.commit()
    logger.info("Onboarding completed", extra={"auth_id": user.auth_id})


def sidebar_health(process_ids=None, now=None) -> dict:
    """Account-level health: key-weighted mean score, the best next action
    and the number of improvements logged this month."""
    now = now or datetime.now(timezone.utc)
    health = fetch_health_data(process_ids=process_ids, now=now)
    if not health["processes"]:
        level = health_level(0)
        return {"score": 0, "level": level["label"], "color": level["color"],
                "topAction": None, "monthlyStreak": 0}

    items = []
    actions = []
    for proc in health["processes"]:
        result = health["health_scores"][proc["id"]]
        items.append((result["total"], proc["process_type"] == "key"))
        actions.extend(a for a in result["nextActions"] if a.get("href"))

    score = weighted_account_score(items)
    level = health_level(score)
    ranked = dedupe_actions(actions)

    month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    monthly = ProcessImprovement.query.filter(ProcessImprovement.committed_date >= month_start)
    if process_ids is not None:
        monthly = monthly.filter(ProcessImprovement.process_id.in_(process_ids))
    return {
        "score": score,
        "level": level["label"],
        "color": level["color"],
        "topAction": ranked[0] if ranked else None,
        "monthlyStreak": monthly.count(),
        "lastActivity": max((v for v in health["last_activity"].values() if v), default=None),
        "generatedAt": iso(now),
    }
