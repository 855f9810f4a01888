"""
Strategic objectives: value resolution, traffic-light status and the monthly
"Strategic Plan Adoption Rate" auto-log.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from hub.core.exceptions import NotFoundError, ValidationError
from hub.models import db
from hub.models.metric import Entry, Metric
from hub.models.process import Process, ProcessAdliScore
from hub.models.strategy import (
    ADLI_THRESHOLD_SCORE, BSC_PERSPECTIVES, COMPUTE_TYPES, StrategicObjective, process_objectives,
)
from hub.services.formatting import round_half_up

logger = logging.getLogger(__name__)

ADOPTION_METRIC_NAME = "Strategic Plan Adoption Rate"
YELLOW_BAND = 0.9


def compute_status(current, target) -> str:
    """green at or above target, yellow within 10% below it, red otherwise."""
    if current is None or target is None:
        return "no-data"
    if current >= target:
        return "green"
    if current >= target * YELLOW_BAND:
        return "yellow"
    return "red"


def trend_of(values) -> str:
    """Direction of the last step in *values* (oldest first)."""
    if len(values) < 2:
        return "no-data"
    if values[-1] > values[-2]:
        return "improving"
    if values[-1] < values[-2]:
        return "declining"
    return "flat"


def _first_of_next_month(today: date) -> date:
    if today.month == 12:
        return date(today.year + 1, 1, 1)
    return date(today.year, today.month + 1, 1)


def list_objectives(today=None) -> list[dict]:
    """Every objective with ``computed_value``, ``status``,
    ``linked_process_count`` and ``trend_direction``."""
    objectives = StrategicObjective.query.order_by(StrategicObjective.sort_order, StrategicObjective.id).all()

    link_counts = defaultdict(int)
    for objective_id, _ in db.session.execute(
        select(process_objectives.c.objective_id, process_objectives.c.process_id)
    ):
        link_counts[objective_id] += 1

    metric_ids = [o.linked_metric_id for o in objectives if o.compute_type == "metric" and o.linked_metric_id]
    values_by_metric = defaultdict(list)
    if metric_ids:
        for entry in Entry.query.filter(Entry.metric_id.in_(metric_ids)).order_by(Entry.date, Entry.id):
            values_by_metric[entry.metric_id].append(entry.value)

    adli_count = ProcessAdliScore.query.filter(ProcessAdliScore.overall_score >= ADLI_THRESHOLD_SCORE).count()

    enriched = []
    for obj in objectives:
        trend = "no-data"
        if obj.compute_type == "metric" and obj.linked_metric_id:
            values = values_by_metric.get(obj.linked_metric_id, [])
            computed = values[-1] if values else None
            trend = trend_of(values)
        elif obj.compute_type == "adli_threshold":
            computed = adli_count
        else:
            computed = obj.current_value
        enriched.append(dict(
            obj.to_dict(),
            computed_value=computed,
            status=compute_status(computed, obj.target_value),
            linked_process_count=link_counts.get(obj.id, 0),
            trend_direction=trend,
        ))

    log_adoption_rate(today=today)
    return enriched


def log_adoption_rate(today=None) -> Entry | None:
    """Log the share of processes linked to any objective, once per month.

    Does nothing when the metric does not exist, there are no processes or
    an entry already exists this month. Failures are logged, never raised.
    """
    today = today or datetime.now(timezone.utc).date()
    try:
        metric = Metric.query.filter_by(name=ADOPTION_METRIC_NAME).first()
        if metric is None:
            return None
        month_start = today.replace(day=1)
        if Entry.query.filter(Entry.metric_id == metric.id, Entry.date >= month_start).first():
            return None
        total = db.session.query(func.count(Process.id)).scalar() or 0
        if not total:
            return None
        linked = db.session.execute(
            select(func.count(func.distinct(process_objectives.c.process_id)))
        ).scalar() or 0
        entry = Entry(metric_id=metric.id, value=round_half_up(linked / total * 100, 1), date=today)
        db.session.add(entry)
        metric.next_entry_expected = _first_of_next_month(today)
        db.session.commit()
        logger.info("Adoption rate logged: %s%%", entry.value)
        return entry
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Adoption rate auto-log failed: %s", exc)
        return None


def _apply_fields(obj, body):
    for key in StrategicObjective.EDITABLE_FIELDS:
        if key in body:
            setattr(obj, key, body[key])
    if obj.compute_type not in COMPUTE_TYPES:
        raise ValidationError(f"compute_type must be one of: {', '.join(COMPUTE_TYPES)}")
    if obj.bsc_perspective not in BSC_PERSPECTIVES:
        raise ValidationError(f"bsc_perspective must be one of: {', '.join(BSC_PERSPECTIVES)}")


def create_objective(body) -> StrategicObjective:
    if not body.get("title"):
        raise ValidationError("title is required")
    obj = StrategicObjective(compute_type="manual", bsc_perspective="internal")
    _apply_fields(obj, body)
    db.session.add(obj)
    db.session.commit()
    return obj


def get_objective(objective_id) -> StrategicObjective:
    obj = db.session.get(StrategicObjective, objective_id)
    if obj is None:
        raise NotFoundError("Objective", objective_id)
    return obj


def update_objective(objective_id, body) -> StrategicObjective:
    obj = get_objective(objective_id)
    _apply_fields(obj, body)
    db.session.commit()
    return obj


def delete_objective(objective_id) -> None:
    db.session.delete(get_objective(objective_id))
    db.session.commit()


def link_process(objective_id, process_id) -> None:
    """Idempotent: linking an already linked process is a no-op."""
    obj = get_objective(objective_id)
    process = db.session.get(Process, process_id) if process_id else None
    if process is None:
        raise NotFoundError("Process", process_id)
    if process not in obj.processes:
        obj.processes.append(process)
        db.session.commit()


def unlink_process(objective_id, process_id) -> None:
    obj = get_objective(objective_id)
    obj.processes = [p for p in obj.processes if p.id != process_id]
    db.session.commit()
