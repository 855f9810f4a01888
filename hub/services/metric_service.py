"""Metric service: metric CRUD, data entries and process links."""

import logging
from datetime import datetime, timezone

from hub.core.exceptions import ConflictError, NotFoundError, ValidationError
from hub.models import db
from hub.models.metric import CADENCES, UNITS, Entry, Metric
from hub.models.process import Process
from hub.services.formatting import format_value, get_trend_direction
from hub.services.review_status import review_status, status_color, status_label
from hub.utils.helpers import is_number, parse_date

logger = logging.getLogger(__name__)

_EDITABLE = (
    "name", "description", "cadence", "unit", "target_value", "comparison_value",
    "comparison_source", "is_higher_better", "data_source", "next_entry_expected",
)


def get_metric(metric_id) -> Metric:
    metric = db.session.get(Metric, metric_id)
    if metric is None:
        raise NotFoundError("Metric", metric_id)
    return metric


def summarize(metric: Metric, today=None) -> dict:
    """Metric row plus last value, review status and trend."""
    values = [e.value for e in metric.entries]
    last = metric.entries[-1] if metric.entries else None
    status = review_status(metric.cadence, last.date if last else None, today)
    return dict(
        metric.to_dict(),
        last_value=last.value if last else None,
        last_entry_date=last.date.isoformat() if last else None,
        display_value=format_value(last.value if last else None, metric.unit),
        review_status=status,
        review_label=status_label(status),
        review_color=status_color(status),
        trend=get_trend_direction(values, metric.is_higher_better),
        entry_count=len(values),
    )


def list_metrics(process_id=None, today=None) -> list[dict]:
    query = Metric.query.order_by(Metric.name)
    if process_id is not None:
        query = query.filter(Metric.processes.any(Process.id == process_id))
    return [summarize(m, today) for m in query.all()]


def _apply(metric, body):
    for key in _EDITABLE:
        if key not in body:
            continue
        value = body[key]
        if key == "next_entry_expected":
            value = parse_date(value)
        setattr(metric, key, value)
    if metric.cadence not in CADENCES:
        raise ValidationError(f"Invalid cadence. Must be one of: {', '.join(CADENCES)}")
    if metric.unit not in UNITS:
        raise ValidationError(f"Invalid unit. Must be one of: {', '.join(UNITS)}")
    for key in ("target_value", "comparison_value"):
        value = getattr(metric, key)
        if value is not None and not is_number(value):
            raise ValidationError(f"{key} must be a number")


def create_metric(body) -> Metric:
    if not (body.get("name") or "").strip():
        raise ValidationError("name is required")
    metric = Metric(cadence="annual", unit="count", is_higher_better=True)
    _apply(metric, body)
    if body.get("process_ids"):
        metric.processes = Process.query.filter(Process.id.in_(body["process_ids"])).all()
    db.session.add(metric)
    db.session.commit()
    return metric


def update_metric(metric: Metric, body) -> Metric:
    _apply(metric, body)
    db.session.commit()
    return metric


def add_entry(metric: Metric, body) -> Entry:
    value = body.get("value")
    if not is_number(value):
        raise ValidationError("value must be a number")
    entry_date = parse_date(body.get("date")) or datetime.now(timezone.utc).date()
    entry = Entry(metric_id=metric.id, value=value, date=entry_date, note=body.get("note") or None)
    db.session.add(entry)
    db.session.commit()
    logger.info("Entry logged for metric %s", metric.id)
    return entry


def set_processes(metric: Metric, process_ids) -> Metric:
    if not isinstance(process_ids, list):
        raise ValidationError("process_ids array is required")
    metric.processes = Process.query.filter(Process.id.in_(process_ids)).all() if process_ids else []
    db.session.commit()
    return metric


def link_process(metric: Metric, process: Process) -> Metric:
    if any(p.id == process.id for p in metric.processes):
        raise ConflictError("This metric is already linked to this process", resource="Metric")
    metric.processes.append(process)
    db.session.commit()
    logger.info("Metric %s linked", metric.id, extra={"process_id": process.id})
    return metric
