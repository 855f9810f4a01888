"""
Process service: process CRUD, improvement journal, Baldrige question
mappings and readiness snapshots.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from hub.core.exceptions import ConflictError, NotFoundError, ValidationError
from hub.models import db
from hub.models.process import (
    ADLI_LABELS, IMPROVEMENT_SECTIONS, IMPROVEMENT_STATUSES, MAPPING_COVERAGE, PROCESS_STATUSES,
    PROCESS_TYPES, BaldrigeQuestion, Category, Process, ProcessHistory, ProcessImprovement,
    ProcessQuestionMapping, ReadinessSnapshot,
)
from hub.services.formatting import round_half_up
from hub.services.health_data import fetch_health_data
from hub.services.process_health import weighted_account_score

logger = logging.getLogger(__name__)

READY_THRESHOLD = 80

_SCALAR_FIELDS = (
    "name", "category_id", "owner", "owner_email", "is_key", "process_type", "status",
    "baldrige_item", "description", "guided_step", "asana_project_gid", "asana_project_url",
)
CONTENT_FIELDS = ("charter", "adli_approach", "adli_deployment", "adli_learning",
                  "adli_integration", "workflow", "baldrige_connections")
_CONTENT_LABELS = dict(ADLI_LABELS, charter="Charter", workflow="Workflow",
                       baldrige_connections="Baldrige Connections")


# ── Processes ────────────────────────────────────────────────────────────────

def get_process(process_id) -> Process:
    process = db.session.get(Process, process_id)
    if process is None:
        raise NotFoundError("Process", process_id)
    return process


def list_processes(now=None) -> list[dict]:
    """Summary rows (no narrative content) with health score and ADLI score."""
    data = fetch_health_data(now=now)
    rows = []
    for proc in data["processes"]:
        pid = proc["id"]
        health = data["health_scores"][pid]
        rows.append({
            **{k: v for k, v in proc.items() if k not in CONTENT_FIELDS},
            "health_score": health["total"],
            "health_level": health["level"]["label"],
            "adli_score": data["adli_scores"].get(pid),
            "last_activity": data["last_activity"].get(pid),
        })
    return rows


def _validate_process_fields(body):
    if "status" in body and body["status"] not in PROCESS_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(PROCESS_STATUSES)}")
    if "process_type" in body and body["process_type"] not in PROCESS_TYPES:
        raise ValidationError(f"Invalid process_type. Must be one of: {', '.join(PROCESS_TYPES)}")
    if "name" in body and not (body["name"] or "").strip():
        raise ValidationError("name cannot be empty")


def create_process(body) -> Process:
    if not (body.get("name") or "").strip():
        raise ValidationError("name is required")
    _validate_process_fields(body)
    process = Process()
    for key in _SCALAR_FIELDS + CONTENT_FIELDS:
        if key in body:
            setattr(process, key, body[key])
    if process.owner_email:
        process.owner_email = process.owner_email.lower()
    if process.process_type == "key":
        process.is_key = True
    db.session.add(process)
    db.session.commit()
    logger.info("Process created", extra={"process_id": process.id})
    return process


def update_process(process: Process, body, user=None) -> Process:
    """Apply a partial update. Each replaced narrative section leaves a
    ``ProcessHistory`` note."""
    _validate_process_fields(body)
    touched = []
    for key in _SCALAR_FIELDS:
        if key in body:
            setattr(process, key, body[key])
    for key in CONTENT_FIELDS:
        if key in body and body[key] != getattr(process, key):
            setattr(process, key, body[key])
            touched.append(_CONTENT_LABELS[key])
    if "owner_email" in body and process.owner_email:
        process.owner_email = process.owner_email.lower()
    if "process_type" in body:
        process.is_key = process.process_type == "key"
    if touched:
        who = f" by {user.display_name}" if user else ""
        db.session.add(ProcessHistory(
            process_id=process.id,
            change_description=f"Updated {', '.join(touched)}{who}",
        ))
    db.session.commit()
    return process


def delete_process(process: Process) -> None:
    db.session.delete(process)
    db.session.commit()
    logger.info("Process deleted", extra={"process_id": process.id})


def process_health(process: Process, now=None) -> dict:
    data = fetch_health_data(process_ids=[process.id], now=now)
    return data["health_scores"][process.id]


def list_history(process_id):
    return (
        ProcessHistory.query.filter_by(process_id=process_id)
        .order_by(ProcessHistory.changed_at.desc(), ProcessHistory.id.desc())
        .all()
    )


def list_categories():
    return Category.query.order_by(Category.sort_order, Category.id).all()


# ── Improvement journal ──────────────────────────────────────────────────────

def list_improvements(process_id):
    return (
        ProcessImprovement.query.filter_by(process_id=process_id)
        .order_by(ProcessImprovement.committed_date.desc(), ProcessImprovement.id.desc())
        .all()
    )


def create_improvement(body) -> ProcessImprovement:
    if not body.get("process_id") or not body.get("section_affected") or not body.get("title"):
        raise ValidationError("process_id, section_affected, and title are required")
    if body["section_affected"] not in IMPROVEMENT_SECTIONS:
        raise ValidationError(
            f"Invalid section_affected. Must be one of: {', '.join(IMPROVEMENT_SECTIONS)}"
        )
    get_process(body["process_id"])
    improvement = ProcessImprovement(
        process_id=body["process_id"],
        section_affected=body["section_affected"],
        change_type=body.get("change_type") or "modification",
        title=body["title"],
        description=body.get("description"),
        trigger=body.get("trigger"),
        trigger_detail=body.get("trigger_detail"),
        before_snapshot=body.get("before_snapshot"),
        after_snapshot=body.get("after_snapshot"),
        source=body.get("source") or "user_initiated",
        committed_by=body.get("committed_by"),
    )
    db.session.add(improvement)
    db.session.commit()
    return improvement


def update_improvement(body, now=None) -> ProcessImprovement:
    if not body.get("id"):
        raise ValidationError("id is required")
    improvement = db.session.get(ProcessImprovement, body["id"])
    if improvement is None:
        raise NotFoundError("Improvement", body["id"])
    now = now or datetime.now(timezone.utc)

    status = body.get("status")
    if status:
        if status not in IMPROVEMENT_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(IMPROVEMENT_STATUSES)}")
        improvement.status = status
        if status == "implemented":
            improvement.implemented_date = now
    if "impact_notes" in body:
        improvement.impact_notes = body["impact_notes"]
    if "impact_assessed" in body:
        improvement.impact_assessed = bool(body["impact_assessed"])
        if body["impact_assessed"]:
            improvement.impact_assessment_date = now
    db.session.commit()
    return improvement


def delete_improvement(improvement_id) -> None:
    improvement = db.session.get(ProcessImprovement, improvement_id)
    if improvement is None:
        raise NotFoundError("Improvement", improvement_id)
    db.session.delete(improvement)
    db.session.commit()


# ── Baldrige question mappings ───────────────────────────────────────────────

def list_mappings(process_id=None):
    query = db.session.query(ProcessQuestionMapping, BaldrigeQuestion).join(
        BaldrigeQuestion, BaldrigeQuestion.id == ProcessQuestionMapping.question_id,
    )
    if process_id is not None:
        query = query.filter(ProcessQuestionMapping.process_id == process_id)
    rows = query.order_by(BaldrigeQuestion.sort_order, BaldrigeQuestion.id).all()
    return [dict(m.to_dict(), question=q.to_dict()) for m, q in rows]


def create_mapping(body) -> ProcessQuestionMapping:
    if not body.get("process_id") or not body.get("question_id"):
        raise ValidationError("process_id and question_id are required")
    coverage = body.get("coverage") or "primary"
    if coverage not in MAPPING_COVERAGE:
        raise ValidationError(f"Invalid coverage. Must be one of: {', '.join(MAPPING_COVERAGE)}")
    mapping = ProcessQuestionMapping(
        process_id=body["process_id"],
        question_id=body["question_id"],
        coverage=coverage,
        notes=body.get("notes"),
        mapped_by=body.get("mapped_by") or "manual",
    )
    db.session.add(mapping)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("This process is already mapped to this question",
                            resource="ProcessQuestionMapping") from exc
    return mapping


def update_mapping(body) -> ProcessQuestionMapping:
    if not body.get("id"):
        raise ValidationError("id is required")
    mapping = db.session.get(ProcessQuestionMapping, body["id"])
    if mapping is None:
        raise NotFoundError("Mapping", body["id"])
    if body.get("coverage"):
        if body["coverage"] not in MAPPING_COVERAGE:
            raise ValidationError(f"Invalid coverage. Must be one of: {', '.join(MAPPING_COVERAGE)}")
        mapping.coverage = body["coverage"]
    if "notes" in body:
        mapping.notes = body["notes"]
    db.session.commit()
    return mapping


def delete_mapping(mapping_id) -> None:
    mapping = db.session.get(ProcessQuestionMapping, mapping_id)
    if mapping is None:
        raise NotFoundError("Mapping", mapping_id)
    db.session.delete(mapping)
    db.session.commit()


# ── Readiness ────────────────────────────────────────────────────────────────

def list_snapshots():
    return ReadinessSnapshot.query.order_by(ReadinessSnapshot.snapshot_date).all()


def readiness_summary(now=None) -> dict:
    """Organisation readiness from current health scores.

    ``category_scores`` maps category display name → key-weighted mean,
    ``dimension_scores`` maps dimension → mean percentage of its maximum.
    """
    data = fetch_health_data(now=now)
    processes = data["processes"]
    scores = data["health_scores"]

    by_category = defaultdict(list)
    dimension_pct = defaultdict(list)
    for proc in processes:
        result = scores[proc["id"]]
        item = (result["total"], proc["process_type"] == "key")
        by_category[proc["category_display_name"] or "Uncategorized"].append(item)
        for name, dim in result["dimensions"].items():
            dimension_pct[name].append(dim["score"] / dim["max"] * 100 if dim["max"] else 0)

    return {
        "org_score": weighted_account_score(
            (scores[p["id"]]["total"], p["process_type"] == "key") for p in processes
        ),
        "category_scores": {name: weighted_account_score(items) for name, items in by_category.items()},
        "dimension_scores": {
            name: round_half_up(sum(values) / len(values)) for name, values in dimension_pct.items()
        },
        "process_count": len(processes),
        "ready_count": sum(1 for p in processes if scores[p["id"]]["total"] >= READY_THRESHOLD),
    }


def take_snapshot(now=None) -> ReadinessSnapshot:
    """Upsert today's snapshot (one row per day)."""
    now = now or datetime.now(timezone.utc)
    summary = readiness_summary(now=now)
    snapshot = ReadinessSnapshot.query.filter_by(snapshot_date=now.date()).first()
    if snapshot is None:
        snapshot = ReadinessSnapshot(snapshot_date=now.date())
        db.session.add(snapshot)
    for key, value in summary.items():
        setattr(snapshot, key, value)
    db.session.commit()
    return snapshot
