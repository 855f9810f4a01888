"""
Task service: creation, updates with Asana write-back, recurrence, comments
and the activity log.

Update rules for a task that came from Asana (``origin == "asana"`` with a
GID): the change is pushed to Asana first and the Hub row is only written
when Asana accepts it. Moving the Asana section, activity rows and the
recurrence spawn are best-effort and never fail the update.
"""

import logging
import re
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from hub.core.exceptions import NotConnectedError, UpstreamError, ValidationError
from hub.models import db
from hub.models.task import (
    ADLI_DIMENSIONS, PDCA_LABELS, PDCA_SECTIONS, TASK_PRIORITIES, TASK_SOURCES,
    ProcessTask, TaskActivityLog, TaskComment,
)
from hub.models.user import UserRole
from hub.services import asana_service
from hub.services.recurrence import next_due_date, validate_recurrence_rule
from hub.utils.helpers import is_number, parse_date

logger = logging.getLogger(__name__)

COMMENT_MAX_LENGTH = 2000
ACTIVITY_LIMIT = 50
RECURRING_SORT_GAP = 1000

_MENTION_RE = re.compile(r"@([A-Za-z]+ [A-Za-z]+)")


# ── Activity log ─────────────────────────────────────────────────────────────

def log_activity(task_id, user, action, detail=None):
    """Append one activity row. Failures are logged and swallowed."""
    log_activities([(task_id, action, detail)], user)


def log_activities(entries, user):
    if not entries:
        return
    try:
        for task_id, action, detail in entries:
            db.session.add(TaskActivityLog(
                task_id=task_id,
                user_id=user.auth_id if user else None,
                user_name=user.display_name if user else "Unknown",
                action=action,
                detail=detail,
            ))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Activity log write failed: %s", exc)


def list_activity(task_id):
    return (
        TaskActivityLog.query.filter_by(task_id=task_id)
        .order_by(TaskActivityLog.created_at.desc(), TaskActivityLog.id.desc())
        .limit(ACTIVITY_LIMIT)
        .all()
    )


# ── Create / list ────────────────────────────────────────────────────────────

def _validate_new_task(item):
    if not isinstance(item, dict) or not item.get("process_id") or not item.get("title") \
            or not item.get("pdca_section"):
        raise ValidationError("Each task requires process_id, title, and pdca_section")
    if item["pdca_section"] not in PDCA_SECTIONS:
        raise ValidationError(
            f"Invalid pdca_section: {item['pdca_section']}. Must be one of: {', '.join(PDCA_SECTIONS)}"
        )
    if item.get("adli_dimension") and item["adli_dimension"] not in ADLI_DIMENSIONS:
        raise ValidationError(
            f"Invalid adli_dimension: {item['adli_dimension']}. Must be one of: {', '.join(ADLI_DIMENSIONS)}"
        )
    if item.get("source") and item["source"] not in TASK_SOURCES:
        raise ValidationError(
            f"Invalid source: {item['source']}. Must be one of: {', '.join(TASK_SOURCES)}"
        )


def create_tasks(payload) -> list[int]:
    """Insert one task (dict) or a batch (list). All-or-nothing validation."""
    items = payload if isinstance(payload, list) else [payload]
    if not items:
        raise ValidationError("At least one task is required")
    for item in items:
        _validate_new_task(item)

    rows = [
        ProcessTask(
            process_id=item["process_id"],
            title=item["title"],
            description=item.get("description") or None,
            pdca_section=item["pdca_section"],
            adli_dimension=item.get("adli_dimension") or None,
            source=item.get("source") or "ai_suggestion",
            source_detail=item.get("source_detail") or None,
        )
        for item in items
    ]
    db.session.add_all(rows)
    db.session.commit()
    return [r.id for r in rows]


def list_process_tasks(process_id):
    return (
        ProcessTask.query.filter_by(process_id=process_id)
        .order_by(ProcessTask.created_at, ProcessTask.id)
        .all()
    )


def my_tasks(email, priority=None, status=None, search=None, today=None):
    """Non-pending tasks assigned to *email*, soonest due first (undated last)."""
    query = ProcessTask.query.filter(
        ProcessTask.assignee_email == email, ProcessTask.status != "pending",
    )
    if priority in TASK_PRIORITIES:
        query = query.filter(ProcessTask.priority == priority)
    if status == "active":
        query = query.filter(ProcessTask.completed.is_(False))
    elif status == "completed":
        query = query.filter(ProcessTask.completed.is_(True))
    elif status == "overdue":
        today = today or datetime.now(timezone.utc).date()
        query = query.filter(ProcessTask.completed.is_(False), ProcessTask.due_date < today)
    if search:
        pattern = f"%{search}%"
        query = query.filter(ProcessTask.title.ilike(pattern) | ProcessTask.description.ilike(pattern))
    tasks = query.order_by(ProcessTask.due_date.is_(None), ProcessTask.due_date, ProcessTask.id).all()
    result = []
    for task in tasks:
        row = task.to_dict()
        row["process_name"] = task.process.name if task.process else "Unknown"
        row["process_owner"] = task.process.owner if task.process else None
        result.append(row)
    return result


# ── Update ───────────────────────────────────────────────────────────────────

def _collect_updates(task, body):
    updates = {}
    if "title" in body:
        title = body["title"]
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Title cannot be empty")
        updates["title"] = title.strip()
    if "description" in body:
        updates["description"] = body["description"]
    if "start_date" in body:
        updates["start_date"] = parse_date(body["start_date"])
    if "due_date" in body:
        updates["due_date"] = parse_date(body["due_date"])
    for key in ("assignee_name", "assignee_email", "assignee_asana_gid"):
        if key in body:
            updates[key] = body[key]
    if "sort_order" in body:
        if not is_number(body["sort_order"]) or body["sort_order"] < 0:
            raise ValidationError("sort_order must be a non-negative number")
        updates["sort_order"] = int(body["sort_order"])
    if "pdca_section" in body:
        if body["pdca_section"] not in PDCA_SECTIONS:
            raise ValidationError(f"Invalid pdca_section. Must be one of: {', '.join(PDCA_SECTIONS)}")
        updates["pdca_section"] = body["pdca_section"]
        updates["asana_section_name"] = PDCA_LABELS[body["pdca_section"]]
    if "priority" in body:
        if body["priority"] not in TASK_PRIORITIES:
            raise ValidationError("Invalid priority. Must be one of: high, medium, low")
        updates["priority"] = body["priority"]
    if "recurrence_rule" in body:
        rule = body["recurrence_rule"]
        if rule is not None:
            error = validate_recurrence_rule(rule)
            if error:
                raise ValidationError(error)
        updates["recurrence_rule"] = rule
    if "completed" in body:
        done = bool(body["completed"])
        updates["completed"] = done
        updates["completed_at"] = datetime.now(timezone.utc) if done else None
        updates["status"] = "completed" if done else "active"
    if not updates:
        raise ValidationError("No fields to update")
    return updates


def _spawn_recurrence(task, now):
    """Create the next occurrence of a completed recurring task.

    Returns the new task id, or None when the series has ended or an open
    occurrence already exists.
    """
    next_due = next_due_date(now, task.recurrence_rule)
    if next_due is None:
        return None
    parent_id = task.recurring_parent_id or task.id
    open_sibling = ProcessTask.query.filter(
        ProcessTask.recurring_parent_id == parent_id,
        ProcessTask.completed.is_(False),
    ).first()
    if open_sibling is not None:
        return None
    max_sort = db.session.query(func.max(ProcessTask.sort_order)).filter(
        ProcessTask.process_id == task.process_id,
        ProcessTask.pdca_section == task.pdca_section,
    ).scalar()
    spawned = ProcessTask(
        process_id=task.process_id,
        title=task.title,
        description=task.description,
        pdca_section=task.pdca_section,
        assignee_name=task.assignee_name,
        assignee_email=task.assignee_email,
        assignee_asana_gid=task.assignee_asana_gid,
        due_date=next_due,
        start_date=None,
        priority=task.priority or "medium",
        recurrence_rule=task.recurrence_rule,
        recurring_parent_id=parent_id,
        origin="hub_manual" if task.origin == "asana" else task.origin,
        source="user_created",
        status="active",
        sort_order=(max_sort or 0) + RECURRING_SORT_GAP,
    )
    db.session.add(spawned)
    db.session.commit()
    return spawned.id


def update_task(task: ProcessTask, body: dict, user: UserRole) -> dict:
    """Apply a PATCH body to *task*.

    Returns ``{"success": True}`` plus ``warning``/``blockerCount`` when a
    task with open blockers is completed and ``spawnedTaskId`` when a
    recurring task produced its next occurrence.

    Raises:
        ValidationError: bad field value, or nothing to update.
        NotConnectedError: Asana task but the user has no Asana token.
        UpstreamError: Asana rejected the write-back.
    """
    from hub.services.task_dependency_service import incomplete_blocker_count

    updates = _collect_updates(task, body)
    was_completed = bool(task.completed)
    previous = {"priority": task.priority, "assignee_name": task.assignee_name}

    if task.origin == "asana" and task.asana_task_gid:
        token = asana_service.get_asana_token(user.auth_id)
        if not token:
            raise NotConnectedError("Asana not connected. Reconnect in Settings.", code="asana_not_connected")
        try:
            asana_service.push_task_changes(token, task, body)
        except UpstreamError as exc:
            raise UpstreamError(
                exc.message or "Couldn't update in Asana. Please try again.",
                code="asana_sync_failed",
                status_code=exc.status_code,
            ) from exc
        if "pdca_section" in body:
            section_gid = asana_service.move_task_to_section(token, task, body["pdca_section"])
            if section_gid:
                updates["asana_section_gid"] = section_gid
        updates["last_synced_at"] = datetime.now(timezone.utc)

    for key, value in updates.items():
        setattr(task, key, value)
    db.session.commit()

    result = {"success": True}
    completing = body.get("completed") is True and not was_completed

    if completing:
        blockers = incomplete_blocker_count(task.id)
        if blockers:
            result.update(warning="completed_with_blockers", blockerCount=blockers)
        if task.recurrence_rule:
            try:
                spawned_id = _spawn_recurrence(task, datetime.now(timezone.utc))
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning("Recurrence spawn failed for task %s: %s", task.id, exc,
                               extra={"task_id": task.id})
                spawned_id = None
            if spawned_id:
                result["spawnedTaskId"] = spawned_id

    activities = []
    if completing:
        activities.append((task.id, "completed", None))
    elif body.get("completed") is False and was_completed:
        activities.append((task.id, "uncompleted", None))
    if "priority" in body and body["priority"] != previous["priority"]:
        activities.append((task.id, "priority_changed", {"from": previous["priority"], "to": body["priority"]}))
    if "assignee_name" in body and body["assignee_name"] != previous["assignee_name"]:
        activities.append((task.id, "reassigned", {
            "from": previous["assignee_name"] or "Unassigned",
            "to": body["assignee_name"] or "Unassigned",
        }))
    if "recurrence_rule" in body:
        rule = body["recurrence_rule"]
        activities.append((task.id, "recurrence_set", {"rule": rule} if rule else {"removed": True}))
    log_activities(activities, user)
    return result


def delete_task(task: ProcessTask, user: UserRole) -> None:
    """Delete a task, removing it from Asana first when it has a GID."""
    if task.asana_task_gid:
        token = asana_service.get_asana_token(user.auth_id)
        if not token:
            raise NotConnectedError(
                "Asana not connected. Reconnect in Settings to delete this task.",
                code="asana_not_connected", status=502,
            )
        try:
            asana_service.delete_remote_task(token, task)
        except UpstreamError as exc:
            raise UpstreamError(
                exc.message or "Couldn't delete from Asana. Try again or disconnect Asana first.",
                code="asana_delete_failed",
                status_code=exc.status_code,
            ) from exc
    db.session.delete(task)
    db.session.commit()


def reorder_tasks(updates, user: UserRole) -> None:
    """Batch ``sort_order`` (and optional ``pdca_section``) changes from drag-and-drop."""
    if not isinstance(updates, list) or not updates:
        raise ValidationError("updates array is required")
    for u in updates:
        if not isinstance(u, dict) or not u.get("id") or not is_number(u.get("sort_order")):
            raise ValidationError("Each update requires id (number) and sort_order (number)")
        if u.get("pdca_section") is not None and u["pdca_section"] not in PDCA_SECTIONS:
            raise ValidationError(f"Invalid pdca_section: {u['pdca_section']}")

    moved = []
    for u in updates:
        task = db.session.get(ProcessTask, u["id"])
        if task is None:
            continue
        task.sort_order = int(u["sort_order"])
        if u.get("pdca_section"):
            task.pdca_section = u["pdca_section"]
            task.asana_section_name = PDCA_LABELS[u["pdca_section"]]
            if task.origin == "asana" and task.asana_task_gid:
                moved.append(task)
    db.session.commit()

    if not moved:
        return
    token = asana_service.get_asana_token(user.auth_id)
    if not token:
        return
    for task in moved:
        section_gid = asana_service.move_task_to_section(token, task, task.pdca_section)
        if section_gid:
            task.asana_section_gid = section_gid
    db.session.commit()


# ── Comments ─────────────────────────────────────────────────────────────────

def list_comments(task_id):
    return TaskComment.query.filter_by(task_id=task_id).order_by(TaskComment.created_at, TaskComment.id).all()


def parse_mentions(body: str) -> list[str]:
    """``@First Last`` names in a comment body."""
    return _MENTION_RE.findall(body)


def add_comment(task: ProcessTask, user: UserRole, body) -> TaskComment:
    text = body.strip() if isinstance(body, str) else ""
    if not text or len(text) > COMMENT_MAX_LENGTH:
        raise ValidationError("Comment must be 1-2000 characters")

    names = parse_mentions(text)
    mentioned = []
    if names:
        mentioned = [
            {"auth_id": u.auth_id, "full_name": u.full_name}
            for u in UserRole.query.filter(UserRole.full_name.in_(names))
            if u.auth_id != user.auth_id
        ]
    comment = TaskComment(
        task_id=task.id,
        user_id=user.auth_id,
        user_name=user.display_name,
        body=text,
        mentions=mentioned or None,
    )
    db.session.add(comment)
    db.session.commit()
    log_activity(task.id, user, "commented")
    return comment
