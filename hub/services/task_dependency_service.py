"""
Task dependency graph.

An edge ``task_id → depends_on_task_id`` means the first task is blocked by
the second. Edges are same-process only, unique, and never form a cycle.
Cycle detection is a breadth-first walk from the proposed blocker along
existing edges, bounded at ``DEPENDENCY_MAX_DEPTH`` levels.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from hub.core.exceptions import ConflictError, NotFoundError, ValidationError
from hub.models import db
from hub.models.task import DEPENDENCY_MAX_DEPTH, ProcessTask, TaskDependency
from hub.services.task_service import log_activity
from hub.utils.helpers import iso

logger = logging.getLogger(__name__)


def would_create_cycle(task_id, depends_on_task_id, max_depth=DEPENDENCY_MAX_DEPTH) -> bool:
    """True when *task_id* is reachable from *depends_on_task_id* within
    *max_depth* hops."""
    visited = set()
    frontier = [depends_on_task_id]
    depth = 0
    while frontier and depth < max_depth:
        depth += 1
        rows = db.session.execute(
            select(TaskDependency.depends_on_task_id).where(TaskDependency.task_id.in_(frontier))
        ).scalars().all()
        frontier = []
        for nxt in rows:
            if nxt == task_id:
                return True
            if nxt not in visited:
                visited.add(nxt)
                frontier.append(nxt)
    return False


def _related(rows, id_attr):
    ids = {getattr(r, id_attr) for r in rows}
    tasks = {t.id: t for t in ProcessTask.query.filter(ProcessTask.id.in_(ids))} if ids else {}
    out = []
    for r in rows:
        other = tasks.get(getattr(r, id_attr))
        out.append({
            "dependency_id": r.id,
            "task_id": getattr(r, id_attr),
            "title": other.title if other else "Unknown",
            "completed": bool(other.completed) if other else False,
            "created_at": iso(r.created_at),
        })
    return out


def list_dependencies(task_id) -> dict:
    """``{blockedBy, blocking}`` for one task."""
    blocked_by = TaskDependency.query.filter_by(task_id=task_id).order_by(TaskDependency.id).all()
    blocking = TaskDependency.query.filter_by(depends_on_task_id=task_id).order_by(TaskDependency.id).all()
    return {
        "blockedBy": _related(blocked_by, "depends_on_task_id"),
        "blocking": _related(blocking, "task_id"),
    }


def add_dependency(task_id, depends_on_task_id, user=None) -> TaskDependency:
    """Insert an edge after validating it.

    Raises:
        ValidationError: self-edge or cross-process edge.
        NotFoundError: either task is missing.
        ConflictError: cycle or duplicate edge.
    """
    if task_id == depends_on_task_id:
        raise ValidationError("A task cannot depend on itself")

    task = db.session.get(ProcessTask, task_id)
    blocker = db.session.get(ProcessTask, depends_on_task_id)
    if task is None or blocker is None:
        raise NotFoundError("One or both tasks")
    if task.process_id != blocker.process_id:
        raise ValidationError("Tasks must be in the same process")

    if would_create_cycle(task_id, depends_on_task_id):
        raise ConflictError("This would create a circular dependency", resource="TaskDependency")

    dep = TaskDependency(
        task_id=task_id,
        depends_on_task_id=depends_on_task_id,
        created_by=user.auth_id if user else None,
    )
    db.session.add(dep)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("This dependency already exists", resource="TaskDependency") from exc

    log_activity(task_id, user, "dependency_added",
                 {"depends_on": depends_on_task_id, "depends_on_title": blocker.title})
    logger.info("Dependency added %s -> %s", task_id, depends_on_task_id, extra={"task_id": task_id})
    return dep


def remove_dependency(dependency_id, user=None) -> None:
    dep = db.session.get(TaskDependency, dependency_id)
    if dep is None:
        return
    task_id, removed = dep.task_id, dep.depends_on_task_id
    db.session.delete(dep)
    db.session.commit()
    log_activity(task_id, user, "dependency_removed", {"removed_dependency_on": removed})


def incomplete_blocker_count(task_id) -> int:
    return (
        db.session.query(TaskDependency)
        .join(ProcessTask, ProcessTask.id == TaskDependency.depends_on_task_id)
        .filter(TaskDependency.task_id == task_id, ProcessTask.completed.is_(False))
        .count()
    )
