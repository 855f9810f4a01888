"""
NIA Excellence Hub
Process task domain models.

Models:
    - ProcessTask:      improvement task in a PDCA section of a process
    - TaskDependency:   "task depends on task" edge (same process, acyclic)
    - TaskActivityLog:  audit trail of task changes
    - TaskComment:      discussion thread on a task

Architecture:
    Process ──1:N──▶ ProcessTask ──N:M──▶ ProcessTask  (via TaskDependency)
    ProcessTask ──1:N──▶ TaskActivityLog / TaskComment
"""

from datetime import datetime, timezone

from hub.models import db

# ── Constants ────────────────────────────────────────────────────────────────

PDCA_SECTIONS = ("plan", "execute", "evaluate", "improve")
PDCA_LABELS = {
    "plan": "Plan",
    "execute": "Execute",
    "evaluate": "Evaluate",
    "improve": "Improve",
}
ADLI_DIMENSIONS = ("approach", "deployment", "learning", "integration")
TASK_SOURCES = ("ai_suggestion", "ai_interview", "user_created")
TASK_STATUSES = ("pending", "active", "completed", "exported")
TASK_ORIGINS = ("asana", "hub_ai", "hub_manual")
TASK_PRIORITIES = ("high", "medium", "low")

DEPENDENCY_MAX_DEPTH = 10


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


class ProcessTask(db.Model):
    __tablename__ = "process_tasks"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    pdca_section = db.Column(db.String(20), nullable=False, default="plan")
    adli_dimension = db.Column(db.String(20), nullable=True)
    source = db.Column(db.String(20), default="ai_suggestion", comment="ai_suggestion | ai_interview | user_created")
    source_detail = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default="pending", comment="pending | active | completed | exported")
    origin = db.Column(db.String(20), default="hub_ai", comment="asana | hub_ai | hub_manual")

    completed = db.Column(db.Boolean, default=False, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    priority = db.Column(db.String(10), default="medium")
    sort_order = db.Column(db.Integer, default=0)

    assignee_name = db.Column(db.String(200), nullable=True)
    assignee_email = db.Column(db.String(255), nullable=True, index=True)
    assignee_asana_gid = db.Column(db.String(64), nullable=True)

    recurrence_rule = db.Column(db.JSON, nullable=True)
    recurring_parent_id = db.Column(
        db.Integer, db.ForeignKey("process_tasks.id", ondelete="SET NULL"), nullable=True,
    )

    # Asana link
    asana_task_gid = db.Column(db.String(64), nullable=True, index=True)
    asana_task_url = db.Column(db.String(500), nullable=True)
    asana_section_name = db.Column(db.String(200), nullable=True)
    asana_section_gid = db.Column(db.String(64), nullable=True)
    parent_asana_gid = db.Column(db.String(64), nullable=True)
    is_subtask = db.Column(db.Boolean, default=False)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    process = db.relationship("Process", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "title": self.title,
            "description": self.description,
            "pdca_section": self.pdca_section,
            "adli_dimension": self.adli_dimension,
            "source": self.source,
            "source_detail": self.source_detail,
            "status": self.status,
            "origin": self.origin,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "priority": self.priority,
            "sort_order": self.sort_order,
            "assignee_name": self.assignee_name,
            "assignee_email": self.assignee_email,
            "assignee_asana_gid": self.assignee_asana_gid,
            "recurrence_rule": self.recurrence_rule,
            "recurring_parent_id": self.recurring_parent_id,
            "asana_task_gid": self.asana_task_gid,
            "asana_task_url": self.asana_task_url,
            "asana_section_name": self.asana_section_name,
            "is_subtask": self.is_subtask,
            "last_synced_at": _iso(self.last_synced_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ProcessTask {self.id}: {self.title[:40]}>"


class TaskDependency(db.Model):
    """``task_id`` cannot start until ``depends_on_task_id`` is completed."""

    __tablename__ = "task_dependencies"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("process_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    depends_on_task_id = db.Column(
        db.Integer, db.ForeignKey("process_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("task_id", "depends_on_task_id", name="uq_task_dependency"),
        db.CheckConstraint("task_id != depends_on_task_id", name="ck_dependency_no_self_loop"),
    )

    def __repr__(self):
        return f"<TaskDependency {self.task_id} → {self.depends_on_task_id}>"


class TaskActivityLog(db.Model):
    __tablename__ = "task_activity_log"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("process_tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(64), nullable=True)
    user_name = db.Column(db.String(200), nullable=True)
    action = db.Column(db.String(40), nullable=False)
    detail = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "action": self.action,
            "detail": self.detail,
            "created_at": _iso(self.created_at),
        }


class TaskComment(db.Model):
    __tablename__ = "task_comments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("process_tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(64), nullable=False)
    user_name = db.Column(db.String(200), nullable=True)
    body = db.Column(db.Text, nullable=False)
    mentions = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "body": self.body,
            "mentions": self.mentions or [],
            "created_at": _iso(self.created_at),
        }
