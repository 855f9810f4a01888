"""
NIA Excellence Hub
Process documentation domain models.

Models:
    - Category:                Baldrige category (1-7)
    - Process:                 documented business process with charter + ADLI narratives
    - ProcessAdliScore:        latest ADLI maturity assessment (one row per process)
    - ProcessHistory:          version notes written before a section is overwritten
    - ProcessImprovement:      improvement journal entry
    - BaldrigeQuestion:        point-valued criteria question
    - ProcessQuestionMapping:  process ↔ criteria question link (unique per pair)
    - ReadinessSnapshot:       daily organisation readiness score (one row per day)

Architecture:
    Category ──1:N──▶ Process ──1:1──▶ ProcessAdliScore
    Process ──1:N──▶ ProcessHistory / ProcessImprovement / ProcessTask
    Process ──N:M──▶ BaldrigeQuestion  (via ProcessQuestionMapping)
    Process ──N:M──▶ Metric            (via metric_processes)
"""

from datetime import datetime, timezone

from hub.models import db

# ── Constants ────────────────────────────────────────────────────────────────

PROCESS_STATUSES = ("draft", "ready_for_review", "approved")
PROCESS_TYPES = ("key", "support", "unclassified")

ADLI_FIELDS = ("adli_approach", "adli_deployment", "adli_learning", "adli_integration")
ADLI_LABELS = {
    "adli_approach": "Approach",
    "adli_deployment": "Deployment",
    "adli_learning": "Learning",
    "adli_integration": "Integration",
}

IMPROVEMENT_STATUSES = ("committed", "in_progress", "implemented", "not_implemented")
IMPROVEMENT_SECTIONS = ("approach", "deployment", "learning", "integration", "charter", "workflow")

MAPPING_COVERAGE = ("primary", "supporting", "partial")


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    display_name = db.Column(db.String(200), nullable=False)
    sort_order = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "sort_order": self.sort_order,
        }


class Process(db.Model):
    __tablename__ = "processes"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(300), nullable=False)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    owner = db.Column(db.String(200), nullable=True)
    owner_email = db.Column(db.String(255), nullable=True, index=True)
    is_key = db.Column(db.Boolean, default=False, nullable=False)
    process_type = db.Column(db.String(20), default="unclassified", comment="key | support | unclassified")
    status = db.Column(db.String(30), default="draft", comment="draft | ready_for_review | approved")
    baldrige_item = db.Column(db.String(20), nullable=True)
    description = db.Column(db.Text, nullable=True)

    charter = db.Column(db.JSON, nullable=True)
    adli_approach = db.Column(db.JSON, nullable=True)
    adli_deployment = db.Column(db.JSON, nullable=True)
    adli_learning = db.Column(db.JSON, nullable=True)
    adli_integration = db.Column(db.JSON, nullable=True)
    workflow = db.Column(db.JSON, nullable=True)
    baldrige_connections = db.Column(db.JSON, nullable=True)
    guided_step = db.Column(db.String(30), nullable=True)

    # Asana link
    asana_project_gid = db.Column(db.String(64), nullable=True)
    asana_project_url = db.Column(db.String(500), nullable=True)
    asana_raw_data = db.Column(db.JSON, nullable=True)
    asana_raw_data_previous = db.Column(db.JSON, nullable=True)
    asana_adli_task_gids = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    category = db.relationship("Category", lazy="joined")
    adli_score = db.relationship(
        "ProcessAdliScore", uselist=False, back_populates="process",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_content=True):
        d = {
            "id": self.id,
            "name": self.name,
            "category_id": self.category_id,
            "category_display_name": self.category.display_name if self.category else None,
            "owner": self.owner,
            "owner_email": self.owner_email,
            "is_key": self.is_key,
            "process_type": self.process_type or "unclassified",
            "status": self.status or "draft",
            "baldrige_item": self.baldrige_item,
            "description": self.description,
            "guided_step": self.guided_step,
            "asana_project_gid": self.asana_project_gid,
            "asana_project_url": self.asana_project_url,
            "asana_adli_task_gids": self.asana_adli_task_gids,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_content:
            d.update({
                "charter": self.charter,
                "adli_approach": self.adli_approach,
                "adli_deployment": self.adli_deployment,
                "adli_learning": self.adli_learning,
                "adli_integration": self.adli_integration,
                "workflow": self.workflow,
                "baldrige_connections": self.baldrige_connections,
            })
        return d

    def __repr__(self):
        return f"<Process {self.id}: {self.name}>"


class ProcessAdliScore(db.Model):
    __tablename__ = "process_adli_scores"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    approach_score = db.Column(db.Integer, nullable=False)
    deployment_score = db.Column(db.Integer, nullable=False)
    learning_score = db.Column(db.Integer, nullable=False)
    integration_score = db.Column(db.Integer, nullable=False)
    overall_score = db.Column(db.Integer, nullable=False)
    assessed_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    process = db.relationship("Process", back_populates="adli_score")

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "approach_score": self.approach_score,
            "deployment_score": self.deployment_score,
            "learning_score": self.learning_score,
            "integration_score": self.integration_score,
            "overall_score": self.overall_score,
            "assessed_at": _iso(self.assessed_at),
        }


class ProcessHistory(db.Model):
    __tablename__ = "process_history"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    version = db.Column(db.String(20), nullable=True)
    change_description = db.Column(db.Text, nullable=False)
    changed_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "version": self.version,
            "change_description": self.change_description,
            "changed_at": _iso(self.changed_at),
        }


class ProcessImprovement(db.Model):
    __tablename__ = "process_improvements"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    section_affected = db.Column(db.String(30), nullable=False)
    change_type = db.Column(db.String(30), default="modification", comment="addition | modification | removal")
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    trigger = db.Column(db.String(50), nullable=True)
    trigger_detail = db.Column(db.Text, nullable=True)
    before_snapshot = db.Column(db.JSON, nullable=True)
    after_snapshot = db.Column(db.JSON, nullable=True)
    source = db.Column(db.String(30), default="user_initiated", comment="ai_suggestion | user_initiated")
    status = db.Column(db.String(30), default="committed")
    committed_by = db.Column(db.String(255), nullable=True)
    committed_date = db.Column(db.DateTime(timezone=True), default=_utcnow)
    implemented_date = db.Column(db.DateTime(timezone=True), nullable=True)
    impact_assessed = db.Column(db.Boolean, default=False)
    impact_assessment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    impact_notes = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "section_affected": self.section_affected,
            "change_type": self.change_type,
            "title": self.title,
            "description": self.description,
            "trigger": self.trigger,
            "trigger_detail": self.trigger_detail,
            "before_snapshot": self.before_snapshot,
            "after_snapshot": self.after_snapshot,
            "source": self.source,
            "status": self.status,
            "committed_by": self.committed_by,
            "committed_date": _iso(self.committed_date),
            "implemented_date": _iso(self.implemented_date),
            "impact_assessed": self.impact_assessed,
            "impact_assessment_date": _iso(self.impact_assessment_date),
            "impact_notes": self.impact_notes,
        }


class BaldrigeQuestion(db.Model):
    __tablename__ = "baldrige_questions"

    id = db.Column(db.Integer, primary_key=True)
    item_code = db.Column(db.String(20), nullable=False, comment="e.g. 6.1")
    question_code = db.Column(db.String(30), nullable=False, unique=True, comment="e.g. 6.1a(1)")
    question_text = db.Column(db.Text, nullable=False)
    points = db.Column(db.Integer, default=0)
    sort_order = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "item_code": self.item_code,
            "question_code": self.question_code,
            "question_text": self.question_text,
            "points": self.points,
            "sort_order": self.sort_order,
        }


class ProcessQuestionMapping(db.Model):
    __tablename__ = "process_question_mappings"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id = db.Column(
        db.Integer, db.ForeignKey("baldrige_questions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    coverage = db.Column(db.String(20), default="primary", comment="primary | supporting | partial")
    notes = db.Column(db.Text, nullable=True)
    mapped_by = db.Column(db.String(20), default="manual", comment="manual | ai_suggested | ai_confirmed")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("process_id", "question_id", name="uq_process_question"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "question_id": self.question_id,
            "coverage": self.coverage,
            "notes": self.notes,
            "mapped_by": self.mapped_by,
            "created_at": _iso(self.created_at),
        }


class ReadinessSnapshot(db.Model):
    __tablename__ = "readiness_snapshots"

    id = db.Column(db.Integer, primary_key=True)
    snapshot_date = db.Column(db.Date, nullable=False, unique=True)
    org_score = db.Column(db.Integer, nullable=False)
    category_scores = db.Column(db.JSON, nullable=False)
    dimension_scores = db.Column(db.JSON, nullable=False)
    process_count = db.Column(db.Integer, default=0)
    ready_count = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "snapshot_date": self.snapshot_date.isoformat(),
            "org_score": self.org_score,
            "category_scores": self.category_scores,
            "dimension_scores": self.dimension_scores,
            "process_count": self.process_count,
            "ready_count": self.ready_count,
        }
