"""
NIA Excellence Hub
Strategic plan objectives.

compute_type decides where the current value comes from:
    metric          latest entry of ``linked_metric_id``
    adli_threshold  number of processes whose latest ADLI score is >= 70
    manual          ``current_value`` as typed in
"""

from datetime import datetime, timezone

from hub.models import db

COMPUTE_TYPES = ("metric", "adli_threshold", "manual")
BSC_PERSPECTIVES = ("financial", "customer", "internal", "learning")
ADLI_THRESHOLD_SCORE = 70


def _utcnow():
    return datetime.now(timezone.utc)


process_objectives = db.Table(
    "process_objectives",
    db.Column("objective_id", db.Integer, db.ForeignKey("strategic_objectives.id", ondelete="CASCADE"),
              primary_key=True),
    db.Column("process_id", db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"), primary_key=True),
)


class StrategicObjective(db.Model):
    __tablename__ = "strategic_objectives"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    bsc_perspective = db.Column(db.String(20), nullable=False, default="internal")
    target_value = db.Column(db.Float, nullable=True)
    target_unit = db.Column(db.String(20), nullable=True)
    target_year = db.Column(db.Integer, nullable=True)
    current_value = db.Column(db.Float, nullable=True)
    compute_type = db.Column(db.String(20), nullable=False, default="manual")
    linked_metric_id = db.Column(db.Integer, db.ForeignKey("metrics.id", ondelete="SET NULL"), nullable=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    processes = db.relationship("Process", secondary=process_objectives, lazy="selectin")

    EDITABLE_FIELDS = (
        "title", "description", "bsc_perspective", "target_value", "target_unit",
        "target_year", "current_value", "compute_type", "linked_metric_id", "sort_order",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "bsc_perspective": self.bsc_perspective,
            "target_value": self.target_value,
            "target_unit": self.target_unit,
            "target_year": self.target_year,
            "current_value": self.current_value,
            "compute_type": self.compute_type,
            "linked_metric_id": self.linked_metric_id,
            "sort_order": self.sort_order,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
