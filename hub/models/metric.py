"""
NIA Excellence Hub
Metric and data-entry models.

A metric has a review cadence and many dated entries; metrics link to
processes through ``metric_processes``.
"""

from datetime import datetime, timezone

from hub.models import db

CADENCES = ("monthly", "quarterly", "semi-annual", "annual")
UNITS = ("%", "count", "currency", "days", "rate", "score")


def _utcnow():
    return datetime.now(timezone.utc)


metric_processes = db.Table(
    "metric_processes",
    db.Column("metric_id", db.Integer, db.ForeignKey("metrics.id", ondelete="CASCADE"), primary_key=True),
    db.Column("process_id", db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"), primary_key=True),
)


class Metric(db.Model):
    __tablename__ = "metrics"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(300), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    cadence = db.Column(db.String(20), nullable=False, default="annual")
    unit = db.Column(db.String(20), nullable=False, default="count")
    target_value = db.Column(db.Float, nullable=True)
    comparison_value = db.Column(db.Float, nullable=True)
    comparison_source = db.Column(db.String(300), nullable=True)
    is_higher_better = db.Column(db.Boolean, default=True, nullable=False)
    data_source = db.Column(db.String(300), nullable=True)
    next_entry_expected = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    processes = db.relationship("Process", secondary=metric_processes, lazy="selectin")
    entries = db.relationship(
        "Entry", back_populates="metric", cascade="all, delete-orphan",
        order_by="Entry.date",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "cadence": self.cadence,
            "unit": self.unit,
            "target_value": self.target_value,
            "comparison_value": self.comparison_value,
            "comparison_source": self.comparison_source,
            "is_higher_better": self.is_higher_better,
            "data_source": self.data_source,
            "next_entry_expected": self.next_entry_expected.isoformat() if self.next_entry_expected else None,
            "process_ids": [p.id for p in self.processes],
        }

    def __repr__(self):
        return f"<Metric {self.id}: {self.name}>"


class Entry(db.Model):
    __tablename__ = "entries"

    id = db.Column(db.Integer, primary_key=True)
    metric_id = db.Column(
        db.Integer, db.ForeignKey("metrics.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    value = db.Column(db.Float, nullable=False)
    date = db.Column(db.Date, nullable=False, index=True)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    metric = db.relationship("Metric", back_populates="entries")

    def to_dict(self):
        return {
            "id": self.id,
            "metric_id": self.metric_id,
            "value": self.value,
            "date": self.date.isoformat(),
            "note": self.note,
        }
