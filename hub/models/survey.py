"""
NIA Excellence Hub
Survey domain models.

Models:
    - Survey:          questionnaire attached to a process
    - SurveyQuestion:  typed question (rating, yes_no, nps, multiple_choice,
                       checkbox, open_text, matrix), optionally feeding a metric
    - SurveyWave:      one collection round (scheduled → open → closed)
    - SurveyResponse:  one respondent's submission in a wave
    - SurveyAnswer:    one answer row (numeric value, text, or JSON payload)
    - SurveyTemplate:  portable question set (no sort_order, no metric link)

Answer encoding:
    rating / nps         value_numeric = chosen score
    yes_no               value_numeric = 1 (yes) or 0 (no)
    multiple_choice      value_numeric = choice index, value_text = "other" text
    checkbox             value_json = {"selected": [indices]}, value_numeric = count
    open_text            value_text
    matrix               one row per grid row: value_json = {"row_index": r},
                         value_numeric = chosen column index
"""

from datetime import datetime, timezone

from hub.models import db

QUESTION_TYPES = ("rating", "yes_no", "nps", "multiple_choice", "checkbox", "open_text", "matrix")
WAVE_STATUSES = ("scheduled", "open", "closed")


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


class Survey(db.Model):
    __tablename__ = "surveys"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_public = db.Column(db.Boolean, default=True)
    is_anonymous = db.Column(db.Boolean, default=True)
    welcome_message = db.Column(db.Text, nullable=True)
    thank_you_message = db.Column(db.Text, nullable=True)
    recurrence_enabled = db.Column(db.Boolean, default=False)
    recurrence_cadence = db.Column(db.String(20), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    questions = db.relationship(
        "SurveyQuestion", back_populates="survey", cascade="all, delete-orphan",
        order_by="SurveyQuestion.sort_order",
    )
    waves = db.relationship(
        "SurveyWave", back_populates="survey", cascade="all, delete-orphan",
        order_by="SurveyWave.wave_number",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "title": self.title,
            "description": self.description,
            "is_public": self.is_public,
            "is_anonymous": self.is_anonymous,
            "welcome_message": self.welcome_message,
            "thank_you_message": self.thank_you_message,
            "recurrence_enabled": self.recurrence_enabled,
            "recurrence_cadence": self.recurrence_cadence,
            "created_at": _iso(self.created_at),
        }


class SurveyQuestion(db.Model):
    __tablename__ = "survey_questions"

    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(
        db.Integer, db.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_text = db.Column(db.Text, nullable=False)
    question_type = db.Column(db.String(20), nullable=False, default="rating")
    sort_order = db.Column(db.Integer, default=0)
    rating_scale_max = db.Column(db.Integer, default=5)
    metric_id = db.Column(db.Integer, db.ForeignKey("metrics.id", ondelete="SET NULL"), nullable=True)
    options = db.Column(db.JSON, nullable=True)
    is_required = db.Column(db.Boolean, default=True)
    help_text = db.Column(db.Text, nullable=True)
    section_label = db.Column(db.String(200), nullable=True)

    survey = db.relationship("Survey", back_populates="questions")

    def to_dict(self):
        return {
            "id": self.id,
            "survey_id": self.survey_id,
            "question_text": self.question_text,
            "question_type": self.question_type,
            "sort_order": self.sort_order,
            "rating_scale_max": self.rating_scale_max,
            "metric_id": self.metric_id,
            "options": self.options or {},
            "is_required": self.is_required,
            "help_text": self.help_text,
            "section_label": self.section_label,
        }


class SurveyWave(db.Model):
    __tablename__ = "survey_waves"

    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(
        db.Integer, db.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    wave_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="open", comment="scheduled | open | closed")
    share_token = db.Column(db.String(40), nullable=False, unique=True, index=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    scheduled_open_at = db.Column(db.DateTime(timezone=True), nullable=True)
    scheduled_close_at = db.Column(db.DateTime(timezone=True), nullable=True)
    response_count = db.Column(db.Integer, default=0)

    survey = db.relationship("Survey", back_populates="waves")

    def to_dict(self):
        return {
            "id": self.id,
            "survey_id": self.survey_id,
            "wave_number": self.wave_number,
            "status": self.status,
            "share_token": self.share_token,
            "opened_at": _iso(self.opened_at),
            "closed_at": _iso(self.closed_at),
            "scheduled_open_at": _iso(self.scheduled_open_at),
            "scheduled_close_at": _iso(self.scheduled_close_at),
            "response_count": self.response_count or 0,
        }


class SurveyResponse(db.Model):
    __tablename__ = "survey_responses"

    id = db.Column(db.Integer, primary_key=True)
    wave_id = db.Column(
        db.Integer, db.ForeignKey("survey_waves.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    respondent_email = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    answers = db.relationship("SurveyAnswer", back_populates="response", cascade="all, delete-orphan")


class SurveyAnswer(db.Model):
    __tablename__ = "survey_answers"

    id = db.Column(db.Integer, primary_key=True)
    response_id = db.Column(
        db.Integer, db.ForeignKey("survey_responses.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id = db.Column(
        db.Integer, db.ForeignKey("survey_questions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    value_numeric = db.Column(db.Float, nullable=True)
    value_text = db.Column(db.Text, nullable=True)
    value_json = db.Column(db.JSON, nullable=True)

    response = db.relationship("SurveyResponse", back_populates="answers")


class SurveyTemplate(db.Model):
    __tablename__ = "survey_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(50), default="Custom")
    questions = db.Column(db.JSON, nullable=False)
    created_by = db.Column(db.String(64), nullable=True)
    is_shared = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "questions": self.questions or [],
            "created_by": self.created_by,
            "is_shared": self.is_shared,
            "created_at": _iso(self.created_at),
        }
