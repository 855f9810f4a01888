"""
Survey service: survey CRUD, wave lifecycle, public responses, results and
the survey → metric bridge.

Wave lifecycle:
    scheduled ──(scheduled_open_at reached)──▶ open ──(close / scheduled_close_at)──▶ closed

At most one wave per survey is open: opening a wave closes the previous one.
Closing a wave logs one metric entry per metric-linked question; an entry is
skipped when the same (metric, date, note) already exists, so re-closing or
re-running the scheduler never duplicates data.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from hub.core.exceptions import GoneError, NotFoundError, ValidationError
from hub.models import db
from hub.models.metric import Entry
from hub.models.survey import (
    QUESTION_TYPES, Survey, SurveyAnswer, SurveyQuestion, SurveyResponse,
    SurveyTemplate, SurveyWave,
)
from hub.services import survey_aggregation
from hub.utils.helpers import is_number, parse_datetime

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def new_share_token() -> str:
    """20 URL-safe hex characters (80 bits)."""
    return secrets.token_hex(10)


# ── Surveys ──────────────────────────────────────────────────────────────────

def _validate_questions(questions):
    if not isinstance(questions, list) or not questions:
        raise ValidationError("At least one question is required")
    for q in questions:
        if not isinstance(q, dict) or not q.get("question_text") or not q.get("question_type"):
            raise ValidationError("Each question requires question_text and question_type")
        if q["question_type"] not in QUESTION_TYPES:
            raise ValidationError(
                f"Invalid question_type: {q['question_type']}. Must be one of: {', '.join(QUESTION_TYPES)}"
            )


def _question_row(survey_id, q, index):
    return SurveyQuestion(
        survey_id=survey_id,
        question_text=q["question_text"],
        question_type=q["question_type"],
        sort_order=q.get("sort_order", index),
        rating_scale_max=q.get("rating_scale_max") or 5,
        metric_id=q.get("metric_id") or None,
        options=q.get("options") or {},
        is_required=q.get("is_required", True),
        help_text=q.get("help_text") or None,
        section_label=q.get("section_label") or None,
    )


def list_surveys(process_id):
    """Surveys for a process, newest first, with question count and latest wave."""
    surveys = (
        Survey.query.filter_by(process_id=process_id)
        .order_by(Survey.created_at.desc(), Survey.id.desc())
        .all()
    )
    result = []
    for s in surveys:
        latest = (
            SurveyWave.query.filter_by(survey_id=s.id)
            .order_by(SurveyWave.wave_number.desc())
            .first()
        )
        row = s.to_dict()
        row["question_count"] = len(s.questions)
        row["latest_wave"] = latest.to_dict() if latest else None
        result.append(row)
    return result


def get_survey(survey_id) -> Survey:
    survey = db.session.get(Survey, survey_id)
    if survey is None:
        raise NotFoundError("Survey", survey_id)
    return survey


def create_survey(body, user=None) -> Survey:
    if not body.get("process_id") or not body.get("title"):
        raise ValidationError("process_id and title are required")
    questions = body.get("questions")
    _validate_questions(questions)

    survey = Survey(
        process_id=body["process_id"],
        title=body["title"],
        description=body.get("description") or None,
        is_public=body.get("is_public", True),
        is_anonymous=body.get("is_anonymous", True),
        welcome_message=body.get("welcome_message") or None,
        thank_you_message=body.get("thank_you_message") or None,
        recurrence_enabled=bool(body.get("recurrence_enabled")),
        recurrence_cadence=body.get("recurrence_cadence") or None,
        created_by=user.auth_id if user else None,
    )
    db.session.add(survey)
    db.session.flush()
    db.session.add_all(_question_row(survey.id, q, i) for i, q in enumerate(questions))
    db.session.commit()
    logger.info("Survey created", extra={"survey_id": survey.id})
    return survey


_SURVEY_FIELDS = (
    "title", "description", "is_public", "is_anonymous", "welcome_message",
    "thank_you_message", "recurrence_enabled", "recurrence_cadence",
)


def update_survey(body) -> Survey:
    """Update settings and, when ``questions`` is given, replace the question set."""
    if not body.get("id"):
        raise ValidationError("id is required")
    survey = get_survey(body["id"])
    for key in _SURVEY_FIELDS:
        if key in body:
            setattr(survey, key, body[key])

    questions = body.get("questions")
    if isinstance(questions, list):
        _validate_questions(questions)
        for old in list(survey.questions):
            db.session.delete(old)
        db.session.flush()
        db.session.add_all(_question_row(survey.id, q, i) for i, q in enumerate(questions))
    db.session.commit()
    db.session.refresh(survey)
    return survey


def delete_survey(survey_id) -> None:
    survey = get_survey(survey_id)
    db.session.delete(survey)
    db.session.commit()


# ── Waves ────────────────────────────────────────────────────────────────────

def list_waves(survey_id):
    return (
        SurveyWave.query.filter_by(survey_id=survey_id)
        .order_by(SurveyWave.wave_number.desc())
        .all()
    )


def get_wave(survey_id, wave_id) -> SurveyWave:
    wave = SurveyWave.query.filter_by(id=wave_id, survey_id=survey_id).first()
    if wave is None:
        raise NotFoundError("Wave", wave_id)
    return wave


def _close_open_waves(survey_id, now):
    for wave in SurveyWave.query.filter_by(survey_id=survey_id, status="open"):
        wave.status = "closed"
        wave.closed_at = now


def create_wave(survey: Survey, open_at=None, close_after_days=None, now=None) -> SurveyWave:
    """Open a new wave now, or schedule one when *open_at* is in the future."""
    now = now or _utcnow()
    open_at = parse_datetime(open_at)
    scheduled = open_at is not None and open_at > now

    if not scheduled:
        _close_open_waves(survey.id, now)

    last_number = db.session.query(func.max(SurveyWave.wave_number)).filter(
        SurveyWave.survey_id == survey.id
    ).scalar() or 0

    open_date = open_at if scheduled else now
    wave = SurveyWave(
        survey_id=survey.id,
        wave_number=last_number + 1,
        status="scheduled" if scheduled else "open",
        share_token=new_share_token(),
        opened_at=None if scheduled else now,
        scheduled_open_at=open_at if scheduled else None,
        scheduled_close_at=open_date + timedelta(days=close_after_days) if close_after_days else None,
    )
    db.session.add(wave)
    db.session.commit()
    logger.info("Wave %d %s", wave.wave_number, wave.status,
                extra={"survey_id": survey.id, "wave_id": wave.id})
    return wave


def cancel_wave(survey_id, wave_id) -> None:
    wave = get_wave(survey_id, wave_id)
    if wave.status != "scheduled":
        raise ValidationError("Only scheduled waves can be cancelled")
    db.session.delete(wave)
    db.session.commit()


def _answer_dicts(response_ids):
    if not response_ids:
        return []
    return [
        {
            "question_id": a.question_id,
            "response_id": a.response_id,
            "value_numeric": a.value_numeric,
            "value_text": a.value_text,
            "value_json": a.value_json,
        }
        for a in SurveyAnswer.query.filter(SurveyAnswer.response_id.in_(response_ids))
    ]


def _response_ids(wave_id):
    return [
        r.id for r in SurveyResponse.query.filter_by(wave_id=wave_id)
        .order_by(SurveyResponse.created_at, SurveyResponse.id)
    ]


def generate_metric_entries(survey: Survey, wave: SurveyWave, closed_at) -> int:
    """Log one entry per metric-linked question. Returns the number inserted."""
    linked = [q for q in survey.questions if q.metric_id]
    if not linked:
        return 0
    answers = _answer_dicts(_response_ids(wave.id))
    if not answers:
        return 0

    entry_date = closed_at.date()
    base_note = f"Survey: {survey.title or 'Unknown'}, Round {wave.wave_number}"
    inserted = 0
    for q in linked:
        q_answers = [a for a in answers if a["question_id"] == q.id]
        result = survey_aggregation.metric_entry_for_question(q.question_type, q_answers, base_note)
        if result is None:
            continue
        value, note = result
        exists = Entry.query.filter_by(metric_id=q.metric_id, date=entry_date, note=note).first()
        if exists is not None:
            continue
        db.session.add(Entry(metric_id=q.metric_id, value=value, date=entry_date, note=note))
        inserted += 1
    db.session.commit()
    return inserted


def close_wave(survey: Survey, wave: SurveyWave, now=None) -> dict:
    now = now or _utcnow()
    wave.status = "closed"
    wave.closed_at = now
    db.session.commit()
    metrics_updated = generate_metric_entries(survey, wave, now)
    logger.info("Wave closed, %d metric entries", metrics_updated,
                extra={"survey_id": survey.id, "wave_id": wave.id})
    return {
        "success": True,
        "wave": wave.to_dict(),
        "metricsUpdated": metrics_updated,
        "responsesProcessed": wave.response_count or 0,
    }


def run_scheduler(now=None) -> dict:
    """Open scheduled waves that are due and close open waves past their
    scheduled close. Runs hourly from cron."""
    now = now or _utcnow()
    opened = closed = metrics_generated = 0

    to_open = SurveyWave.query.filter(
        SurveyWave.status == "scheduled", SurveyWave.scheduled_open_at <= now,
    ).all()
    for survey_id in {w.survey_id for w in to_open}:
        _close_open_waves(survey_id, now)
    for wave in to_open:
        wave.status = "open"
        wave.opened_at = now
        opened += 1
    db.session.commit()

    to_close = SurveyWave.query.filter(
        SurveyWave.status == "open",
        SurveyWave.scheduled_close_at.isnot(None),
        SurveyWave.scheduled_close_at <= now,
    ).all()
    for wave in to_close:
        wave.status = "closed"
        wave.closed_at = now
        db.session.commit()
        closed += 1
        metrics_generated += generate_metric_entries(wave.survey, wave, now)

    logger.info("Survey scheduler: opened=%d closed=%d metrics=%d", opened, closed, metrics_generated)
    return {
        "success": True,
        "opened": opened,
        "closed": closed,
        "metricsGenerated": metrics_generated,
        "timestamp": now.isoformat(),
    }


# ── Public responses ─────────────────────────────────────────────────────────

def _answerable_wave(token) -> SurveyWave:
    if not token:
        raise ValidationError("token is required")
    wave = SurveyWave.query.filter_by(share_token=token).first()
    if wave is None or wave.status == "scheduled":
        raise NotFoundError("Survey")
    if wave.status == "closed":
        raise GoneError("This survey is no longer accepting responses", {"closed": True})
    return wave


def public_survey(token) -> dict:
    wave = _answerable_wave(token)
    survey = wave.survey
    return {
        "survey": {
            "title": survey.title,
            "description": survey.description,
            "is_anonymous": survey.is_anonymous,
            "welcome_message": survey.welcome_message or None,
            "thank_you_message": survey.thank_you_message or None,
        },
        "questions": [
            {k: v for k, v in q.to_dict().items() if k not in ("survey_id", "metric_id")}
            for q in survey.questions
        ],
        "wave_id": wave.id,
    }


def _check_answer(answer):
    qid = answer["questionId"]
    value, text, payload = answer.get("value"), answer.get("text"), answer.get("json")
    if value is not None and not is_number(value):
        raise ValidationError(f"Answer value must be a number (questionId {qid})")
    if text is not None and not isinstance(text, str):
        raise ValidationError(f"Answer text must be a string (questionId {qid})")
    if payload is None:
        return
    if not isinstance(payload, dict):
        raise ValidationError(f"Answer json must be an object (questionId {qid})")
    selected = payload.get("selected")
    if selected is not None and (
        not isinstance(selected, list)
        or not all(isinstance(i, int) and not isinstance(i, bool) for i in selected)
    ):
        raise ValidationError(f"selected must be a list of choice indexes (questionId {qid})")


def submit_response(token, answers, email=None, hidden_question_ids=None) -> SurveyResponse:
    """Record one respondent's answers.

    Each answer is ``{questionId, value?, text?, json?}``. Required questions
    must be answered unless the client hid them through skip logic.
    """
    if not token:
        raise ValidationError("token is required")
    if not isinstance(answers, list):
        raise ValidationError("answers are required")
    wave = _answerable_wave(token)

    questions = {q.id: q for q in wave.survey.questions}
    submitted = set()
    for a in answers:
        qid = a.get("questionId") if isinstance(a, dict) else None
        if not qid or qid not in questions:
            raise ValidationError(f"Invalid questionId: {qid}")
        _check_answer(a)
        submitted.add(qid)

    hidden = set(hidden_question_ids or [])
    for qid, q in questions.items():
        if q.is_required and qid not in hidden and qid not in submitted:
            raise ValidationError("Please answer all required questions")

    response = SurveyResponse(wave_id=wave.id, respondent_email=email or None)
    db.session.add(response)
    db.session.flush()
    for a in answers:
        value, text, payload = a.get("value"), a.get("text") or None, a.get("json") or None
        if value is None and text is None and payload is None:
            continue
        db.session.add(SurveyAnswer(
            response_id=response.id,
            question_id=a["questionId"],
            value_numeric=value,
            value_text=text,
            value_json=payload,
        ))
    SurveyWave.query.filter_by(id=wave.id).update(
        {SurveyWave.response_count: func.coalesce(SurveyWave.response_count, 0) + 1},
        synchronize_session=False,
    )
    db.session.commit()
    return response


# ── Results ──────────────────────────────────────────────────────────────────

def wave_results(survey: Survey, wave: SurveyWave) -> dict:
    questions = [q.to_dict() for q in survey.questions]
    if not questions:
        return {"wave": wave.to_dict(), "questions": [], "comments": []}

    response_ids = _response_ids(wave.id)
    if not response_ids:
        return {
            "wave": wave.to_dict(),
            "questions": [survey_aggregation.empty_result(q) for q in questions],
            "comments": [],
        }

    answers = _answer_dicts(response_ids)
    previous_answers = None
    if wave.wave_number > 1:
        previous = SurveyWave.query.filter_by(
            survey_id=survey.id, wave_number=wave.wave_number - 1,
        ).first()
        if previous is not None:
            previous_answers = _answer_dicts(_response_ids(previous.id))

    return {
        "wave": wave.to_dict(),
        "questions": survey_aggregation.aggregate_wave(
            questions, answers, len(response_ids), previous_answers,
        ),
        "comments": survey_aggregation.collect_comments(answers),
    }


def survey_trends(survey: Survey) -> dict:
    waves = sorted(survey.waves, key=lambda w: w.wave_number)
    if not waves:
        return {"waves": [], "questions": []}
    questions = list(survey.questions)
    if not questions:
        return {"waves": [w.to_dict() for w in waves], "questions": []}

    wave_rows = []
    for wave in waves:
        response_ids = _response_ids(wave.id)
        answers = _answer_dicts(response_ids)
        stats = []
        for q in questions:
            values = [
                a["value_numeric"] for a in answers
                if a["question_id"] == q.id and a["value_numeric"] is not None
            ]
            point = survey_aggregation.trend_point(q.question_type, values)
            stats.append({
                "question_id": q.id,
                "avg_value": point,
                "nps_score": point if q.question_type == "nps" else None,
                "response_count": len(values),
            })
        wave_rows.append({
            "wave_id": wave.id,
            "wave_number": wave.wave_number,
            "opened_at": wave.to_dict()["opened_at"],
            "closed_at": wave.to_dict()["closed_at"],
            "response_count": len(response_ids),
            "questions": stats,
        })

    return {
        "waves": wave_rows,
        "questions": [
            {"id": q.id, "question_text": q.question_text,
             "question_type": q.question_type, "sort_order": q.sort_order}
            for q in questions
        ],
    }


def wave_responses(wave: SurveyWave):
    """``(responses, answers)`` for CSV export, responses oldest first."""
    responses = (
        SurveyResponse.query.filter_by(wave_id=wave.id)
        .order_by(SurveyResponse.created_at, SurveyResponse.id)
        .all()
    )
    return responses, _answer_dicts([r.id for r in responses])


# ── Templates ────────────────────────────────────────────────────────────────

def template_question(q: dict) -> dict:
    """Portable copy of a question: no ``sort_order``, no ``metric_id``."""
    return {
        "question_text": q.get("question_text"),
        "question_type": q.get("question_type"),
        "rating_scale_max": q.get("rating_scale_max") or 5,
        "options": q.get("options") or {},
        "is_required": q.get("is_required", True),
        "help_text": q.get("help_text") or "",
        "section_label": q.get("section_label") or "",
    }


def list_templates():
    return SurveyTemplate.query.order_by(SurveyTemplate.created_at.desc(), SurveyTemplate.id.desc()).all()


def create_template(body, user=None) -> SurveyTemplate:
    questions = body.get("questions")
    if not body.get("name") or not isinstance(questions, list) or not questions:
        raise ValidationError("name and questions are required")
    template = SurveyTemplate(
        name=body["name"],
        description=body.get("description") or None,
        category=body.get("category") or "Custom",
        questions=[template_question(q) for q in questions if isinstance(q, dict)],
        created_by=user.auth_id if user else None,
        is_shared=bool(body.get("is_shared", False)),
    )
    db.session.add(template)
    db.session.commit()
    return template
