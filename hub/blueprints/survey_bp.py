"""
Survey blueprint: surveys, waves, public responses, results and templates.

Endpoints:
    SURVEY     /api/surveys                         GET (?processId), POST, PATCH, DELETE (?id)
               /api/surveys/<id>                    GET
    WAVE       /api/surveys/<id>/waves              GET, POST {openAt?, closeAfterDays?}
               /api/surveys/<id>/waves/<wave_id>    PATCH (close), DELETE (cancel scheduled)
    RESULTS    /api/surveys/<id>/results            GET ?waveId
               /api/surveys/<id>/trends             GET
               /api/surveys/<id>/csv                GET ?waveId
    PUBLIC     /api/surveys/respond                 GET ?token, POST   (no auth)
    TEMPLATE   /api/surveys/templates               GET, POST
    AI         /api/surveys/ai-generate             POST {description, processId?}
"""

import logging

from flask import Blueprint, Response, current_app, jsonify, request

from hub.ai.gateway import LLMGateway
from hub.ai.parsers import parse_question_list
from hub.ai.prompts import SURVEY_DESIGNER_PROMPT, build_survey_request
from hub.auth import current_user, require_auth
from hub.core.exceptions import UpstreamError
from hub.services import survey_service
from hub.services.process_service import get_process
from hub.services.survey_export import build_wave_csv
from hub.utils.helpers import int_arg, json_body

logger = logging.getLogger(__name__)

survey_bp = Blueprint("survey", __name__, url_prefix="/api/surveys")


def _survey_payload(survey):
    return dict(survey.to_dict(), questions=[q.to_dict() for q in survey.questions])


# ═══════════════════════════════════════════════════════════════════════════
#  SURVEY CRUD
# ═══════════════════════════════════════════════════════════════════════════

@survey_bp.route("", methods=["GET"])
@require_auth
def list_surveys():
    process_id = int_arg("processId")
    if process_id is None:
        return jsonify({"error": "processId is required"}), 400
    return jsonify(survey_service.list_surveys(process_id))


@survey_bp.route("", methods=["POST"])
@require_auth
def create_survey():
    survey = survey_service.create_survey(json_body(), current_user())
    return jsonify({"id": survey.id, "success": True})


@survey_bp.route("", methods=["PATCH"])
@require_auth
def update_survey():
    survey_service.update_survey(json_body())
    return jsonify({"success": True})


@survey_bp.route("", methods=["DELETE"])
@require_auth
def delete_survey():
    survey_id = int_arg("id")
    if survey_id is None:
        return jsonify({"error": "id is required"}), 400
    survey_service.delete_survey(survey_id)
    return jsonify({"success": True})


@survey_bp.route("/<int:survey_id>", methods=["GET"])
@require_auth
def get_survey(survey_id):
    return jsonify(_survey_payload(survey_service.get_survey(survey_id)))


# ═══════════════════════════════════════════════════════════════════════════
#  WAVES
# ═══════════════════════════════════════════════════════════════════════════

@survey_bp.route("/<int:survey_id>/waves", methods=["GET"])
@require_auth
def list_waves(survey_id):
    return jsonify([w.to_dict() for w in survey_service.list_waves(survey_id)])


@survey_bp.route("/<int:survey_id>/waves", methods=["POST"])
@require_auth
def create_wave(survey_id):
    survey = survey_service.get_survey(survey_id)
    body = json_body()
    wave = survey_service.create_wave(
        survey,
        open_at=body.get("openAt") or None,
        close_after_days=body.get("closeAfterDays") or None,
    )
    return jsonify(wave.to_dict())


@survey_bp.route("/<int:survey_id>/waves/<int:wave_id>", methods=["PATCH"])
@require_auth
def close_wave(survey_id, wave_id):
    """Close the wave and log metric entries for metric-linked questions."""
    survey = survey_service.get_survey(survey_id)
    wave = survey_service.get_wave(survey_id, wave_id)
    return jsonify(survey_service.close_wave(survey, wave))


@survey_bp.route("/<int:survey_id>/waves/<int:wave_id>", methods=["DELETE"])
@require_auth
def cancel_wave(survey_id, wave_id):
    survey_service.cancel_wave(survey_id, wave_id)
    return jsonify({"success": True})


# ═══════════════════════════════════════════════════════════════════════════
#  RESULTS
# ═══════════════════════════════════════════════════════════════════════════

@survey_bp.route("/<int:survey_id>/results", methods=["GET"])
@require_auth
def wave_results(survey_id):
    wave_id = int_arg("waveId")
    if wave_id is None:
        return jsonify({"error": "waveId is required"}), 400
    survey = survey_service.get_survey(survey_id)
    wave = survey_service.get_wave(survey_id, wave_id)
    return jsonify(survey_service.wave_results(survey, wave))


@survey_bp.route("/<int:survey_id>/trends", methods=["GET"])
@require_auth
def survey_trends(survey_id):
    return jsonify(survey_service.survey_trends(survey_service.get_survey(survey_id)))


@survey_bp.route("/<int:survey_id>/csv", methods=["GET"])
@require_auth
def export_csv(survey_id):
    wave_id = int_arg("waveId")
    if wave_id is None:
        return jsonify({"error": "waveId is required"}), 400
    survey = survey_service.get_survey(survey_id)
    wave = survey_service.get_wave(survey_id, wave_id)
    filename, text = build_wave_csv(survey, wave)
    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ═══════════════════════════════════════════════════════════════════════════
#  PUBLIC RESPONSES (no auth)
# ═══════════════════════════════════════════════════════════════════════════

@survey_bp.route("/respond", methods=["GET"])
def public_survey():
    return jsonify(survey_service.public_survey(request.args.get("token")))


@survey_bp.route("/respond", methods=["POST"])
def submit_response():
    body = json_body()
    survey_service.submit_response(
        body.get("token"),
        body.get("answers"),
        email=body.get("email"),
        hidden_question_ids=body.get("hiddenQuestionIds"),
    )
    return jsonify({"success": True})


# ═══════════════════════════════════════════════════════════════════════════
#  TEMPLATES
# ═══════════════════════════════════════════════════════════════════════════

@survey_bp.route("/templates", methods=["GET"])
@require_auth
def list_templates():
    return jsonify([t.to_dict() for t in survey_service.list_templates()])


@survey_bp.route("/templates", methods=["POST"])
@require_auth
def create_template():
    template = survey_service.create_template(json_body(), current_user())
    return jsonify({"id": template.id, "success": True})


# ═══════════════════════════════════════════════════════════════════════════
#  AI QUESTION DRAFTS
# ═══════════════════════════════════════════════════════════════════════════

@survey_bp.route("/ai-generate", methods=["POST"])
@require_auth
def ai_generate():
    """Draft questions from a description; nothing is saved."""
    body = json_body()
    description = body.get("description")
    if not description or not isinstance(description, str):
        return jsonify({"error": "description is required"}), 400
    process = get_process(body["processId"]) if body.get("processId") else None

    gateway = LLMGateway.from_app(current_app)
    reply = gateway.chat(SURVEY_DESIGNER_PROMPT, [
        {"role": "user", "content": build_survey_request(description, process)},
    ])
    try:
        questions = parse_question_list(reply)
    except ValueError as exc:
        logger.warning("Survey draft unparseable: %s", exc)
        raise UpstreamError("AI returned invalid format") from exc
    return jsonify({"questions": questions})
