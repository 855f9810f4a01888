"""
AI blueprint: ADLI scores, applying coach suggestions, acting on suggested
metrics and the process coach.

Endpoints:
    SCORES   /api/ai/scores     GET (?processId), POST {processId, approach, deployment, learning, integration}
    APPLY    /api/ai/apply      POST {processId, field, content, suggestionTitle?, tasks?}
    CHAT     /api/ai/chat       POST {processId, messages, stream?}   (text/plain stream, or JSON
                                 with the parsed blocks when stream is false)
    METRICS  /api/ai/metrics    POST {processId, action: link|create, metricId? | metric?}
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, Response, current_app, jsonify, stream_with_context

from hub.ai.gateway import LLMGateway
from hub.ai.parsers import FIELD_LABELS, parse_reply
from hub.ai.prompts import build_system_prompt
from hub.auth import require_auth
from hub.core.exceptions import ValidationError
from hub.models import db
from hub.models.process import ProcessAdliScore, ProcessHistory, ProcessImprovement
from hub.services import metric_service, task_service
from hub.services.formatting import round_half_up
from hub.services.process_service import get_process
from hub.utils.helpers import int_arg, is_number, json_body

logger = logging.getLogger(__name__)

ai_bp = Blueprint("ai", __name__, url_prefix="/api/ai")

# process field → improvement section
APPLY_FIELDS = {
    "charter": "charter",
    "adli_approach": "approach",
    "adli_deployment": "deployment",
    "adli_learning": "learning",
    "adli_integration": "integration",
}
_SCORE_KEYS = ("approach", "deployment", "learning", "integration")


# ═══════════════════════════════════════════════════════════════════════════
#  ADLI SCORES
# ═══════════════════════════════════════════════════════════════════════════

@ai_bp.route("/scores", methods=["GET"])
@require_auth
def get_scores():
    process_id = int_arg("processId")
    if process_id is not None:
        row = ProcessAdliScore.query.filter_by(process_id=process_id).first()
        return jsonify(row.to_dict() if row else None)

    rows = ProcessAdliScore.query.order_by(ProcessAdliScore.assessed_at.desc()).all()
    return jsonify([
        dict(row.to_dict(), process={
            "id": row.process.id,
            "name": row.process.name,
            "status": row.process.status,
            "is_key": row.process.is_key,
            "owner": row.process.owner,
            "category_display_name": row.process.category.display_name if row.process.category else None,
        })
        for row in rows
    ])


@ai_bp.route("/scores", methods=["POST"])
@require_auth
def save_scores():
    """Upsert one process's ADLI scores; ``overall`` is the rounded mean."""
    body = json_body()
    process_id = body.get("processId")
    if not process_id or not all(is_number(body.get(k)) for k in _SCORE_KEYS):
        return jsonify({"error": "processId and all four scores are required"}), 400
    get_process(process_id)

    overall = round_half_up(sum(body[k] for k in _SCORE_KEYS) / 4)
    row = ProcessAdliScore.query.filter_by(process_id=process_id).first()
    if row is None:
        row = ProcessAdliScore(process_id=process_id)
        db.session.add(row)
    row.approach_score = body["approach"]
    row.deployment_score = body["deployment"]
    row.learning_score = body["learning"]
    row.integration_score = body["integration"]
    row.overall_score = overall
    row.assessed_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("ADLI scores saved: overall=%s", overall, extra={"process_id": process_id})
    return jsonify({"success": True, "overall": overall})


# ═══════════════════════════════════════════════════════════════════════════
#  APPLY SUGGESTION
# ═══════════════════════════════════════════════════════════════════════════

@ai_bp.route("/apply", methods=["POST"])
@require_auth
def apply_suggestion():
    body = json_body()
    process_id, field, content = body.get("processId"), body.get("field"), body.get("content")
    if not process_id or not field or not content:
        return jsonify({"error": "processId, field, and content are required"}), 400
    if field not in APPLY_FIELDS:
        return jsonify({
            "error": f'Field "{field}" is not allowed. Must be one of: {", ".join(APPLY_FIELDS)}',
        }), 400

    process = get_process(process_id)
    label = FIELD_LABELS.get(field, field)
    previous = getattr(process, field)
    updated = dict(previous or {}, content=content)

    db.session.add(ProcessHistory(
        process_id=process.id,
        change_description=f"AI updated {label} section (previous version saved)",
    ))
    setattr(process, field, updated)
    title = body.get("suggestionTitle")
    db.session.add(ProcessImprovement(
        process_id=process.id,
        section_affected=APPLY_FIELDS[field],
        change_type="modification" if previous else "addition",
        title=title or f"AI updated {label}",
        description=f"Applied AI suggestion to {label} section",
        trigger="ai_suggestion",
        before_snapshot=previous,
        after_snapshot=updated,
        source="ai_suggestion",
        status="committed",
    ))
    db.session.commit()

    tasks_queued = 0
    tasks = body.get("tasks")
    if isinstance(tasks, list) and tasks:
        rows = [
            {
                "process_id": process.id,
                "title": t.get("title"),
                "description": t.get("description"),
                "pdca_section": t.get("pdcaSection"),
                "adli_dimension": t.get("adliDimension"),
                "source": "ai_suggestion",
                "source_detail": title,
            }
            for t in tasks if isinstance(t, dict)
        ]
        try:
            tasks_queued = len(task_service.create_tasks(rows))
        except ValidationError as exc:
            logger.warning("Suggested tasks not queued: %s", exc.message,
                           extra={"process_id": process.id})

    return jsonify({"success": True, "field": label, "tasksQueued": tasks_queued})


# ═══════════════════════════════════════════════════════════════════════════
#  COACH CHAT (streaming)
# ═══════════════════════════════════════════════════════════════════════════

@ai_bp.route("/chat", methods=["POST"])
@require_auth
def chat():
    body = json_body()
    process_id, messages = body.get("processId"), body.get("messages")
    if not process_id or not isinstance(messages, list):
        return jsonify({"error": "processId and messages array are required"}), 400

    process = get_process(process_id)
    metrics = metric_service.list_metrics(process_id=process.id)
    system = build_system_prompt(
        process.to_dict(),
        process.category.display_name if process.category else None,
        metrics,
    )
    history = [
        {"role": m.get("role"), "content": m.get("content")}
        for m in messages
        if isinstance(m, dict) and m.get("role") in ("user", "assistant")
    ]
    gateway = LLMGateway.from_app(current_app)

    if body.get("stream") is False:
        return jsonify(parse_reply(gateway.chat(system, history)))

    def generate():
        try:
            yield from gateway.stream(system, history)
        except Exception:
            logger.exception("AI chat stream failed", extra={"process_id": process.id})
            raise

    return Response(stream_with_context(generate()), mimetype="text/plain")


# ═══════════════════════════════════════════════════════════════════════════
#  SUGGESTED METRICS
# ═══════════════════════════════════════════════════════════════════════════

@ai_bp.route("/metrics", methods=["POST"])
@require_auth
def metric_action():
    """Link an existing metric to the process, or create one and link it."""
    body = json_body()
    process_id, action = body.get("processId"), body.get("action")
    if not process_id or not action:
        return jsonify({"error": "processId and action are required"}), 400
    process = get_process(process_id)

    if action == "link":
        if not body.get("metricId"):
            return jsonify({"error": "metricId is required for link action"}), 400
        metric = metric_service.link_process(metric_service.get_metric(body["metricId"]), process)
        return jsonify({"success": True, "action": "linked", "metricId": metric.id, "metricName": metric.name})

    if action == "create":
        spec = body.get("metric")
        if not isinstance(spec, dict) or not all(spec.get(k) for k in ("name", "unit", "cadence")):
            return jsonify({
                "error": "metric object with name, unit, and cadence is required for create action",
            }), 400
        is_higher_better = spec.get("isHigherBetter")
        metric = metric_service.create_metric({
            "name": spec["name"],
            "unit": spec["unit"],
            "cadence": spec["cadence"],
            "target_value": spec.get("targetValue"),
            "is_higher_better": True if is_higher_better is None else bool(is_higher_better),
            "process_ids": [process.id],
        })
        logger.info("AI-suggested metric created: %s", metric.name, extra={"process_id": process.id})
        return jsonify({"success": True, "action": "created", "metricId": metric.id, "metricName": metric.name})

    return jsonify({"error": "Invalid action. Use 'link' or 'create'."}), 400
