"""
Process blueprint: processes, categories, improvement journal, Baldrige
question mappings and readiness snapshots.

Endpoints:
    PROCESS      /api/processes                  GET, POST
                 /api/processes/<id>             GET, PATCH, DELETE
                 /api/processes/<id>/health      GET
                 /api/processes/<id>/history     GET
    CATEGORY     /api/categories                 GET
    IMPROVEMENT  /api/improvements               GET (?processId), POST, PATCH, DELETE (?id)
    MAPPING      /api/criteria/mappings          GET (?processId), POST, PATCH, DELETE (?id)  (admin writes)
    READINESS    /api/readiness                  GET, POST
"""

import logging

from flask import Blueprint, jsonify, request

from hub.auth import current_user, require_auth, require_role
from hub.models.user import ROLE_ADMIN
from hub.services import process_service
from hub.utils.helpers import int_arg, json_body

logger = logging.getLogger(__name__)

process_bp = Blueprint("process", __name__, url_prefix="/api")


# ═══════════════════════════════════════════════════════════════════════════
#  PROCESS CRUD
# ═══════════════════════════════════════════════════════════════════════════

@process_bp.route("/processes", methods=["GET"])
@require_auth
def list_processes():
    return jsonify(process_service.list_processes())


@process_bp.route("/processes", methods=["POST"])
@require_auth
def create_process():
    process = process_service.create_process(json_body())
    return jsonify(process.to_dict()), 201


@process_bp.route("/processes/<int:process_id>", methods=["GET"])
@require_auth
def get_process(process_id):
    return jsonify(process_service.get_process(process_id).to_dict())


@process_bp.route("/processes/<int:process_id>", methods=["PATCH"])
@require_auth
def update_process(process_id):
    process = process_service.get_process(process_id)
    process_service.update_process(process, json_body(), current_user())
    return jsonify(process.to_dict())


@process_bp.route("/processes/<int:process_id>", methods=["DELETE"])
@require_role(ROLE_ADMIN)
def delete_process(process_id):
    process_service.delete_process(process_service.get_process(process_id))
    return "", 204


@process_bp.route("/processes/<int:process_id>/health", methods=["GET"])
@require_auth
def process_health(process_id):
    process = process_service.get_process(process_id)
    return jsonify(process_service.process_health(process))


@process_bp.route("/processes/<int:process_id>/history", methods=["GET"])
@require_auth
def process_history(process_id):
    process_service.get_process(process_id)
    return jsonify([h.to_dict() for h in process_service.list_history(process_id)])


@process_bp.route("/categories", methods=["GET"])
@require_auth
def list_categories():
    return jsonify([c.to_dict() for c in process_service.list_categories()])


# ═══════════════════════════════════════════════════════════════════════════
#  IMPROVEMENT JOURNAL
# ═══════════════════════════════════════════════════════════════════════════

@process_bp.route("/improvements", methods=["GET"])
@require_auth
def list_improvements():
    process_id = int_arg("processId")
    if process_id is None:
        return jsonify({"error": "processId is required"}), 400
    return jsonify([i.to_dict() for i in process_service.list_improvements(process_id)])


@process_bp.route("/improvements", methods=["POST"])
@require_auth
def create_improvement():
    body = json_body()
    body.setdefault("committed_by", current_user().display_name)
    improvement = process_service.create_improvement(body)
    return jsonify(improvement.to_dict()), 201


@process_bp.route("/improvements", methods=["PATCH"])
@require_auth
def update_improvement():
    return jsonify(process_service.update_improvement(json_body()).to_dict())


@process_bp.route("/improvements", methods=["DELETE"])
@require_auth
def delete_improvement():
    improvement_id = int_arg("id")
    if improvement_id is None:
        return jsonify({"error": "id is required"}), 400
    process_service.delete_improvement(improvement_id)
    return jsonify({"success": True})


# ═══════════════════════════════════════════════════════════════════════════
#  BALDRIGE MAPPINGS
# ═══════════════════════════════════════════════════════════════════════════

@process_bp.route("/criteria/mappings", methods=["GET"])
@require_auth
def list_mappings():
    return jsonify(process_service.list_mappings(int_arg("processId")))


@process_bp.route("/criteria/mappings", methods=["POST"])
@require_role(ROLE_ADMIN)
def create_mapping():
    return jsonify(process_service.create_mapping(json_body()).to_dict()), 201


@process_bp.route("/criteria/mappings", methods=["PATCH"])
@require_role(ROLE_ADMIN)
def update_mapping():
    return jsonify(process_service.update_mapping(json_body()).to_dict())


@process_bp.route("/criteria/mappings", methods=["DELETE"])
@require_role(ROLE_ADMIN)
def delete_mapping():
    mapping_id = int_arg("id")
    if mapping_id is None:
        return jsonify({"error": "id is required"}), 400
    process_service.delete_mapping(mapping_id)
    return jsonify({"success": True})


# ═══════════════════════════════════════════════════════════════════════════
#  READINESS
# ═══════════════════════════════════════════════════════════════════════════

@process_bp.route("/readiness", methods=["GET"])
@require_auth
def readiness():
    """Current readiness summary plus the snapshot history (``?history=only``
    returns the snapshots alone)."""
    snapshots = [s.to_dict() for s in process_service.list_snapshots()]
    if request.args.get("history") == "only":
        return jsonify(snapshots)
    return jsonify({"current": process_service.readiness_summary(), "snapshots": snapshots})


@process_bp.route("/readiness", methods=["POST"])
@require_auth
def take_snapshot():
    snapshot = process_service.take_snapshot()
    logger.info("Readiness snapshot saved: %s", snapshot.org_score)
    return jsonify(snapshot.to_dict()), 201
