"""
Strategy blueprint: strategic objectives and their process links.

Endpoints:
    OBJECTIVE  /api/strategy                    GET, POST      (writes: super admin)
               /api/strategy/<id>               PATCH, DELETE  (super admin)
    LINKS      /api/strategy/<id>/processes     POST, DELETE   {process_id}
"""

import logging

from flask import Blueprint, jsonify, request

from hub.auth import require_auth, require_role
from hub.models.user import ROLE_SUPER_ADMIN
from hub.services import strategy_service
from hub.utils.helpers import json_body

logger = logging.getLogger(__name__)

strategy_bp = Blueprint("strategy", __name__, url_prefix="/api/strategy")


@strategy_bp.route("", methods=["GET"])
@require_auth
def list_objectives():
    return jsonify(strategy_service.list_objectives())


@strategy_bp.route("", methods=["POST"])
@require_role(ROLE_SUPER_ADMIN)
def create_objective():
    return jsonify(strategy_service.create_objective(json_body()).to_dict()), 201


@strategy_bp.route("/<int:objective_id>", methods=["PATCH"])
@require_role(ROLE_SUPER_ADMIN)
def update_objective(objective_id):
    return jsonify(strategy_service.update_objective(objective_id, json_body()).to_dict())


@strategy_bp.route("/<int:objective_id>", methods=["DELETE"])
@require_role(ROLE_SUPER_ADMIN)
def delete_objective(objective_id):
    strategy_service.delete_objective(objective_id)
    return "", 204


def _process_id():
    raw = json_body().get("process_id") or request.args.get("process_id")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@strategy_bp.route("/<int:objective_id>/processes", methods=["POST"])
@require_auth
def link_process(objective_id):
    process_id = _process_id()
    if process_id is None:
        return jsonify({"error": "process_id is required"}), 400
    strategy_service.link_process(objective_id, process_id)
    return jsonify({"ok": True}), 201


@strategy_bp.route("/<int:objective_id>/processes", methods=["DELETE"])
@require_auth
def unlink_process(objective_id):
    process_id = _process_id()
    if process_id is None:
        return jsonify({"error": "process_id is required"}), 400
    strategy_service.unlink_process(objective_id, process_id)
    return "", 204
