"""
Metric blueprint: metric CRUD, data entries and process links.

Endpoints:
    METRIC   /api/metrics                    GET (?processId), POST
             /api/metrics/<id>               GET, PATCH
    ENTRY    /api/metrics/<id>/entries       GET, POST
    LINKS    /api/metrics/<id>/processes     POST   {process_ids: [...]}
"""

import logging

from flask import Blueprint, jsonify

from hub.auth import require_auth
from hub.services import metric_service
from hub.utils.helpers import int_arg, json_body

logger = logging.getLogger(__name__)

metric_bp = Blueprint("metric", __name__, url_prefix="/api/metrics")


@metric_bp.route("", methods=["GET"])
@require_auth
def list_metrics():
    return jsonify(metric_service.list_metrics(process_id=int_arg("processId")))


@metric_bp.route("", methods=["POST"])
@require_auth
def create_metric():
    metric = metric_service.create_metric(json_body())
    return jsonify(metric.to_dict()), 201


@metric_bp.route("/<int:metric_id>", methods=["GET"])
@require_auth
def get_metric(metric_id):
    metric = metric_service.get_metric(metric_id)
    return jsonify(metric_service.summarize(metric))


@metric_bp.route("/<int:metric_id>", methods=["PATCH"])
@require_auth
def update_metric(metric_id):
    metric = metric_service.update_metric(metric_service.get_metric(metric_id), json_body())
    return jsonify(metric.to_dict())


@metric_bp.route("/<int:metric_id>/entries", methods=["GET"])
@require_auth
def list_entries(metric_id):
    metric = metric_service.get_metric(metric_id)
    return jsonify([e.to_dict() for e in metric.entries])


@metric_bp.route("/<int:metric_id>/entries", methods=["POST"])
@require_auth
def add_entry(metric_id):
    entry = metric_service.add_entry(metric_service.get_metric(metric_id), json_body())
    return jsonify(entry.to_dict()), 201


@metric_bp.route("/<int:metric_id>/processes", methods=["POST"])
@require_auth
def set_processes(metric_id):
    metric = metric_service.get_metric(metric_id)
    metric_service.set_processes(metric, json_body().get("process_ids"))
    return jsonify(metric.to_dict())
