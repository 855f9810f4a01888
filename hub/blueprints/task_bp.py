"""
Task blueprint: PDCA tasks, dependencies, comments and activity.

Endpoints:
    TASK        /api/tasks                       GET (?processId), POST (object or array)
                /api/tasks/<id>                  PATCH, DELETE
                /api/tasks/my-tasks              GET (?priority, ?status, ?search)
                /api/tasks/reorder               PATCH  {updates: [...]}
    ACTIVITY    /api/tasks/<id>/activity         GET
    COMMENTS    /api/tasks/<id>/comments         GET, POST
    DEPENDENCY  /api/tasks/<id>/dependencies     GET, POST {depends_on_task_id}, DELETE {dependency_id}
"""

import logging

from flask import Blueprint, jsonify, request

from hub.auth import current_user, effective_user, require_auth
from hub.models.task import ProcessTask
from hub.services import task_dependency_service, task_service
from hub.utils.helpers import get_or_404, int_arg, is_number, json_body

logger = logging.getLogger(__name__)

task_bp = Blueprint("task", __name__, url_prefix="/api/tasks")


# ═══════════════════════════════════════════════════════════════════════════
#  TASK CRUD
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("", methods=["GET"])
@require_auth
def list_tasks():
    process_id = int_arg("processId")
    if process_id is None:
        return jsonify({"error": "processId is required"}), 400
    return jsonify([t.to_dict() for t in task_service.list_process_tasks(process_id)])


@task_bp.route("", methods=["POST"])
@require_auth
def create_tasks():
    payload = request.get_json(silent=True)
    if not isinstance(payload, (dict, list)):
        return jsonify({"error": "At least one task is required"}), 400
    ids = task_service.create_tasks(payload)
    return jsonify({"ids": ids, "count": len(ids), "success": True})


@task_bp.route("/<int:task_id>", methods=["PATCH"])
@require_auth
def update_task(task_id):
    task, err = get_or_404(ProcessTask, task_id, "Task")
    if err:
        return err
    result = task_service.update_task(task, json_body(), current_user())
    return jsonify(result)


@task_bp.route("/<int:task_id>", methods=["DELETE"])
@require_auth
def delete_task(task_id):
    task, err = get_or_404(ProcessTask, task_id, "Task")
    if err:
        return err
    task_service.delete_task(task, current_user())
    logger.info("Task deleted", extra={"task_id": task_id})
    return jsonify({"success": True})


@task_bp.route("/my-tasks", methods=["GET"])
@require_auth
def my_tasks():
    """Tasks assigned to the signed-in (or proxied) user."""
    user = effective_user()
    if not user.email:
        return jsonify([])
    return jsonify(task_service.my_tasks(
        user.email,
        priority=request.args.get("priority"),
        status=request.args.get("status"),
        search=(request.args.get("search") or "").strip() or None,
    ))


@task_bp.route("/reorder", methods=["PATCH"])
@require_auth
def reorder_tasks():
    task_service.reorder_tasks(json_body().get("updates"), current_user())
    return jsonify({"success": True})


# ═══════════════════════════════════════════════════════════════════════════
#  ACTIVITY + COMMENTS
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("/<int:task_id>/activity", methods=["GET"])
@require_auth
def list_activity(task_id):
    return jsonify([a.to_dict() for a in task_service.list_activity(task_id)])


@task_bp.route("/<int:task_id>/comments", methods=["GET"])
@require_auth
def list_comments(task_id):
    return jsonify([c.to_dict() for c in task_service.list_comments(task_id)])


@task_bp.route("/<int:task_id>/comments", methods=["POST"])
@require_auth
def add_comment(task_id):
    task, err = get_or_404(ProcessTask, task_id, "Task")
    if err:
        return err
    comment = task_service.add_comment(task, current_user(), json_body().get("body"))
    return jsonify(comment.to_dict()), 201


# ═══════════════════════════════════════════════════════════════════════════
#  DEPENDENCIES
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("/<int:task_id>/dependencies", methods=["GET"])
@require_auth
def list_dependencies(task_id):
    return jsonify(task_dependency_service.list_dependencies(task_id))


@task_bp.route("/<int:task_id>/dependencies", methods=["POST"])
@require_auth
def add_dependency(task_id):
    depends_on = json_body().get("depends_on_task_id")
    if not depends_on or not is_number(depends_on):
        return jsonify({"error": "depends_on_task_id is required and must be a number"}), 400
    task_dependency_service.add_dependency(task_id, int(depends_on), current_user())
    return jsonify({"success": True})


@task_bp.route("/<int:task_id>/dependencies", methods=["DELETE"])
@require_auth
def remove_dependency(task_id):
    dependency_id = json_body().get("dependency_id") or int_arg("dependency_id")
    if not dependency_id:
        return jsonify({"error": "dependency_id is required"}), 400
    task_dependency_service.remove_dependency(dependency_id, current_user())
    return jsonify({"success": True})
