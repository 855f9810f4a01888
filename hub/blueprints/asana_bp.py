"""
Asana blueprint: OAuth connection, workspace lookups, project sync and
project import/export.

Endpoints:
    OAUTH     /api/asana/status               GET
              /api/asana/authorize            GET ?returnTo   (redirect)
              /api/asana/callback             GET ?code&state (redirect)
              /api/asana/disconnect           POST
    LOOKUP    /api/asana/projects             GET
              /api/asana/workspace-members    GET
    SYNC      /api/asana/resync               POST {processId}
              /api/asana/sync-tasks           POST {processId}
              /api/asana/sync-all             POST            (admin)
    PROJECT   /api/asana/import               POST {projectGid}
              /api/asana/export               POST {processId, targetWorkspaceId?, forceNew?}
"""

import logging
from urllib.parse import urlencode

from flask import Blueprint, current_app, jsonify, redirect, request

from hub.auth import current_user, require_auth, require_role
from hub.core.exceptions import NotConnectedError, UpstreamError
from hub.integrations.asana_gateway import ASANA_AUTHORIZE_URL
from hub.models.process import Process
from hub.models.user import ROLE_ADMIN
from hub.services import asana_service
from hub.services.process_service import get_process
from hub.utils.helpers import json_body

logger = logging.getLogger(__name__)

asana_bp = Blueprint("asana", __name__, url_prefix="/api/asana")

_NOT_LINKED = "This process is not linked to an Asana project."
_PROJECT_GONE = "The linked Asana project no longer exists."


def _require_token(message="Asana not connected. Go to Settings to connect."):
    token = asana_service.get_asana_token(current_user().auth_id)
    if not token:
        raise NotConnectedError(message)
    return token


def _linked_process(body):
    """Resolve ``processId`` to a process linked to an Asana project, or an
    error response."""
    process_id = body.get("processId")
    if not process_id:
        return None, (jsonify({"error": "processId is required"}), 400)
    process = get_process(process_id)
    if not process.asana_project_gid:
        return None, (jsonify({"error": "not_linked", "message": _NOT_LINKED}), 400)
    return process, None


# ═══════════════════════════════════════════════════════════════════════════
#  OAUTH
# ═══════════════════════════════════════════════════════════════════════════

@asana_bp.route("/status", methods=["GET"])
def status():
    user = current_user()
    if user is None:
        return jsonify({"connected": False})
    row = asana_service.get_token_row(user.auth_id)
    if row is None:
        return jsonify({"connected": False})
    return jsonify({
        "connected": True,
        "userName": row.user_name,
        "workspaceName": row.workspace_name,
    })


@asana_bp.route("/authorize", methods=["GET"])
def authorize():
    client_id = current_app.config.get("ASANA_CLIENT_ID")
    if not client_id:
        return jsonify({"error": "Asana not configured"}), 500
    params = urlencode({
        "client_id": client_id,
        "redirect_uri": current_app.config["ASANA_REDIRECT_URI"],
        "response_type": "code",
        "state": request.args.get("returnTo") or "/settings",
    })
    return redirect(f"{ASANA_AUTHORIZE_URL}?{params}")


@asana_bp.route("/callback", methods=["GET"])
def callback():
    app_url = current_app.config.get("APP_URL", "").rstrip("/")
    code = request.args.get("code")
    if request.args.get("error") or not code:
        return redirect(f"{app_url}/settings?asana_error=denied")
    user = current_user()
    if user is None:
        return redirect(f"{app_url}/login")

    return_to = request.args.get("state") or "/settings"
    if not return_to.startswith("/"):
        return_to = "/settings"
    try:
        asana_service.connect(user.auth_id, code)
    except UpstreamError as exc:
        logger.warning("Asana OAuth callback failed: %s", exc, extra={"auth_id": user.auth_id})
        return redirect(f"{app_url}/settings?asana_error=token")
    sep = "&" if "?" in return_to else "?"
    return redirect(f"{app_url}{return_to}{sep}asana_connected=true")


@asana_bp.route("/disconnect", methods=["POST"])
@require_auth
def disconnect():
    asana_service.disconnect(current_user().auth_id)
    return jsonify({"success": True})


# ═══════════════════════════════════════════════════════════════════════════
#  WORKSPACE LOOKUPS
# ═══════════════════════════════════════════════════════════════════════════

@asana_bp.route("/projects", methods=["GET"])
@require_auth
def list_projects():
    token = _require_token()
    row = asana_service.get_token_row(current_user().auth_id)
    if not row.workspace_id:
        return jsonify({"error": "No workspace found"}), 400
    return jsonify({"projects": asana_service.list_projects(token, row.workspace_id)})


@asana_bp.route("/workspace-members", methods=["GET"])
@require_auth
def workspace_members():
    row = asana_service.get_token_row(current_user().auth_id)
    if row is None or not row.workspace_id:
        raise NotConnectedError()
    token = _require_token("Asana token expired. Reconnect in Settings.")
    return jsonify({"members": asana_service.list_workspace_members(token, row.workspace_id)})


# ═══════════════════════════════════════════════════════════════════════════
#  SYNC
# ═══════════════════════════════════════════════════════════════════════════

@asana_bp.route("/resync", methods=["POST"])
@require_auth
def resync():
    """Refresh the cached project snapshot. Charter and ADLI content are kept."""
    process, err = _linked_process(json_body())
    if err:
        return err
    token = _require_token()
    try:
        result = asana_service.resync_process(token, process, current_user().email)
    except UpstreamError as exc:
        if asana_service.is_missing_project_error(exc):
            return jsonify({"error": "not_linked", "message": _PROJECT_GONE}), 400
        raise
    return jsonify(result)


@asana_bp.route("/sync-tasks", methods=["POST"])
@require_auth
def sync_tasks():
    process, err = _linked_process(json_body())
    if err:
        return err
    token = _require_token()
    try:
        result = asana_service.sync_process_tasks(token, process)
    except UpstreamError as exc:
        if asana_service.is_missing_project_error(exc):
            return jsonify({"error": "not_linked", "message": _PROJECT_GONE}), 400
        raise
    return jsonify(result)


@asana_bp.route("/sync-all", methods=["POST"])
@require_role(ROLE_ADMIN)
def sync_all():
    token = _require_token("Asana not connected. Connect Asana in Settings first.")
    return jsonify(asana_service.sync_all(token))


# ═══════════════════════════════════════════════════════════════════════════
#  IMPORT / EXPORT
# ═══════════════════════════════════════════════════════════════════════════

@asana_bp.route("/import", methods=["POST"])
@require_auth
def import_project():
    project_gid = json_body().get("projectGid")
    if not project_gid:
        return jsonify({"error": "projectGid is required"}), 400
    token = _require_token("Asana not connected")
    existing = Process.query.filter_by(asana_project_gid=str(project_gid)).first()
    if existing is not None:
        return jsonify({
            "error": "already_exists", "existingId": existing.id, "existingName": existing.name,
        }), 409
    return jsonify(asana_service.import_project(token, str(project_gid), current_user().email))


@asana_bp.route("/export", methods=["POST"])
@require_auth
def export_process():
    """Update the linked Asana project, or create one when unlinked or ``forceNew``."""
    body = json_body()
    process_id = body.get("processId")
    if not process_id:
        return jsonify({"error": "processId is required"}), 400
    process = get_process(process_id)
    token = _require_token()
    workspace_id = body.get("targetWorkspaceId")
    if not workspace_id:
        row = asana_service.get_token_row(current_user().auth_id)
        workspace_id = row.workspace_id if row else None
    return jsonify(asana_service.export_process(
        token, process, current_user().email,
        workspace_id=workspace_id, force_new=bool(body.get("forceNew")),
    ))
