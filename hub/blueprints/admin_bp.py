"""
Admin blueprint: user roles, owner scorecards, proxy sessions and
account-level health.

Endpoints:
    USERS       /api/admin/users              GET, PATCH   (admin)
    SCORECARDS  /api/admin/scorecards         GET          (admin)
    PROXY       /api/admin/proxy              GET, POST, DELETE
    OWNER       /api/owners/<auth_id>         GET, POST
    HEALTH      /api/sidebar-health           GET
"""

import logging

from flask import Blueprint, current_app, g, jsonify

from hub.auth import (
    current_user, effective_user, is_admin_role, require_auth, require_role,
)
from hub.models import db
from hub.models.user import ROLE_ADMIN, ROLE_MEMBER, ROLE_SUPER_ADMIN, UserRole
from hub.services import scorecard_service
from hub.services.proxy_session import cookie_name, max_age_seconds, start_proxy_session
from hub.services.scorecard_service import owned_processes
from hub.utils.helpers import json_body

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api")


# ═══════════════════════════════════════════════════════════════════════════
#  USERS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/admin/users", methods=["GET"])
@require_role(ROLE_ADMIN)
def list_users():
    users = UserRole.query.order_by(
        UserRole.last_login_at.is_(None), UserRole.last_login_at.desc(),
    ).all()
    return jsonify({
        "users": [u.to_dict() for u in users],
        "currentUserId": current_user().auth_id,
    })


@admin_bp.route("/admin/users", methods=["PATCH"])
@require_role(ROLE_ADMIN)
def update_user_role():
    body = json_body()
    auth_id, role = body.get("authId"), body.get("role")
    if not auth_id or not role:
        return jsonify({"error": "authId and role are required"}), 400
    if role not in (ROLE_ADMIN, ROLE_MEMBER):
        return jsonify({"error": "role must be 'admin' or 'member'"}), 400
    if auth_id == current_user().auth_id:
        return jsonify({"error": "Cannot change your own role"}), 400

    target = UserRole.query.filter_by(auth_id=auth_id).first()
    if target is None:
        return jsonify({"error": "User not found"}), 404
    if target.role == ROLE_SUPER_ADMIN:
        return jsonify({"error": "Cannot change a super admin's role"}), 400
    target.role = role
    db.session.commit()
    logger.info("Role changed to %s", role, extra={"auth_id": auth_id})
    return jsonify({"success": True})


# ═══════════════════════════════════════════════════════════════════════════
#  SCORECARDS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/admin/scorecards", methods=["GET"])
@require_role(ROLE_ADMIN, message="Forbidden")
def list_scorecards():
    return jsonify({"scorecards": scorecard_service.list_scorecards()})


@admin_bp.route("/owners/<auth_id>", methods=["GET"])
@require_auth
def owner_scorecard(auth_id):
    user = current_user()
    if not is_admin_role(user.role) and user.auth_id != auth_id:
        return jsonify({"error": "Forbidden"}), 403
    owner = UserRole.query.filter_by(auth_id=auth_id).first()
    if owner is None:
        return jsonify({"error": "User not found"}), 404
    return jsonify(scorecard_service.owner_scorecard(owner))


@admin_bp.route("/owners/<auth_id>", methods=["POST"])
@require_auth
def owner_action(auth_id):
    user = current_user()
    if not is_admin_role(user.role) and user.auth_id != auth_id:
        return jsonify({"error": "Forbidden"}), 403
    if json_body().get("action") != "complete-onboarding":
        return jsonify({"error": "Unknown action"}), 400
    owner = UserRole.query.filter_by(auth_id=auth_id).first()
    if owner is None:
        return jsonify({"error": "User not found"}), 404
    scorecard_service.complete_onboarding(owner)
    return jsonify({"ok": True})


# ═══════════════════════════════════════════════════════════════════════════
#  PROXY SESSION
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/admin/proxy", methods=["GET"])
def proxy_status():
    session = getattr(g, "proxy", None)
    if not session:
        return jsonify({"active": False})
    return jsonify({
        "active": True,
        "targetAuthId": session["targetAuthId"],
        "targetName": session["targetName"],
        "targetRole": session["targetRole"],
    })


@admin_bp.route("/admin/proxy", methods=["POST"])
@require_role(ROLE_SUPER_ADMIN)
def start_proxy():
    session, token = start_proxy_session(current_user(), json_body().get("targetAuthId"))
    resp = jsonify({"success": True, "targetName": session["targetName"]})
    resp.set_cookie(
        cookie_name(), token,
        max_age=max_age_seconds(),
        httponly=True,
        secure=not current_app.debug and not current_app.testing,
        samesite="Lax",
        path="/",
    )
    return resp


@admin_bp.route("/admin/proxy", methods=["DELETE"])
def end_proxy():
    resp = jsonify({"success": True})
    resp.delete_cookie(cookie_name(), path="/")
    return resp


# ═══════════════════════════════════════════════════════════════════════════
#  ACCOUNT HEALTH
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/sidebar-health", methods=["GET"])
@require_auth
def sidebar_health():
    """Org-wide health, or only the proxied user's processes during a proxy session."""
    process_ids = None
    if getattr(g, "proxy", None):
        process_ids = [p.id for p in owned_processes(effective_user())]
    return jsonify(scorecard_service.sidebar_health(process_ids=process_ids))
