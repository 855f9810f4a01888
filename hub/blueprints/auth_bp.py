"""
Auth blueprint: the signed-in user's role.

Endpoints:
    GET /api/auth/role
"""

from flask import Blueprint, jsonify

from hub.auth import current_user, is_admin_role, is_super_admin_role
from hub.models.user import ROLE_MEMBER

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.route("/role", methods=["GET"])
def get_role():
    """Anonymous callers get the member defaults."""
    user = current_user()
    role = user.role if user and user.role else ROLE_MEMBER
    return jsonify({
        "role": role,
        "isAdmin": is_admin_role(role),
        "isSuperAdmin": is_super_admin_role(role),
    })
