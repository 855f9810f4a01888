"""
Proxy sessions: a super admin viewing the hub as another user.

The session is a signed token in the ``hub_proxy`` cookie carrying
``{adminId, targetAuthId, targetName, targetRole, startedAt}`` and expiring
after four hours. A session only counts while the cookie's ``adminId`` is the
signed-in user and that user is still a super admin.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app, request

from hub.auth import ALGORITHM, is_super_admin_role
from hub.core.exceptions import NotFoundError, ValidationError
from hub.models.user import UserRole

logger = logging.getLogger(__name__)

_SESSION_KEYS = ("adminId", "targetAuthId", "targetName", "targetRole", "startedAt")


def cookie_name():
    return current_app.config.get("PROXY_COOKIE_NAME", "hub_proxy")


def max_age_seconds():
    return current_app.config.get("PROXY_SESSION_HOURS", 4) * 3600


def start_proxy_session(admin: UserRole, target_auth_id) -> tuple[dict, str]:
    """Validate the request and return ``(session, signed_cookie_value)``."""
    if not target_auth_id:
        raise ValidationError("targetAuthId required")
    if target_auth_id == admin.auth_id:
        raise ValidationError("Cannot proxy as yourself")
    target = UserRole.query.filter_by(auth_id=target_auth_id).first()
    if target is None:
        raise NotFoundError("User", target_auth_id)
    if is_super_admin_role(target.role):
        raise ValidationError("Cannot proxy as another super admin")

    now = datetime.now(timezone.utc)
    session = {
        "adminId": admin.auth_id,
        "targetAuthId": target.auth_id,
        "targetName": target.full_name or target.email,
        "targetRole": target.role,
        "startedAt": now.isoformat(),
    }
    token = jwt.encode(
        dict(session, exp=now + timedelta(seconds=max_age_seconds())),
        current_app.config["SECRET_KEY"],
        algorithm=ALGORITHM,
    )
    logger.info("Proxy session started: %s as %s", admin.auth_id, target.auth_id)
    return session, token


def read_proxy_session(user: UserRole | None) -> dict | None:
    """Active proxy session for *user*, or None."""
    if user is None or not is_super_admin_role(user.role):
        return None
    raw = request.cookies.get(cookie_name())
    if not raw:
        return None
    try:
        payload = jwt.decode(raw, current_app.config["SECRET_KEY"], algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    if payload.get("adminId") != user.auth_id:
        return None
    return {key: payload.get(key) for key in _SESSION_KEYS}
