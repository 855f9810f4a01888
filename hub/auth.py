"""
NIA Excellence Hub
Authentication and role-based access.

Users sign in with the organisation's identity provider, which issues an
HS256 session token (``sub`` = auth id, plus ``email`` and ``name``). The
token arrives in the ``hub_session`` cookie or an ``Authorization: Bearer``
header. Roles live in ``user_roles``, never in the token, so a role change
takes effect on the next request.

A super admin may additionally carry a ``hub_proxy`` cookie (also a signed
token) to view the app as another, non-super-admin user; see
``hub.services.proxy_session``.

Usage:
    @bp.route("/admin/users")
    @require_role("admin")
    def list_users(): ...
"""

import functools
import hmac
import logging
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app, g, jsonify, request

from hub.models import db
from hub.models.user import ROLE_ADMIN, ROLE_MEMBER, ROLE_SUPER_ADMIN, UserRole

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# role → roles it satisfies
ROLE_HIERARCHY = {
    ROLE_SUPER_ADMIN: {ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_MEMBER},
    ROLE_ADMIN: {ROLE_ADMIN, ROLE_MEMBER},
    ROLE_MEMBER: {ROLE_MEMBER},
}

_ROLE_DENIED_MESSAGES = {
    ROLE_ADMIN: "Admin access required",
    ROLE_SUPER_ADMIN: "Super admin access required",
}


# ── Role helpers (pure) ──────────────────────────────────────────────────────

def is_admin_role(role) -> bool:
    return role in (ROLE_ADMIN, ROLE_SUPER_ADMIN)


def is_super_admin_role(role) -> bool:
    return role == ROLE_SUPER_ADMIN


def role_satisfies(role, minimum_role) -> bool:
    return minimum_role in ROLE_HIERARCHY.get(role, set())


# ── Session tokens ───────────────────────────────────────────────────────────

def issue_session_token(auth_id, email=None, name=None, hours=None) -> str:
    """Sign a session token. Used by the identity-provider bridge, the
    ``flask issue-token`` command and tests."""
    now = datetime.now(timezone.utc)
    hours = hours or current_app.config.get("SESSION_TOKEN_HOURS", 12)
    payload = {
        "sub": auth_id,
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + timedelta(hours=hours),
    }
    return jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm=ALGORITHM)


def decode_session_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Expired session token")
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected session token: %s", exc)
    return None


def _token_from_request():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.cookies.get(current_app.config.get("SESSION_COOKIE_NAME_HUB", "hub_session"))


def _sync_user(payload) -> UserRole:
    """Find or create the ``user_roles`` row for a verified token and stamp
    ``last_login_at`` once per issued token."""
    auth_id = str(payload["sub"])
    user = UserRole.query.filter_by(auth_id=auth_id).first()
    issued_at = datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc)
    if user is None:
        user = UserRole(
            auth_id=auth_id,
            email=payload.get("email"),
            full_name=payload.get("name") or payload.get("email"),
            role=ROLE_MEMBER,
            last_login_at=issued_at,
        )
        db.session.add(user)
        db.session.commit()
        logger.info("Registered new user", extra={"auth_id": auth_id})
        return user

    last = user.last_login_at
    if last is not None and last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    if last is None or issued_at > last:
        user.last_login_at = issued_at
        if payload.get("email") and not user.email:
            user.email = payload["email"]
        db.session.commit()
    return user


def init_auth(app):
    """Resolve ``g.current_user`` (and the proxy target, if any) per request."""

    @app.before_request
    def _load_user():
        g.current_user = None
        g.proxy = None
        if not request.path.startswith("/api/"):
            return
        token = _token_from_request()
        if not token:
            return
        payload = decode_session_token(token)
        if not payload or not payload.get("sub"):
            return
        g.current_user = _sync_user(payload)

        from hub.services.proxy_session import read_proxy_session
        g.proxy = read_proxy_session(g.current_user)


def current_user():
    return getattr(g, "current_user", None)


def effective_user():
    """The user whose data is being viewed: the proxy target during a proxy
    session, otherwise the signed-in user."""
    proxy = getattr(g, "proxy", None)
    if proxy:
        target = UserRole.query.filter_by(auth_id=proxy["targetAuthId"]).first()
        if target is not None:
            return target
    return current_user()


# ── Decorators ───────────────────────────────────────────────────────────────

def require_auth(f):
    """401 unless a valid session token identified a user."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            return jsonify({"error": "Not authenticated"}), 401
        return f(*args, **kwargs)

    return decorated


def require_role(minimum_role: str, message: str | None = None):
    """
    Decorator: require a minimum role (implies ``require_auth``).

    Role hierarchy: super_admin > admin > member
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = current_user()
            if user is None:
                return jsonify({"error": "Not authenticated"}), 401
            if not role_satisfies(user.role, minimum_role):
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user.role, minimum_role, request.path,
                )
                return jsonify({
                    "error": message or _ROLE_DENIED_MESSAGES.get(minimum_role, "Forbidden"),
                }), 403
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_cron_secret(f):
    """Cron endpoints: ``Authorization: Bearer <CRON_SECRET>`` when configured."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if secret:
            supplied = request.headers.get("Authorization", "")
            if not hmac.compare_digest(supplied, f"Bearer {secret}"):
                return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated
