"""
NIA Excellence Hub
User and integration-credential models.

Models:
    - UserRole:    one row per signed-in person (auth_id from the identity provider)
    - AsanaToken:  per-user OAuth tokens for the Asana integration
"""

from datetime import datetime, timezone

from hub.models import db

ROLE_MEMBER = "member"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ROLES = (ROLE_MEMBER, ROLE_ADMIN, ROLE_SUPER_ADMIN)


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    auth_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    full_name = db.Column(db.String(200), nullable=True)
    role = db.Column(
        db.String(20), nullable=False, default=ROLE_MEMBER,
        comment="member | admin | super_admin",
    )
    onboarding_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def display_name(self):
        return self.full_name or self.email or "Unknown"

    def to_dict(self):
        return {
            "id": self.id,
            "auth_id": self.auth_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "onboarding_completed_at": _iso(self.onboarding_completed_at),
            "last_login_at": _iso(self.last_login_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<UserRole {self.auth_id} {self.role}>"


class AsanaToken(db.Model):
    __tablename__ = "user_asana_tokens"

    id = db.Column(db.Integer, primary_key=True)
    auth_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    user_name = db.Column(db.String(200), nullable=True)
    access_token = db.Column(db.Text, nullable=False)
    refresh_token = db.Column(db.Text, nullable=True)
    workspace_id = db.Column(db.String(64), nullable=True)
    workspace_name = db.Column(db.String(200), nullable=True)
    connected_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<AsanaToken {self.auth_id} ws={self.workspace_id}>"
