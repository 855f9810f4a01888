"""
Shared pytest fixtures for the NIA Excellence Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context, cache flush and table recreate (autouse)
    - client: Flask test client
    - make_user / headers_for: factories for users and their Bearer headers
    - member / admin / super_admin (+ *_headers): pre-created users
    - process: pre-created Process owned by the member
    - asana_http: fake HTTP session installed on the Asana gateway
    - asana_token: Asana connection for the member
"""

import json
from datetime import datetime, timezone

import pytest

from hub import create_app
from hub.auth import issue_session_token
from hub.integrations.asana_gateway import ASANA_API_BASE, asana_gateway
from hub.models import db as _db
from hub.models.process import Process
from hub.models.user import ROLE_ADMIN, ROLE_MEMBER, ROLE_SUPER_ADMIN, AsanaToken, UserRole
from hub.services import cache_service


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        cache_service.clear_all()
        yield
        cache_service.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    def _make(auth_id, role=ROLE_MEMBER, email=None, full_name=None):
        user = UserRole(
            auth_id=auth_id,
            email=email or f"{auth_id}@nia.org",
            full_name=full_name,
            role=role,
        )
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def headers_for():
    def _headers(user):
        token = issue_session_token(user.auth_id, email=user.email, name=user.full_name)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture()
def member(make_user):
    return make_user("member-1", email="mary@nia.org", full_name="Mary Member")


@pytest.fixture()
def admin(make_user):
    return make_user("admin-1", role=ROLE_ADMIN, email="ada@nia.org", full_name="Ada Admin")


@pytest.fixture()
def super_admin(make_user):
    return make_user("super-1", role=ROLE_SUPER_ADMIN, email="sam@nia.org", full_name="Sam Super")


@pytest.fixture()
def member_headers(member, headers_for):
    return headers_for(member)


@pytest.fixture()
def admin_headers(admin, headers_for):
    return headers_for(admin)


@pytest.fixture()
def super_admin_headers(super_admin, headers_for):
    return headers_for(super_admin)


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def process(member):
    """A draft process owned by the member."""
    proc = Process(name="Employee Onboarding", owner="Mary Member", owner_email="mary@nia.org")
    _db.session.add(proc)
    _db.session.commit()
    return proc


# ── Asana fakes ──────────────────────────────────────────────────────────


class FakeResponse:
    """Just enough of ``requests.Response`` for the gateway."""

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.content = json.dumps(self._payload).encode()

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        return self._payload


class FakeAsanaSession:
    """Routes ``(method, path)`` to canned responses and records every call.

    A route registered with several responses returns them in order and then
    keeps returning the last one. Unrouted requests get Asana's 404 body.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, payload=None, status=200):
        self.routes.setdefault((method, path), []).append(FakeResponse(status, payload))

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        path = url[len(ASANA_API_BASE):] if url.startswith(ASANA_API_BASE) else url
        queue = self.routes.get((method, path.split("?")[0]))
        if not queue:
            return FakeResponse(404, {"errors": [{"message": "Not Found"}]})
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def calls_to(self, method, path):
        return [
            c for c in self.calls
            if c["method"] == method and c["url"].split("?")[0].endswith(path)
        ]


@pytest.fixture()
def asana_http():
    fake = FakeAsanaSession()
    backoff = asana_gateway.retry_backoff
    asana_gateway.use_session(fake)
    asana_gateway.retry_backoff = []
    yield fake
    asana_gateway.use_session(None)
    asana_gateway.retry_backoff = backoff


@pytest.fixture()
def asana_token(member):
    row = AsanaToken(
        auth_id=member.auth_id,
        user_name="Mary Member",
        access_token="asana-access",
        refresh_token="asana-refresh",
        workspace_id="W1",
        workspace_name="NIA Workspace",
        connected_at=datetime.now(timezone.utc),
    )
    _db.session.add(row)
    _db.session.commit()
    return row
