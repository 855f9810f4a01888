"""
Session tokens, roles and super-admin proxy sessions.
"""

from hub.auth import issue_session_token
from hub.models import db
from hub.models.task import ProcessTask
from hub.models.user import UserRole


class TestSessionToken:

    def test_missing_token_is_401(self, client):
        res = client.get("/api/processes")
        assert res.status_code == 401
        assert res.get_json()["error"] == "Not authenticated"

    def test_garbage_token_is_401(self, client):
        res = client.get("/api/processes", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_expired_token_is_401(self, client, member):
        token = issue_session_token(member.auth_id, email=member.email, hours=-1)
        res = client.get("/api/processes", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401

    def test_cookie_token(self, client, member):
        client.set_cookie("hub_session", issue_session_token(member.auth_id))
        res = client.get("/api/processes")
        assert res.status_code == 200

    def test_first_sign_in_creates_member(self, client):
        token = issue_session_token("new-user", email="nora@nia.org", name="Nora New")
        res = client.get("/api/auth/role", headers={"Authorization": f"Bearer {token}"})
        assert res.get_json() == {"role": "member", "isAdmin": False, "isSuperAdmin": False}
        user = UserRole.query.filter_by(auth_id="new-user").one()
        assert user.full_name == "Nora New"
        assert user.last_login_at is not None


class TestRole:

    def test_anonymous_defaults_to_member(self, client):
        assert client.get("/api/auth/role").get_json()["role"] == "member"

    def test_admin_flags(self, client, admin_headers):
        data = client.get("/api/auth/role", headers=admin_headers).get_json()
        assert data == {"role": "admin", "isAdmin": True, "isSuperAdmin": False}

    def test_super_admin_flags(self, client, super_admin_headers):
        data = client.get("/api/auth/role", headers=super_admin_headers).get_json()
        assert data["isAdmin"] is True
        assert data["isSuperAdmin"] is True

    def test_role_change_applies_to_next_request(self, client, member, member_headers):
        member.role = "admin"
        db.session.commit()
        assert client.get("/api/auth/role", headers=member_headers).get_json()["isAdmin"] is True


class TestProxySession:

    def test_requires_super_admin(self, client, admin_headers, member):
        res = client.post("/api/admin/proxy", json={"targetAuthId": member.auth_id},
                          headers=admin_headers)
        assert res.status_code == 403
        assert res.get_json()["error"] == "Super admin access required"

    def test_validation(self, client, super_admin, super_admin_headers, make_user):
        res = client.post("/api/admin/proxy", json={}, headers=super_admin_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "targetAuthId required"

        res = client.post("/api/admin/proxy", json={"targetAuthId": super_admin.auth_id},
                          headers=super_admin_headers)
        assert res.get_json()["error"] == "Cannot proxy as yourself"

        make_user("super-2", role="super_admin")
        res = client.post("/api/admin/proxy", json={"targetAuthId": "super-2"},
                          headers=super_admin_headers)
        assert res.get_json()["error"] == "Cannot proxy as another super admin"

        res = client.post("/api/admin/proxy", json={"targetAuthId": "ghost"},
                          headers=super_admin_headers)
        assert res.status_code == 404
        assert res.get_json()["error"] == "User not found"

    def test_start_status_end(self, client, member, super_admin_headers):
        assert client.get("/api/admin/proxy", headers=super_admin_headers).get_json() == {"active": False}

        res = client.post("/api/admin/proxy", json={"targetAuthId": member.auth_id},
                          headers=super_admin_headers)
        assert res.status_code == 200
        assert res.get_json() == {"success": True, "targetName": "Mary Member"}

        status = client.get("/api/admin/proxy", headers=super_admin_headers).get_json()
        assert status["active"] is True
        assert status["targetAuthId"] == member.auth_id
        assert status["targetRole"] == "member"

        client.delete("/api/admin/proxy", headers=super_admin_headers)
        assert client.get("/api/admin/proxy", headers=super_admin_headers).get_json() == {"active": False}

    def test_cookie_ignored_for_other_users(self, client, member, admin_headers, super_admin_headers):
        client.post("/api/admin/proxy", json={"targetAuthId": member.auth_id},
                    headers=super_admin_headers)
        assert client.get("/api/admin/proxy", headers=admin_headers).get_json() == {"active": False}

    def test_my_tasks_shows_target_user_tasks(self, client, member, process, super_admin_headers):
        db.session.add(ProcessTask(
            process_id=process.id, title="Draft charter", pdca_section="plan",
            status="active", origin="hub_manual", assignee_email=member.email,
        ))
        db.session.commit()

        assert client.get("/api/tasks/my-tasks", headers=super_admin_headers).get_json() == []

        client.post("/api/admin/proxy", json={"targetAuthId": member.auth_id},
                    headers=super_admin_headers)
        tasks = client.get("/api/tasks/my-tasks", headers=super_admin_headers).get_json()
        assert [t["title"] for t in tasks] == ["Draft charter"]
        assert tasks[0]["process_name"] == "Employee Onboarding"
