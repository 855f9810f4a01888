"""
Admin user management, owner scorecards and account-level health.
"""

from datetime import datetime, timezone

from hub.models import db
from hub.models.process import Process
from hub.models.user import UserRole


class TestUsers:

    def test_members_are_forbidden(self, client, member_headers):
        res = client.get("/api/admin/users", headers=member_headers)
        assert res.status_code == 403
        assert res.get_json()["error"] == "Admin access required"

    def test_list_puts_signed_in_users_first(self, client, member, admin_headers):
        data = client.get("/api/admin/users", headers=admin_headers).get_json()
        assert data["currentUserId"] == "admin-1"
        assert [u["auth_id"] for u in data["users"]] == ["admin-1", "member-1"]

    def test_promote_member(self, client, member, admin_headers):
        res = client.patch("/api/admin/users", json={"authId": member.auth_id, "role": "admin"},
                           headers=admin_headers)
        assert res.get_json() == {"success": True}
        assert UserRole.query.filter_by(auth_id=member.auth_id).one().role == "admin"

    def test_role_change_rules(self, client, member, super_admin, admin_headers):
        cases = [
            ({"authId": member.auth_id}, 400, "authId and role are required"),
            ({"authId": member.auth_id, "role": "super_admin"}, 400, "role must be 'admin' or 'member'"),
            ({"authId": "admin-1", "role": "member"}, 400, "Cannot change your own role"),
            ({"authId": super_admin.auth_id, "role": "member"}, 400, "Cannot change a super admin's role"),
            ({"authId": "ghost", "role": "member"}, 404, "User not found"),
        ]
        for body, status, error in cases:
            res = client.patch("/api/admin/users", json=body, headers=admin_headers)
            assert res.status_code == status, body
            assert res.get_json()["error"] == error


class TestScorecards:

    def test_forbidden_for_members(self, client, member_headers):
        res = client.get("/api/admin/scorecards", headers=member_headers)
        assert res.status_code == 403
        assert res.get_json()["error"] == "Forbidden"

    def test_non_compliant_owners_first(self, client, process, admin, admin_headers):
        admin.onboarding_completed_at = datetime.now(timezone.utc)
        db.session.commit()

        rows = client.get("/api/admin/scorecards", headers=admin_headers).get_json()["scorecards"]
        assert [r["auth_id"] for r in rows] == ["member-1", "admin-1"]
        mary, ada = rows
        assert mary["processCount"] == 1
        assert mary["compliance"]["isCompliant"] is False
        assert "Onboarding has not been completed" in mary["compliance"]["reasons"]
        assert ada["processCount"] == 0
        assert ada["compliance"]["isCompliant"] is True


class TestOwnerScorecard:

    def test_owner_sees_own_processes(self, client, process, member_headers):
        data = client.get("/api/owners/member-1", headers=member_headers).get_json()
        assert data["owner"]["email"] == "mary@nia.org"
        assert [p["name"] for p in data["processes"]] == ["Employee Onboarding"]
        assert data["growth"]["totalTasks"] == 0
        assert data["growth"]["taskCompletionRate"] is None

    def test_owner_matched_by_name_without_email(self, client, member, member_headers):
        db.session.add(Process(name="Hiring", owner="Mary Member"))
        db.session.add(Process(name="Payroll", owner="Mary Member", owner_email="pat@nia.org"))
        db.session.commit()
        data = client.get("/api/owners/member-1", headers=member_headers).get_json()
        assert [p["name"] for p in data["processes"]] == ["Hiring"]

    def test_members_cannot_view_others(self, client, admin, member_headers):
        res = client.get(f"/api/owners/{admin.auth_id}", headers=member_headers)
        assert res.status_code == 403

    def test_admin_can_view_anyone(self, client, member, admin_headers):
        assert client.get("/api/owners/member-1", headers=admin_headers).status_code == 200
        assert client.get("/api/owners/ghost", headers=admin_headers).status_code == 404

    def test_complete_onboarding(self, client, member, member_headers):
        res = client.post("/api/owners/member-1", json={"action": "complete-onboarding"},
                          headers=member_headers)
        assert res.get_json() == {"ok": True}
        assert UserRole.query.filter_by(auth_id="member-1").one().onboarding_completed_at is not None

    def test_unknown_action(self, client, member, member_headers):
        res = client.post("/api/owners/member-1", json={"action": "dance"}, headers=member_headers)
        assert res.status_code == 400


class TestSidebarHealth:

    def test_no_processes(self, client, member_headers):
        data = client.get("/api/sidebar-health", headers=member_headers).get_json()
        assert data["score"] == 0
        assert data["topAction"] is None
        assert data["monthlyStreak"] == 0

    def test_scores_processes(self, client, process, member_headers):
        data = client.get("/api/sidebar-health", headers=member_headers).get_json()
        assert 0 < data["score"] <= 100
        assert data["level"] in ("Getting Started", "Developing", "On Track", "Baldrige Ready")
        assert data["topAction"]["href"]

    def test_proxy_scopes_to_target(self, client, process, make_user, super_admin_headers):
        make_user("other-1", email="olive@nia.org", full_name="Olive Other")
        client.post("/api/admin/proxy", json={"targetAuthId": "other-1"}, headers=super_admin_headers)
        data = client.get("/api/sidebar-health", headers=super_admin_headers).get_json()
        assert data["score"] == 0
