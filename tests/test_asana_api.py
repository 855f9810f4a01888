"""
Asana OAuth connection, workspace lookups, project sync, import/export and
the gateway's retry behaviour. All HTTP goes through the fake session from conftest.
"""

from datetime import datetime, timedelta, timezone

import pytest
import requests

from hub.core.exceptions import UpstreamError
from hub.integrations.asana_gateway import ASANA_AUTHORIZE_URL, ASANA_TOKEN_URL, AsanaGateway
from hub.models import db
from hub.models.process import Process, ProcessHistory, ProcessImprovement
from hub.models.task import ProcessTask
from hub.models.user import AsanaToken
from hub.services import asana_service


def _project_routes(http, gid="P1"):
    http.add("GET", f"/projects/{gid}/sections", {"data": [
        {"gid": "S1", "name": "Plan"}, {"gid": "S2", "name": "Execute"},
    ]})
    http.add("GET", "/sections/S1/tasks", {"data": [
        {"gid": "T1", "name": "Draft SOP", "notes": "", "completed": False,
         "assignee": {"gid": "U1", "name": "Amy Asana"}, "due_on": "2030-01-10",
         "num_subtasks": 1, "permalink_url": "https://app.asana.com/0/P1/T1"},
        {"gid": "T9", "name": "[ADLI: Approach] How We Do It", "notes": "Documented", "num_subtasks": 0},
    ]})
    http.add("GET", "/sections/S2/tasks", {"data": [
        {"gid": "T2", "name": "Pilot", "completed": True,
         "completed_at": "2025-01-02T10:00:00.000Z", "num_subtasks": 0},
    ]})
    http.add("GET", "/tasks/T1/subtasks", {"data": [{"gid": "T1a", "name": "Review draft"}]})
    http.add("GET", "/users/U1", {"data": {"email": "amy@nia.org"}})


@pytest.fixture()
def linked_process(process):
    process.asana_project_gid = "P1"
    db.session.commit()
    return process


class TestOAuth:

    def test_status(self, client, asana_token, member_headers):
        assert client.get("/api/asana/status", headers=member_headers).get_json() == {
            "connected": True, "userName": "Mary Member", "workspaceName": "NIA Workspace",
        }
        assert client.get("/api/asana/status").get_json() == {"connected": False}

    def test_authorize_redirect(self, client):
        res = client.get("/api/asana/authorize?returnTo=/processes/3")
        assert res.status_code == 302
        assert res.location.startswith(ASANA_AUTHORIZE_URL)
        assert "client_id=test-client-id" in res.location
        assert "state=%2Fprocesses%2F3" in res.location

    def test_authorize_unconfigured(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "ASANA_CLIENT_ID", None)
        res = client.get("/api/asana/authorize")
        assert res.status_code == 500
        assert res.get_json()["error"] == "Asana not configured"

    def test_callback_connects(self, client, member, member_headers, asana_http):
        asana_http.add("POST", ASANA_TOKEN_URL, {
            "access_token": "new-access", "refresh_token": "new-refresh", "data": {"name": "Mary M"},
        })
        asana_http.add("GET", "/workspaces", {"data": [{"gid": "W9", "name": "NIA"}]})

        res = client.get("/api/asana/callback?code=abc&state=/processes/3", headers=member_headers)
        assert res.location == "http://localhost:5000/processes/3?asana_connected=true"

        row = AsanaToken.query.filter_by(auth_id=member.auth_id).one()
        assert row.access_token == "new-access"
        assert row.workspace_id == "W9"
        assert row.user_name == "Mary M"
        form = asana_http.calls[0]["data"]
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "abc"

    def test_callback_rejects_offsite_state(self, client, member_headers, asana_http):
        asana_http.add("POST", ASANA_TOKEN_URL, {"access_token": "a"})
        asana_http.add("GET", "/workspaces", {"data": []})
        res = client.get("/api/asana/callback?code=abc&state=https://evil.example", headers=member_headers)
        assert res.location == "http://localhost:5000/settings?asana_connected=true"

    def test_callback_denied(self, client, member_headers):
        res = client.get("/api/asana/callback?error=access_denied", headers=member_headers)
        assert res.location == "http://localhost:5000/settings?asana_error=denied"

    def test_callback_token_failure(self, client, member_headers, asana_http):
        asana_http.add("POST", ASANA_TOKEN_URL, {"error": "invalid_grant"}, status=400)
        res = client.get("/api/asana/callback?code=abc", headers=member_headers)
        assert res.location == "http://localhost:5000/settings?asana_error=token"

    def test_callback_requires_login(self, client):
        res = client.get("/api/asana/callback?code=abc")
        assert res.location == "http://localhost:5000/login"

    def test_disconnect(self, client, asana_token, member_headers):
        assert client.post("/api/asana/disconnect", headers=member_headers).get_json() == {"success": True}
        assert client.get("/api/asana/status", headers=member_headers).get_json() == {"connected": False}


class TestTokenRefresh:

    def test_fresh_token_is_returned(self, member, asana_token, asana_http):
        assert asana_service.get_asana_token(member.auth_id) == "asana-access"
        assert asana_http.calls == []

    def test_refresh_after_an_hour(self, member, asana_token, asana_http):
        asana_token.connected_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db.session.commit()
        asana_http.add("POST", ASANA_TOKEN_URL, {"access_token": "refreshed"})

        assert asana_service.get_asana_token(member.auth_id) == "refreshed"
        assert asana_token.refresh_token == "asana-refresh"
        assert asana_http.calls[0]["data"]["grant_type"] == "refresh_token"

    def test_refused_refresh(self, member, asana_token, asana_http):
        asana_token.connected_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db.session.commit()
        asana_http.add("POST", ASANA_TOKEN_URL, {"error": "revoked"}, status=401)
        assert asana_service.get_asana_token(member.auth_id) is None

    def test_never_connected(self, member):
        assert asana_service.get_asana_token(member.auth_id) is None


class TestLookups:

    def test_projects(self, client, asana_token, member_headers, asana_http):
        asana_http.add("GET", "/projects", {"data": [
            {"gid": "P1", "name": "Onboarding", "notes": "x" * 200, "team": {"name": "HR"}},
        ]})
        (project,) = client.get("/api/asana/projects", headers=member_headers).get_json()["projects"]
        assert project["gid"] == "P1"
        assert project["team"] == "HR"
        assert len(project["description"]) == 150
        assert "workspace=W1" in asana_http.calls[0]["url"]

    def test_projects_not_connected(self, client, member_headers):
        res = client.get("/api/asana/projects", headers=member_headers)
        assert res.status_code == 401
        assert res.get_json()["error"] == "not_connected"

    def test_workspace_members_sorted_and_cached(self, client, asana_token, member_headers, asana_http):
        asana_http.add("GET", "/workspaces/W1/users", {"data": [
            {"gid": "U2", "name": "zed"}, {"gid": "U1", "name": "Amy", "email": "amy@nia.org"},
        ]})
        for _ in range(2):
            members = client.get("/api/asana/workspace-members", headers=member_headers).get_json()["members"]
            assert [m["name"] for m in members] == ["Amy", "zed"]
        assert len(asana_http.calls_to("GET", "/workspaces/W1/users")) == 1


class TestSync:

    def test_sync_tasks(self, client, linked_process, asana_token, member_headers, asana_http):
        _project_routes(asana_http)
        db.session.add(ProcessTask(process_id=linked_process.id, title="Gone", pdca_section="plan",
                                   origin="asana", asana_task_gid="OLD"))
        db.session.commit()

        res = client.post("/api/asana/sync-tasks", json={"processId": linked_process.id},
                          headers=member_headers)
        data = res.get_json()
        assert (data["imported"], data["updated"], data["removed"], data["total"]) == (3, 0, 1, 3)

        tasks = {t.asana_task_gid: t for t in ProcessTask.query.all()}
        assert set(tasks) == {"T1", "T1a", "T2"}
        assert tasks["T1"].assignee_email == "amy@nia.org"
        assert tasks["T1"].pdca_section == "plan"
        assert tasks["T1"].asana_task_url == "https://app.asana.com/0/P1/T1"
        assert tasks["T2"].pdca_section == "execute"
        assert tasks["T2"].completed is True
        assert tasks["T1a"].is_subtask is True
        assert tasks["T1a"].parent_asana_gid == "T1"

    def test_second_sync_updates(self, client, linked_process, asana_token, member_headers, asana_http):
        _project_routes(asana_http)
        client.post("/api/asana/sync-tasks", json={"processId": linked_process.id}, headers=member_headers)
        data = client.post("/api/asana/sync-tasks", json={"processId": linked_process.id},
                           headers=member_headers).get_json()
        assert (data["imported"], data["updated"], data["removed"]) == (0, 3, 0)

    def test_missing_project(self, client, linked_process, asana_token, member_headers, asana_http):
        res = client.post("/api/asana/sync-tasks", json={"processId": linked_process.id},
                          headers=member_headers)
        assert res.status_code == 400
        assert res.get_json() == {
            "error": "not_linked", "message": "The linked Asana project no longer exists.",
        }

    def test_unlinked_process(self, client, process, asana_token, member_headers):
        res = client.post("/api/asana/sync-tasks", json={"processId": process.id}, headers=member_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "not_linked"
        res = client.post("/api/asana/sync-tasks", json={}, headers=member_headers)
        assert res.get_json()["error"] == "processId is required"

    def test_rate_limit_is_retried(self, client, linked_process, asana_token, member_headers, asana_http):
        asana_http.add("GET", "/projects/P1/sections", {"errors": [{"message": "Rate limited"}]}, status=429)
        asana_http.add("GET", "/projects/P1/sections", {"data": []})
        res = client.post("/api/asana/sync-tasks", json={"processId": linked_process.id},
                          headers=member_headers)
        assert res.get_json()["total"] == 0
        assert len(asana_http.calls_to("GET", "/projects/P1/sections")) == 2

    def test_resync_keeps_narratives(self, client, linked_process, asana_token, member_headers, asana_http):
        linked_process.charter = {"content": "Our charter"}
        db.session.commit()
        _project_routes(asana_http)
        asana_http.add("GET", "/projects/P1", {"data": {"name": "Onboarding"}})

        res = client.post("/api/asana/resync", json={"processId": linked_process.id}, headers=member_headers)
        assert res.get_json() == {"success": True, "sections": 2, "tasks": 3, "subtasks": 1, "adliFound": 1}
        assert linked_process.charter == {"content": "Our charter"}
        assert linked_process.asana_adli_task_gids == {"approach": "T9"}
        assert linked_process.asana_raw_data["project"] == {"name": "Onboarding"}
        history = ProcessHistory.query.filter_by(process_id=linked_process.id).one()
        assert history.change_description == \
            "Synced from Asana (3 tasks, 1 subtasks, 1 ADLI docs) by mary@nia.org"

        client.post("/api/asana/resync", json={"processId": linked_process.id}, headers=member_headers)
        assert linked_process.asana_raw_data_previous["project"] == {"name": "Onboarding"}

    def test_sync_all_requires_admin(self, client, member_headers):
        res = client.post("/api/asana/sync-all", headers=member_headers)
        assert res.status_code == 403

    def test_sync_all_collects_failures(self, client, admin, admin_headers, asana_http):
        db.session.add_all([
            AsanaToken(auth_id=admin.auth_id, access_token="admin-access",
                       connected_at=datetime.now(timezone.utc)),
            Process(name="B process", asana_project_gid="P2"),
            Process(name="A process", asana_project_gid="P1"),
            Process(name="Not linked"),
        ])
        db.session.commit()
        asana_http.add("GET", "/projects/P1/sections", {"data": []})

        data = client.post("/api/asana/sync-all", headers=admin_headers).get_json()
        assert data["summary"] == {"total": 2, "synced": 1, "failed": 1}
        assert [r["processName"] for r in data["results"]] == ["A process", "B process"]
        assert data["results"][1]["error"] == "Not Found"


def _new_project_routes(http):
    http.add("GET", "/organizations/W1/teams", {"data": [{"gid": "TEAM1", "name": "Quality"}]})
    http.add("POST", "/projects", {"data": {"gid": "NP1"}})
    http.add("GET", "/projects/NP1/sections", {"data": []})
    for gid in ("NS1", "NS2", "NS3", "NS4"):
        http.add("POST", "/projects/NP1/sections", {"data": {"gid": gid}})


class TestImport:

    @pytest.fixture()
    def project(self, asana_http):
        _project_routes(asana_http)
        asana_http.add("GET", "/projects/P1", {"data": {
            "gid": "P1", "name": "Onboarding", "notes": "We welcome new hires. Then we train them.",
            "owner": {"name": "Olive Owner"},
        }})
        return asana_http

    def test_import_maps_charter_and_adli(self, client, asana_token, member_headers, project):
        res = client.post("/api/asana/import", json={"projectGid": "P1"}, headers=member_headers)
        data = res.get_json()
        assert data["name"] == "Onboarding"
        assert (data["templateType"], data["sectionsImported"], data["adliMapped"]) == ("full", 2, 2)

        proc = db.session.get(Process, data["id"])
        assert proc.status == "draft"
        assert proc.owner == "Olive Owner"
        assert proc.description == "We welcome new hires"
        assert proc.asana_project_url == "https://app.asana.com/0/P1"
        assert proc.asana_adli_task_gids == {"approach": "T9"}
        assert proc.charter["purpose"] == "We welcome new hires. Then we train them."
        assert proc.charter["stakeholders"] == ["Amy Asana"]
        assert proc.charter["content"] == (
            "We welcome new hires. Then we train them.\n\n## Asana Project Sections\n\n"
            "- **Plan** (2 tasks)\n- **Execute** (1 tasks)"
        )
        assert proc.adli_approach["content"] == (
            "## Plan\n\n- Draft SOP (Amy Asana, due 2030-01-10)\n  - Review draft\n"
            "- [ADLI: Approach] How We Do It\n  Documented"
        )
        assert proc.adli_deployment == {"content": "## Execute\n\n- ~~Pilot~~ (done)"}
        assert proc.adli_learning is None
        assert proc.asana_raw_data["project"]["name"] == "Onboarding"
        history = ProcessHistory.query.filter_by(process_id=proc.id).one()
        assert history.change_description == 'Imported from Asana project "Onboarding" by mary@nia.org'

    def test_second_import_conflicts(self, client, asana_token, member_headers, project):
        first = client.post("/api/asana/import", json={"projectGid": "P1"}, headers=member_headers).get_json()
        res = client.post("/api/asana/import", json={"projectGid": "P1"}, headers=member_headers)
        assert res.status_code == 409
        assert res.get_json() == {"error": "already_exists", "existingId": first["id"],
                                  "existingName": "Onboarding"}

    def test_requires_gid_and_connection(self, client, member_headers):
        res = client.post("/api/asana/import", json={}, headers=member_headers)
        assert res.get_json() == {"error": "projectGid is required"}
        res = client.post("/api/asana/import", json={"projectGid": "P1"}, headers=member_headers)
        assert res.status_code == 401
        assert res.get_json()["message"] == "Asana not connected"

    @pytest.mark.parametrize("section,field", [
        ("Plan", "adli_approach"),
        ("How We Improve", "adli_learning"),
        ("Act (Improve)", "adli_integration"),
        ("Rollout Phase 2", "adli_deployment"),
        ("Backlog", None),
    ])
    def test_section_matching(self, section, field):
        assert asana_service.match_adli_field(section) == field


class TestExport:

    def test_creates_project(self, client, process, asana_token, member_headers, asana_http):
        process.charter = {"content": "Welcome every hire"}
        process.adli_approach = {"content": "Documented steps"}
        db.session.add(ProcessImprovement(process_id=process.id, section_affected="approach",
                                          title="Add buddy program"))
        db.session.commit()
        _new_project_routes(asana_http)
        asana_http.add("POST", "/tasks", {"data": {"gid": "DOC"}})
        asana_http.add("POST", "/tasks", {"data": {"gid": "ADLI1"}})
        asana_http.add("POST", "/tasks", {"data": {"gid": "IMP1", "permalink_url": "https://app.asana.com/0/NP1/IMP1"}})

        res = client.post("/api/asana/export", json={"processId": process.id}, headers=member_headers)
        assert res.get_json() == {"action": "created", "asanaUrl": "https://app.asana.com/0/NP1",
                                  "projectGid": "NP1", "backfillCount": 1}

        (create,) = asana_http.calls_to("POST", "/projects")
        assert create["json"]["data"] == {"name": "Employee Onboarding", "notes": "Welcome every hire",
                                          "workspace": "W1", "team": "TEAM1"}
        sections = [c["json"]["data"]["name"] for c in asana_http.calls_to("POST", "/projects/NP1/sections")]
        assert sections == ["Plan", "Execute", "Evaluate", "Improve"]

        doc, adli, improvement = [c["json"]["data"] for c in asana_http.calls_to("POST", "/tasks")]
        assert doc["name"] == "Process Documentation"
        assert doc["notes"] == "## Charter\n\nWelcome every hire"
        assert doc["memberships"] == [{"project": "NP1", "section": "NS1"}]
        assert adli["name"] == "[ADLI: Approach] How We Do It"
        assert adli["notes"] == "## Approach\n\nDocumented steps"
        assert improvement["name"] == "[Approach] Add buddy program"
        assert improvement["memberships"] == [{"project": "NP1", "section": "NS4"}]
        assert improvement["notes"].endswith(f"/processes/{process.id}")

        assert process.asana_project_gid == "NP1"
        assert process.asana_adli_task_gids == {"approach": "ADLI1"}
        assert ProcessImprovement.query.one().trigger_detail == "https://app.asana.com/0/NP1/IMP1"
        history = ProcessHistory.query.filter_by(process_id=process.id).one()
        assert history.change_description == \
            "Exported to new Asana project by mary@nia.org (1 improvement tasks created)"

    def test_updates_linked_project(self, client, linked_process, asana_token, member_headers, asana_http):
        linked_process.adli_learning = {"content": "Quarterly review"}
        linked_process.asana_adli_task_gids = {"learning": "T9"}
        db.session.commit()
        asana_http.add("GET", "/projects/P1", {"data": {"gid": "P1", "name": "Onboarding"}})
        asana_http.add("PUT", "/projects/P1", {"data": {}})
        asana_http.add("GET", "/projects/P1/sections", {"data": [
            {"gid": "S1", "name": "Plan"}, {"gid": "S2", "name": "Execute"},
            {"gid": "S3", "name": "Evaluate"}, {"gid": "S4", "name": "Improve"},
        ]})
        asana_http.add("PUT", "/tasks/T9", {"data": {"gid": "T9"}})

        res = client.post("/api/asana/export", json={"processId": linked_process.id}, headers=member_headers)
        assert res.get_json() == {"action": "updated", "asanaUrl": "https://app.asana.com/0/P1",
                                  "backfillCount": 0}
        (put,) = asana_http.calls_to("PUT", "/tasks/T9")
        assert put["json"] == {"data": {"notes": "## Learning\n\nQuarterly review"}}
        assert asana_http.calls_to("POST", "/projects/P1/sections") == []
        assert linked_process.asana_adli_task_gids == {"learning": "T9"}
        history = ProcessHistory.query.filter_by(process_id=linked_process.id).one()
        assert history.change_description == "Synced to Asana project by mary@nia.org"

    def test_deleted_project_is_recreated(self, client, linked_process, asana_token, member_headers,
                                          asana_http):
        _new_project_routes(asana_http)
        asana_http.add("POST", "/tasks", {"data": {"gid": "DOC"}})

        data = client.post("/api/asana/export", json={"processId": linked_process.id},
                           headers=member_headers).get_json()
        assert data["action"] == "created"
        assert linked_process.asana_project_gid == "NP1"
        (doc,) = asana_http.calls_to("POST", "/tasks")
        assert doc["json"]["data"]["notes"] == asana_service.NO_DOCUMENTATION

    def test_new_project_needs_workspace(self, client, process, asana_token, member_headers, asana_http):
        asana_token.workspace_id = None
        db.session.commit()
        res = client.post("/api/asana/export", json={"processId": process.id}, headers=member_headers)
        assert res.status_code == 400
        assert res.get_json() == {"error": "No workspace found"}

    def test_requires_process_id(self, client, asana_token, member_headers):
        res = client.post("/api/asana/export", json={}, headers=member_headers)
        assert res.get_json() == {"error": "processId is required"}


class TestGateway:

    def test_retries_exhausted(self, asana_http):
        gateway = AsanaGateway(session=asana_http)
        gateway.retry_backoff = []
        asana_http.add("GET", "/users/me", {"errors": [{"message": "Rate limited"}]}, status=429)
        with pytest.raises(UpstreamError) as exc_info:
            gateway.get("tok", "/users/me")
        assert str(exc_info.value) == "Rate limited"
        assert len(asana_http.calls) == 3

    def test_client_errors_are_not_retried(self, asana_http):
        gateway = AsanaGateway(session=asana_http)
        with pytest.raises(UpstreamError) as exc_info:
            gateway.get("tok", "/tasks/nope")
        assert exc_info.value.status_code == 404
        assert len(asana_http.calls) == 1

    def test_network_error_is_retried(self, asana_http):
        class FlakySession:
            def __init__(self):
                self.attempts = 0

            def request(self, method, url, **kwargs):
                self.attempts += 1
                if self.attempts == 1:
                    raise requests.ConnectionError("connection reset")
                return asana_http.request(method, url, **kwargs)

        asana_http.add("GET", "/users/me", {"data": {"gid": "U1"}})
        session = FlakySession()
        gateway = AsanaGateway(session=session)
        gateway.retry_backoff = []
        assert gateway.get("tok", "/users/me") == {"data": {"gid": "U1"}}
        assert session.attempts == 2

    def test_pagination(self, asana_http):
        gateway = AsanaGateway(session=asana_http)
        asana_http.add("GET", "/sections/S1/tasks", {
            "data": [{"gid": "T1"}],
            "next_page": {"uri": "https://app.asana.com/api/1.0/sections/S1/tasks?offset=abc"},
        })
        asana_http.add("GET", "/sections/S1/tasks", {"data": [{"gid": "T2"}], "next_page": None})
        assert [t["gid"] for t in gateway.fetch_all_pages("tok", "/sections/S1/tasks")] == ["T1", "T2"]
        assert "limit=100" in asana_http.calls[0]["url"]

    def test_missing_project_error(self):
        assert asana_service.is_missing_project_error(UpstreamError("Unknown object: 123"))
        assert asana_service.is_missing_project_error(UpstreamError("x", status_code=404))
        assert not asana_service.is_missing_project_error(UpstreamError("Forbidden", status_code=403))
