"""Health, cron, CLI commands, JSON error bodies, cache and logging plumbing."""

import json
import logging

import pytest
from flask import g
from flask_limiter import Limiter

import hub
from hub.config import TestingConfig, config
from hub.middleware.logging_config import CurrentUserFilter, JSONFormatter
from hub.middleware.rate_limiter import AI_LIMIT, user_rate_limit_key
from hub.services import cache_service

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


class TestHealth:

    def test_ok(self, client):
        res = client.get("/api/health")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "ok"
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["cache"] == {"status": "ok", "backend": "memory"}


class TestCron:

    def test_requires_secret(self, client):
        res = client.post("/api/cron/survey-scheduler")
        assert res.status_code == 401
        assert res.get_json() == {"error": "Unauthorized"}
        res = client.post("/api/cron/survey-scheduler", headers={"Authorization": "Bearer wrong"})
        assert res.status_code == 401

    def test_runs_scheduler(self, client):
        data = client.post("/api/cron/survey-scheduler", headers=CRON_HEADERS).get_json()
        assert data["success"] is True
        assert (data["opened"], data["closed"], data["metricsGenerated"]) == (0, 0, 0)
        assert client.get("/api/cron/survey-scheduler", headers=CRON_HEADERS).status_code == 200


class TestCli:

    def test_issue_token(self, app, client, admin):
        result = app.test_cli_runner().invoke(args=["issue-token", "admin-1", "--hours", "1"])
        assert result.exit_code == 0
        token = result.output.strip()
        data = client.get("/api/auth/role", headers={"Authorization": f"Bearer {token}"}).get_json()
        assert data["role"] == "admin"

    def test_run_survey_scheduler(self, app):
        result = app.test_cli_runner().invoke(args=["run-survey-scheduler"])
        assert result.exit_code == 0
        assert result.output.strip() == "opened=0 closed=0 metricsGenerated=0"


class TestErrorBodies:

    def test_unknown_api_route(self, client):
        res = client.get("/api/nope")
        assert res.status_code == 404
        assert res.get_json() == {"error": "Not found", "path": "/api/nope"}

    def test_method_not_allowed(self, client):
        res = client.put("/api/health")
        assert res.status_code == 405
        assert res.get_json() == {"error": "Method not allowed"}


class TestCache:

    def test_loader_runs_once(self):
        calls = []

        def load():
            calls.append(1)
            return [{"gid": "U1"}]

        for _ in range(2):
            assert cache_service.get_cached("k", ttl=60, loader=load) == [{"gid": "U1"}]
        assert len(calls) == 1

    def test_none_is_not_cached(self):
        assert cache_service.get_cached("k", loader=lambda: None) is None
        assert cache_service.get_cached("k") is None

    def test_set_and_delete(self):
        cache_service.set_cached("k", {"a": 1})
        assert cache_service.get_cached("k") == {"a": 1}
        cache_service.delete_cached("k")
        assert cache_service.get_cached("k") is None

    def test_workspace_key(self):
        assert cache_service.workspace_members_key("W1") == "hub:asana:workspace-members:W1"


class TestRateLimitKey:

    def test_keyed_by_user(self, app, member):
        with app.test_request_context("/api/tasks/1", environ_base={"REMOTE_ADDR": "10.0.0.9"}):
            g.current_user = member
            assert user_rate_limit_key() == "user:member-1"

    def test_falls_back_to_ip(self, app):
        with app.test_request_context("/api/tasks/1", environ_base={"REMOTE_ADDR": "10.0.0.9"}):
            assert user_rate_limit_key() == "10.0.0.9"


class RateLimitedConfig(TestingConfig):
    RATELIMIT_ENABLED = True


class TestRateLimits:

    @pytest.fixture()
    def limited_client(self, monkeypatch):
        monkeypatch.setattr(hub, "limiter", Limiter(key_func=user_rate_limit_key, strategy="moving-window"))
        monkeypatch.setitem(config, "rate-limited", RateLimitedConfig)
        return hub.create_app("rate-limited").test_client()

    def test_ai_limit_is_per_user(self, limited_client, make_user, headers_for):
        first = headers_for(make_user("limited-a"))
        second = headers_for(make_user("limited-b"))
        allowed = int(AI_LIMIT.split("/")[0])

        for _ in range(allowed):
            assert limited_client.get("/api/ai/scores", headers=first).status_code == 200
        res = limited_client.get("/api/ai/scores", headers=first)
        assert res.status_code == 429
        assert res.get_json()["error"] == "Too many requests"

        assert limited_client.get("/api/ai/scores", headers=second).status_code == 200

    def test_health_is_exempt(self, limited_client):
        for _ in range(25):
            assert limited_client.get("/api/health").status_code == 200


class TestLogging:

    def test_extra_fields(self):
        record = logging.LogRecord("hub.test", logging.INFO, __file__, 10, "Task %s updated", (7,), None)
        record.task_id = 7
        record.auth_id = "member-1"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Task 7 updated"
        assert entry["level"] == "INFO"
        assert entry["task_id"] == 7
        assert entry["auth_id"] == "member-1"
        assert "process_id" not in entry

    def test_current_user_is_stamped(self, app, member):
        record = logging.LogRecord("hub.test", logging.INFO, __file__, 10, "Saved", (), None)
        with app.test_request_context("/api/processes"):
            g.current_user = member
            CurrentUserFilter().filter(record)
        assert record.auth_id == "member-1"

    def test_explicit_auth_id_wins(self, app, member):
        record = logging.LogRecord("hub.test", logging.INFO, __file__, 10, "Saved", (), None)
        record.auth_id = "super-1"
        with app.test_request_context("/api/processes"):
            g.current_user = member
            CurrentUserFilter().filter(record)
        assert record.auth_id == "super-1"

    def test_testing_config_logs_text(self, app):
        ours = [h for h in logging.getLogger().handlers
                if any(isinstance(f, CurrentUserFilter) for f in h.filters)]
        assert len(ours) == 1
        assert not isinstance(ours[0].formatter, JSONFormatter)
