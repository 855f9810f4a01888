"""
ADLI scores, applying coach suggestions, the coach (streamed and JSON),
suggested metrics and the LLM gateway.
"""

from unittest.mock import MagicMock

import pytest

from hub.ai.gateway import AnthropicProvider, LLMGateway, LocalStubProvider
from hub.ai.parsers import parse_adli_scores
from hub.ai.prompts import build_system_prompt
from hub.models import db
from hub.models.metric import Metric
from hub.models.process import ProcessAdliScore, ProcessHistory, ProcessImprovement
from hub.models.task import ProcessTask

SCORES = {"approach": 70, "deployment": 62, "learning": 45, "integration": 65}


class TestScores:

    def test_save_computes_overall(self, client, process, member_headers):
        res = client.post("/api/ai/scores", json={"processId": process.id, **SCORES}, headers=member_headers)
        assert res.get_json() == {"success": True, "overall": 61}

        row = client.get(f"/api/ai/scores?processId={process.id}", headers=member_headers).get_json()
        assert row["overall_score"] == 61
        assert row["learning_score"] == 45

    def test_upsert_keeps_one_row(self, client, process, member_headers):
        client.post("/api/ai/scores", json={"processId": process.id, **SCORES}, headers=member_headers)
        client.post("/api/ai/scores", json={"processId": process.id, "approach": 80, "deployment": 80,
                                            "learning": 80, "integration": 81}, headers=member_headers)
        assert ProcessAdliScore.query.count() == 1
        assert ProcessAdliScore.query.one().overall_score == 80

    def test_requires_all_scores(self, client, process, member_headers):
        res = client.post("/api/ai/scores", json={"processId": process.id, "approach": 70},
                          headers=member_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "processId and all four scores are required"

    def test_unknown_process(self, client, member_headers):
        res = client.post("/api/ai/scores", json={"processId": 999, **SCORES}, headers=member_headers)
        assert res.status_code == 404

    def test_unscored_process_is_null(self, client, process, member_headers):
        assert client.get(f"/api/ai/scores?processId={process.id}", headers=member_headers).get_json() is None

    def test_list_includes_process(self, client, process, member_headers):
        client.post("/api/ai/scores", json={"processId": process.id, **SCORES}, headers=member_headers)
        (row,) = client.get("/api/ai/scores", headers=member_headers).get_json()
        assert row["process"]["name"] == "Employee Onboarding"
        assert row["process"]["category_display_name"] is None


class TestApply:

    def test_apply_records_history_and_improvement(self, client, process, member_headers):
        res = client.post("/api/ai/apply", json={
            "processId": process.id, "field": "adli_approach", "content": "Documented steps",
            "suggestionTitle": "Define the approach",
            "tasks": [{"title": "Write SOP", "pdcaSection": "plan", "adliDimension": "approach"}],
        }, headers=member_headers)
        assert res.get_json() == {"success": True, "field": "ADLI: Approach", "tasksQueued": 1}
        assert process.adli_approach == {"content": "Documented steps"}

        history = ProcessHistory.query.filter_by(process_id=process.id).one()
        assert history.change_description == "AI updated ADLI: Approach section (previous version saved)"
        improvement = ProcessImprovement.query.filter_by(process_id=process.id).one()
        assert improvement.change_type == "addition"
        assert improvement.section_affected == "approach"
        assert improvement.title == "Define the approach"

        task = ProcessTask.query.one()
        assert task.title == "Write SOP"
        assert task.source_detail == "Define the approach"
        assert task.status == "pending"

    def test_existing_content_is_modification(self, client, process, member_headers):
        process.charter = {"content": "Old", "sections": ["purpose"]}
        client.post("/api/ai/apply", json={"processId": process.id, "field": "charter", "content": "New"},
                    headers=member_headers)
        assert process.charter == {"content": "New", "sections": ["purpose"]}
        improvement = ProcessImprovement.query.one()
        assert improvement.change_type == "modification"
        assert improvement.before_snapshot == {"content": "Old", "sections": ["purpose"]}

    def test_bad_tasks_do_not_fail_apply(self, client, process, member_headers):
        res = client.post("/api/ai/apply", json={
            "processId": process.id, "field": "charter", "content": "New",
            "tasks": [{"title": "No section"}],
        }, headers=member_headers)
        assert res.get_json()["tasksQueued"] == 0
        assert ProcessTask.query.count() == 0

    def test_field_allow_list(self, client, process, member_headers):
        res = client.post("/api/ai/apply", json={"processId": process.id, "field": "workflow", "content": "x"},
                          headers=member_headers)
        assert res.status_code == 400
        assert res.get_json()["error"].startswith('Field "workflow" is not allowed')
        res = client.post("/api/ai/apply", json={"processId": process.id, "field": "charter"},
                          headers=member_headers)
        assert res.get_json()["error"] == "processId, field, and content are required"


class TestChat:

    def test_streams_stub_scores(self, client, process, member_headers):
        res = client.post("/api/ai/chat", json={
            "processId": process.id,
            "messages": [{"role": "user", "content": "Please assess this process"}],
        }, headers=member_headers)
        assert res.status_code == 200
        assert res.mimetype == "text/plain"
        scores, cleaned = parse_adli_scores(res.get_data(as_text=True))
        assert scores == {"approach": 50, "deployment": 40, "learning": 30, "integration": 35}
        assert cleaned.startswith("Approach is documented")

    def test_plain_guidance(self, client, process, member_headers):
        res = client.post("/api/ai/chat", json={
            "processId": process.id, "messages": [{"role": "user", "content": "Hello"}],
        }, headers=member_headers)
        assert res.get_data(as_text=True) == "Here is some guidance on strengthening this process.\n"

    def test_requires_messages(self, client, process, member_headers):
        res = client.post("/api/ai/chat", json={"processId": process.id}, headers=member_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "processId and messages array are required"

    def test_json_reply_splits_blocks(self, client, process, member_headers):
        res = client.post("/api/ai/chat", json={
            "processId": process.id, "stream": False,
            "messages": [{"role": "user", "content": "Please assess this process"}],
        }, headers=member_headers)
        data = res.get_json()
        assert data["scores"] == {"approach": 50, "deployment": 40, "learning": 30, "integration": 35}
        assert data["message"] == "Approach is documented; Learning needs a review cadence and measures."
        assert data["suggestions"] == []
        assert data["incompleteBlock"] is None

    def test_json_reply_drops_unfinished_block(self, client, process, member_headers, monkeypatch):
        reply = (
            'Plan:\n```proposed-tasks\n[{"title": "Add exit survey", "pdcaSection": "evaluate"}]\n```\n'
            'Next\n```metric-suggestions\n[{"name": '
        )
        monkeypatch.setattr(LocalStubProvider, "_generate_stub_response", staticmethod(lambda msg: reply))
        data = client.post("/api/ai/chat", json={
            "processId": process.id, "stream": False, "messages": [{"role": "user", "content": "Tasks?"}],
        }, headers=member_headers).get_json()
        assert data["proposedTasks"] == [{"title": "Add exit survey", "pdcaSection": "evaluate"}]
        assert data["metricSuggestions"] == []
        assert data["incompleteBlock"] == "metrics"
        assert data["message"] == "Plan:\nNext"


class TestMetricActions:

    @pytest.fixture()
    def metric(self):
        row = Metric(name="Time to Productivity", cadence="quarterly", unit="days")
        db.session.add(row)
        db.session.commit()
        return row

    def _post(self, client, headers, **body):
        return client.post("/api/ai/metrics", json=body, headers=headers)

    def test_link_existing(self, client, process, metric, member_headers):
        res = self._post(client, member_headers, processId=process.id, action="link", metricId=metric.id)
        assert res.get_json() == {"success": True, "action": "linked", "metricId": metric.id,
                                  "metricName": "Time to Productivity"}
        assert [p.id for p in metric.processes] == [process.id]

        again = self._post(client, member_headers, processId=process.id, action="link", metricId=metric.id)
        assert again.status_code == 409
        assert again.get_json()["error"] == "This metric is already linked to this process"

    def test_create_and_link(self, client, process, member_headers):
        res = self._post(client, member_headers, processId=process.id, action="create", metric={
            "name": "Onboarding Satisfaction", "unit": "score", "cadence": "quarterly",
            "targetValue": 4.5, "isHigherBetter": None,
        })
        data = res.get_json()
        assert (data["action"], data["metricName"]) == ("created", "Onboarding Satisfaction")
        metric = db.session.get(Metric, data["metricId"])
        assert metric.target_value == 4.5
        assert metric.is_higher_better is True
        assert [p.id for p in metric.processes] == [process.id]

    def test_validation(self, client, process, metric, member_headers):
        cases = [
            ({"action": "link"}, "processId and action are required"),
            ({"processId": process.id, "action": "link"}, "metricId is required for link action"),
            ({"processId": process.id, "action": "create", "metric": {"name": "X"}},
             "metric object with name, unit, and cadence is required for create action"),
            ({"processId": process.id, "action": "create",
              "metric": {"name": "X", "unit": "hours", "cadence": "annual"}},
             "Invalid unit. Must be one of: %, count, currency, days, rate, score"),
            ({"processId": process.id, "action": "delete"}, "Invalid action. Use 'link' or 'create'."),
        ]
        for body, error in cases:
            res = self._post(client, member_headers, **body)
            assert res.status_code == 400, body
            assert res.get_json()["error"] == error
        assert Metric.query.count() == 1

    def test_unknown_metric(self, client, process, member_headers):
        res = self._post(client, member_headers, processId=process.id, action="link", metricId=999)
        assert res.status_code == 404


class TestGateway:

    def test_provider_selection(self):
        assert isinstance(LLMGateway().provider, LocalStubProvider)
        gateway = LLMGateway(api_key="sk-test", model="claude-test", max_tokens=100)
        assert isinstance(gateway.provider, AnthropicProvider)
        assert gateway.model == "claude-test"

    def test_anthropic_stream(self):
        gateway = LLMGateway(api_key="sk-test", model="claude-test", max_tokens=100)
        stream = MagicMock()
        stream.__enter__.return_value.text_stream = iter(["Hel", "lo"])
        client = MagicMock()
        client.messages.stream.return_value = stream
        gateway.provider._client = client

        assert gateway.chat("system", [{"role": "user", "content": "hi"}]) == "Hello"
        kwargs = client.messages.stream.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["max_tokens"] == 100
        assert kwargs["system"] == "system"

    def test_system_prompt_includes_process_and_metrics(self):
        prompt = build_system_prompt(
            {"name": "Employee Onboarding", "status": "draft"},
            "Workforce",
            [{"name": "Time to Hire", "cadence": "quarterly", "unit": "days",
              "target_value": 30, "last_value": 42}],
        )
        assert "Employee Onboarding" in prompt
        assert "**Time to Hire** (quarterly): 42 days" in prompt
        assert "Target: 30 days" in prompt
