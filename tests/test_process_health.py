"""
Process health scoring: dimensions, levels, next actions and account roll-ups.
"""

from datetime import datetime, timedelta, timezone

from hub.services.process_health import (
    calculate_health_score, dedupe_actions, has_content, health_level, weighted_account_score,
)

NOW = datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc)
NO_TASKS = {"pending_count": 0, "exported_count": 0}


def _process(**overrides):
    proc = {
        "id": 7,
        "charter": None,
        "adli_approach": None,
        "adli_deployment": None,
        "adli_learning": None,
        "adli_integration": None,
        "workflow": None,
        "baldrige_mapping_count": 0,
        "status": "draft",
        "asana_project_gid": None,
        "asana_adli_task_gids": None,
        "updated_at": NOW.isoformat(),
    }
    proc.update(overrides)
    return proc


def _documented():
    section = {"content": "Documented"}
    return _process(
        charter=section, adli_approach=section, adli_deployment=section,
        adli_learning=section, adli_integration=section, workflow=section,
        baldrige_mapping_count=2, status="approved",
        asana_project_gid="P1", asana_adli_task_gids={"approach": "T1"},
    )


def _good_metric():
    return {"has_recent_data": True, "has_comparison": True, "letci_score": 4, "entry_count": 5}


class TestCalculateHealthScore:

    def test_empty_process_only_scores_freshness(self):
        result = calculate_health_score(_process(), None, [], NO_TASKS, now=NOW)
        assert result["total"] == 15
        assert result["dimensions"]["freshness"]["score"] == 15
        assert result["level"]["label"] == "Getting Started"

    def test_next_actions_sorted_by_points_and_capped(self):
        result = calculate_health_score(_process(), None, [], NO_TASKS, now=NOW)
        actions = result["nextActions"]
        assert len(actions) == 3
        assert actions[0]["label"] == "Run an AI assessment to get ADLI maturity scores"
        assert actions[0]["points"] == 13
        assert [a["points"] for a in actions] == sorted((a["points"] for a in actions), reverse=True)

    def test_fully_documented_process(self):
        metrics = [_good_metric(), _good_metric(), _good_metric()]
        result = calculate_health_score(
            _documented(), 80, metrics, {"pending_count": 1, "exported_count": 0}, now=NOW,
        )
        dims = result["dimensions"]
        assert dims["documentation"]["score"] == 25
        assert dims["maturity"]["score"] == 20
        assert dims["measurement"]["score"] == 20
        assert dims["operations"]["score"] == 15
        assert result["total"] == 95
        assert result["level"]["label"] == "Baldrige Ready"
        assert result["nextActions"] == []

    def test_dimension_maxima(self):
        result = calculate_health_score(_process(), None, [], NO_TASKS, now=NOW)
        maxima = {name: dim["max"] for name, dim in result["dimensions"].items()}
        assert maxima == {
            "documentation": 25, "maturity": 25, "measurement": 20,
            "operations": 15, "freshness": 15,
        }

    def test_stale_process_loses_freshness(self):
        stale = _process(updated_at=(NOW - timedelta(days=75)).isoformat())
        result = calculate_health_score(stale, None, [], NO_TASKS, now=NOW)
        assert result["dimensions"]["freshness"]["score"] == 5

    def test_recent_improvement_counts_as_activity(self):
        stale = _process(updated_at=(NOW - timedelta(days=120)).isoformat())
        result = calculate_health_score(
            stale, None, [], NO_TASKS, latest_improvement=NOW - timedelta(days=10), now=NOW,
        )
        assert result["dimensions"]["freshness"]["score"] == 15

    def test_low_adli_suggests_deep_dive(self):
        proc = _documented()
        result = calculate_health_score(proc, 40, [_good_metric()], {"pending_count": 1}, now=NOW)
        labels = [a["label"] for a in result["nextActions"]]
        assert "Improve ADLI maturity through an AI deep dive" in labels

    def test_linked_but_unexported_asks_for_export(self):
        proc = _documented()
        proc["asana_adli_task_gids"] = None
        result = calculate_health_score(proc, 80, [_good_metric()], NO_TASKS, now=NOW)
        assert result["nextActions"][0]["label"] == "Export ADLI documentation to Asana"


class TestHelpers:

    def test_health_levels(self):
        assert health_level(80)["label"] == "Baldrige Ready"
        assert health_level(79)["label"] == "On Track"
        assert health_level(40)["label"] == "Developing"
        assert health_level(39)["label"] == "Getting Started"

    def test_has_content(self):
        assert has_content({"content": "text"}) is True
        assert has_content({"steps": ["a"]}) is True
        assert has_content({"content": "", "steps": []}) is False
        assert has_content(None) is False

    def test_weighted_account_score_doubles_key_processes(self):
        assert weighted_account_score([(80, True), (50, False)]) == 70
        assert weighted_account_score([(81, False), (80, False)]) == 81
        assert weighted_account_score([]) == 0

    def test_dedupe_actions_keeps_highest_points(self):
        actions = [
            {"label": "Write a charter", "points": 3},
            {"label": "Write a charter for this process", "points": 5},
            {"label": "Log recent data for linked metrics", "points": 4},
        ]
        result = dedupe_actions(actions)
        assert [a["points"] for a in result] == [5, 4]
