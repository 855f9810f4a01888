"""
Process CRUD, history, improvement journal, Baldrige mappings and readiness.
"""

from hub.models import db
from hub.models.process import BaldrigeQuestion, Category, ProcessAdliScore, ReadinessSnapshot


class TestProcessCrud:

    def test_create_and_get(self, client, member_headers):
        res = client.post("/api/processes", json={
            "name": "Budget Planning", "owner_email": "Mary@NIA.org", "process_type": "key",
        }, headers=member_headers)
        assert res.status_code == 201
        created = res.get_json()
        assert created["owner_email"] == "mary@nia.org"
        assert created["is_key"] is True

        fetched = client.get(f"/api/processes/{created['id']}", headers=member_headers).get_json()
        assert fetched["name"] == "Budget Planning"
        assert "charter" in fetched

    def test_create_requires_name(self, client, member_headers):
        res = client.post("/api/processes", json={"name": "  "}, headers=member_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "name is required"

    def test_invalid_status(self, client, process, member_headers):
        res = client.patch(f"/api/processes/{process.id}", json={"status": "done"},
                           headers=member_headers)
        assert res.status_code == 400
        assert res.get_json()["error"].startswith("Invalid status")

    def test_missing_process(self, client, member_headers):
        res = client.get("/api/processes/999", headers=member_headers)
        assert res.status_code == 404
        assert res.get_json() == {"error": "Process not found"}

    def test_list_has_health_and_no_content(self, client, process, member_headers):
        db.session.add(ProcessAdliScore(
            process_id=process.id, approach_score=70, deployment_score=60,
            learning_score=45, integration_score=65, overall_score=60,
        ))
        db.session.commit()
        rows = client.get("/api/processes", headers=member_headers).get_json()
        assert len(rows) == 1
        row = rows[0]
        assert row["adli_score"] == 60
        assert isinstance(row["health_score"], int)
        assert row["health_level"]
        assert "charter" not in row

    def test_health_endpoint(self, client, process, member_headers):
        data = client.get(f"/api/processes/{process.id}/health", headers=member_headers).get_json()
        assert set(data["dimensions"]) == {
            "documentation", "maturity", "measurement", "operations", "freshness",
        }
        assert len(data["nextActions"]) <= 3


class TestHistory:

    def test_content_update_writes_history(self, client, process, member_headers):
        res = client.patch(f"/api/processes/{process.id}", json={
            "charter": {"content": "Purpose"}, "adli_approach": {"content": "Steps"}, "status": "approved",
        }, headers=member_headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"

        history = client.get(f"/api/processes/{process.id}/history", headers=member_headers).get_json()
        assert len(history) == 1
        assert history[0]["change_description"] == "Updated Charter, Approach by Mary Member"

    def test_scalar_only_update_has_no_history(self, client, process, member_headers):
        client.patch(f"/api/processes/{process.id}", json={"description": "x"}, headers=member_headers)
        assert client.get(f"/api/processes/{process.id}/history", headers=member_headers).get_json() == []


class TestDelete:

    def test_members_cannot_delete(self, client, process, member_headers):
        res = client.delete(f"/api/processes/{process.id}", headers=member_headers)
        assert res.status_code == 403

    def test_admin_deletes(self, client, process, admin_headers):
        res = client.delete(f"/api/processes/{process.id}", headers=admin_headers)
        assert res.status_code == 204
        assert client.get(f"/api/processes/{process.id}", headers=admin_headers).status_code == 404


class TestCategories:

    def test_sorted(self, client, member_headers):
        db.session.add_all([
            Category(name="ops", display_name="Operations", sort_order=2),
            Category(name="lead", display_name="Leadership", sort_order=1),
        ])
        db.session.commit()
        data = client.get("/api/categories", headers=member_headers).get_json()
        assert [c["display_name"] for c in data] == ["Leadership", "Operations"]


class TestImprovements:

    def test_lifecycle(self, client, process, member_headers):
        res = client.post("/api/improvements", json={
            "process_id": process.id, "section_affected": "approach", "title": "Add intake form",
        }, headers=member_headers)
        assert res.status_code == 201
        improvement = res.get_json()
        assert improvement["committed_by"] == "Mary Member"
        assert improvement["status"] == "committed"

        res = client.patch("/api/improvements", json={
            "id": improvement["id"], "status": "implemented", "impact_assessed": True,
        }, headers=member_headers)
        updated = res.get_json()
        assert updated["implemented_date"] is not None
        assert updated["impact_assessment_date"] is not None

        listed = client.get(f"/api/improvements?processId={process.id}", headers=member_headers).get_json()
        assert [i["title"] for i in listed] == ["Add intake form"]

        assert client.delete(f"/api/improvements?id={improvement['id']}",
                             headers=member_headers).get_json() == {"success": True}
        assert client.get(f"/api/improvements?processId={process.id}", headers=member_headers).get_json() == []

    def test_validation(self, client, process, member_headers):
        res = client.post("/api/improvements", json={"process_id": process.id}, headers=member_headers)
        assert res.get_json()["error"] == "process_id, section_affected, and title are required"
        res = client.post("/api/improvements", json={
            "process_id": process.id, "section_affected": "budget", "title": "x",
        }, headers=member_headers)
        assert res.status_code == 400
        assert client.get("/api/improvements", headers=member_headers).status_code == 400

    def test_bad_status(self, client, process, member_headers):
        created = client.post("/api/improvements", json={
            "process_id": process.id, "section_affected": "workflow", "title": "x",
        }, headers=member_headers).get_json()
        res = client.patch("/api/improvements", json={"id": created["id"], "status": "maybe"},
                           headers=member_headers)
        assert res.status_code == 400

    def test_missing_improvement(self, client, member_headers):
        res = client.delete("/api/improvements?id=404", headers=member_headers)
        assert res.status_code == 404
        assert res.get_json()["error"] == "Improvement not found"


class TestMappings:

    def _question(self):
        question = BaldrigeQuestion(item_code="6.1", question_code="6.1a(1)",
                                    question_text="How do you design work processes?")
        db.session.add(question)
        db.session.commit()
        return question

    def test_admin_maps_process(self, client, process, admin_headers, member_headers):
        question = self._question()
        res = client.post("/api/criteria/mappings", json={
            "process_id": process.id, "question_id": question.id,
        }, headers=admin_headers)
        assert res.status_code == 201
        assert res.get_json()["coverage"] == "primary"

        rows = client.get(f"/api/criteria/mappings?processId={process.id}",
                          headers=member_headers).get_json()
        assert rows[0]["question"]["question_code"] == "6.1a(1)"

        res = client.post("/api/criteria/mappings", json={
            "process_id": process.id, "question_id": question.id,
        }, headers=admin_headers)
        assert res.status_code == 409
        assert res.get_json()["error"] == "This process is already mapped to this question"

    def test_members_cannot_write(self, client, process, member_headers):
        question = self._question()
        res = client.post("/api/criteria/mappings", json={
            "process_id": process.id, "question_id": question.id,
        }, headers=member_headers)
        assert res.status_code == 403

    def test_update_and_delete(self, client, process, admin_headers):
        question = self._question()
        mapping = client.post("/api/criteria/mappings", json={
            "process_id": process.id, "question_id": question.id,
        }, headers=admin_headers).get_json()

        res = client.patch("/api/criteria/mappings", json={"id": mapping["id"], "coverage": "partial"},
                           headers=admin_headers)
        assert res.get_json()["coverage"] == "partial"
        res = client.patch("/api/criteria/mappings", json={"id": mapping["id"], "coverage": "most"},
                           headers=admin_headers)
        assert res.status_code == 400

        assert client.delete(f"/api/criteria/mappings?id={mapping['id']}",
                             headers=admin_headers).status_code == 200
        assert client.delete(f"/api/criteria/mappings?id={mapping['id']}",
                             headers=admin_headers).status_code == 404


class TestReadiness:

    def test_summary(self, client, process, member_headers):
        data = client.get("/api/readiness", headers=member_headers).get_json()
        current = data["current"]
        assert current["process_count"] == 1
        assert current["ready_count"] == 0
        assert "Uncategorized" in current["category_scores"]
        assert set(current["dimension_scores"]) == {
            "documentation", "maturity", "measurement", "operations", "freshness",
        }
        assert data["snapshots"] == []

    def test_snapshot_upserts_per_day(self, client, process, member_headers):
        first = client.post("/api/readiness", headers=member_headers)
        assert first.status_code == 201
        client.post("/api/readiness", headers=member_headers)
        assert ReadinessSnapshot.query.count() == 1

        history = client.get("/api/readiness?history=only", headers=member_headers).get_json()
        assert len(history) == 1
        assert history[0]["process_count"] == 1
