"""
Tests: Review HTTP API — deliverables, revision workflows, decisions,
quality checklists, templates and health probes.

Identity headers stand in for the upstream authentication layer.
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session


# ── Helpers ──────────────────────────────────────────────────────────────────


def _headers(user_id, role, name=None):
    return {
        "X-User-Id": user_id,
        "X-User-Name": name or user_id.title(),
        "X-User-Email": f"{user_id}@example.com",
        "X-User-Role": role,
    }


MANAGER = _headers("mia", "manager")
EMPLOYEE = _headers("alice", "employee")
CLIENT = _headers("carl", "client")

LEVELS = [
    {"level_number": 1, "name": "Manager sign-off", "approver_type": "manager"},
    {"level_number": 2, "name": "Client acceptance", "approver_type": "client"},
]


def _create_deliverable(client, tenant_id, project_id=1, title="Design Spec"):
    res = client.post(
        f"/api/v1/projects/{project_id}/deliverables",
        json={"tenant_id": tenant_id, "title": title, "deliverable_type": "document"},
        headers=EMPLOYEE,
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _create_workflow(client, deliverable_id, **body):
    payload = {"levels": LEVELS}
    payload.update(body)
    res = client.post(
        f"/api/v1/deliverables/{deliverable_id}/revision-workflow",
        json=payload,
        headers=MANAGER,
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _decide(client, deliverable_id, wf, level_number, action, headers, **body):
    level_id = next(lvl["id"] for lvl in wf["levels"] if lvl["level_number"] == level_number)
    payload = {"action": action}
    payload.update(body)
    return client.post(
        f"/api/v1/deliverables/{deliverable_id}/versions/{wf['version_id']}"
        f"/revision-workflow/levels/{level_id}/decision",
        json=payload,
        headers=headers,
    )


@pytest.fixture()
def review(client, default_tenant):
    """A deliverable with a two-level workflow on version 1."""
    d = _create_deliverable(client, default_tenant.id)
    wf = _create_workflow(client, d["id"])
    return d, wf


# ── Deliverables & versions ──────────────────────────────────────────────────


class TestDeliverableEndpoints:
    def test_create_and_get_deliverable(self, client, default_tenant):
        d = _create_deliverable(client, default_tenant.id, project_id=4)
        assert d["project_id"] == 4
        assert d["created_by"] == "alice"
        assert d["versions"] == []

        res = client.get(f"/api/v1/deliverables/{d['id']}")
        assert res.status_code == 200
        assert res.get_json()["title"] == "Design Spec"

    def test_create_deliverable_requires_title(self, client, default_tenant):
        res = client.post(
            "/api/v1/projects/1/deliverables", json={"tenant_id": default_tenant.id},
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_create_deliverable_non_string_title_400(self, client, default_tenant):
        res = client.post(
            "/api/v1/projects/1/deliverables",
            json={"tenant_id": default_tenant.id, "title": ["Design Spec"]},
        )
        assert res.status_code == 400
        assert res.get_json()["details"] == {"title": "list"}

    def test_create_deliverable_requires_tenant(self, client):
        res = client.post("/api/v1/projects/1/deliverables", json={"title": "X"})
        assert res.status_code == 400

    def test_versions_are_numbered_monotonically(self, client, default_tenant):
        d = _create_deliverable(client, default_tenant.id)
        numbers = []
        for _ in range(3):
            res = client.post(f"/api/v1/deliverables/{d['id']}/versions", json={"change_log": "edit"})
            assert res.status_code == 201
            numbers.append(res.get_json()["version_number"])
        assert numbers == [1, 2, 3]

    def test_create_version_non_string_fields_400(self, client, default_tenant):
        d = _create_deliverable(client, default_tenant.id)
        for body in ({"change_log": ["edit"]}, {"file_url": {"key": "v1.pdf"}}):
            res = client.post(f"/api/v1/deliverables/{d['id']}/versions", json=body)
            assert res.status_code == 400
        assert client.get(f"/api/v1/deliverables/{d['id']}").get_json()["versions"] == []

    def test_unknown_deliverable_404(self, client):
        res = client.get("/api/v1/deliverables/9999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ── Workflows ────────────────────────────────────────────────────────────────


class TestWorkflowEndpoints:
    def test_create_workflow_creates_initial_version(self, review):
        _, wf = review
        assert wf["status"] == "draft"
        assert wf["version"]["version_number"] == 1
        assert wf["created_by"] == "Mia"

    def test_second_workflow_conflicts(self, client, review):
        d, _ = review
        res = client.post(
            f"/api/v1/deliverables/{d['id']}/revision-workflow", json={"levels": LEVELS}, headers=MANAGER,
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_invalid_levels_400(self, client, default_tenant):
        d = _create_deliverable(client, default_tenant.id)
        res = client.post(
            f"/api/v1/deliverables/{d['id']}/revision-workflow",
            json={"levels": [{"name": "X", "approver_type": "boss"}]},
        )
        assert res.status_code == 400
        assert "approver_type" in res.get_json()["details"]

    @pytest.mark.parametrize("body", [
        {"workflow_type": ["structured"], "levels": LEVELS},
        {"levels": [{"name": "X", "approver_type": ["manager"]}]},
        {"levels": [{"name": 5, "approver_type": "manager"}]},
        {"levels": [{"name": "X", "approver_type": "manager", "approver_email": 42}]},
        {"levels": ["Manager sign-off"]},
    ])
    def test_non_string_workflow_fields_400(self, client, default_tenant, body):
        d = _create_deliverable(client, default_tenant.id)
        res = client.post(f"/api/v1/deliverables/{d['id']}/revision-workflow", json=body, headers=MANAGER)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_get_workflow_by_version(self, client, review):
        d, wf = review
        res = client.get(f"/api/v1/deliverables/{d['id']}/versions/{wf['version_id']}/revision-workflow")
        assert res.status_code == 200
        assert res.get_json()["id"] == wf["id"]

    def test_get_workflow_wrong_deliverable_404(self, client, review, default_tenant):
        _, wf = review
        other = _create_deliverable(client, default_tenant.id, title="Other")
        res = client.get(f"/api/v1/deliverables/{other['id']}/versions/{wf['version_id']}/revision-workflow")
        assert res.status_code == 404

    def test_deliverable_review_snapshot(self, client, review):
        d, wf = review
        res = client.get(f"/api/v1/deliverables/{d['id']}/revision-workflow")
        assert res.status_code == 200
        body = res.get_json()
        assert body["versions"][0]["revision_workflow"]["id"] == wf["id"]

    def test_full_approval_flow(self, client, review):
        d, wf = review
        res = _decide(client, d["id"], wf, 1, "approve", MANAGER, comment="OK for client")
        assert res.status_code == 200
        wf = res.get_json()
        assert wf["current_level"] == 2

        res = _decide(client, d["id"], wf, 2, "approve", CLIENT)
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"
        assert res.get_json()["version"]["status"] == "approved"

    def test_decision_on_finalized_workflow_409(self, client, review):
        d, wf = review
        wf = _decide(client, d["id"], wf, 1, "reject", MANAGER).get_json()
        assert wf["status"] == "rejected"
        res = _decide(client, d["id"], wf, 1, "approve", MANAGER)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current_state"] == "rejected"

    def test_capability_denied_403(self, client, review):
        d, wf = review
        res = _decide(client, d["id"], wf, 1, "approve", EMPLOYEE)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_database_failure_500(self, client, review, monkeypatch):
        d, wf = review

        def _failing_commit(self):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(Session, "commit", _failing_commit)
        res = _decide(client, d["id"], wf, 1, "approve", MANAGER)
        monkeypatch.undo()
        assert res.status_code == 500
        assert res.get_json()["code"] == "ERR_DATABASE"

    def test_request_revision_resets(self, client, review):
        d, wf = review
        wf = _decide(client, d["id"], wf, 1, "approve", MANAGER).get_json()
        res = _decide(client, d["id"], wf, 2, "request_revision", CLIENT, comment="Logo outdated")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "revision_requested"
        assert body["revision_round"] == 2
        assert body["current_level"] == 1
        assert body["revisions"][0]["reason"] == "Logo outdated"

    def test_bad_action_400(self, client, review):
        d, wf = review
        res = _decide(client, d["id"], wf, 1, "veto", MANAGER)
        assert res.status_code == 400

    @pytest.mark.parametrize("body", [
        {"action": ["approve"]},
        {"action": {"type": "approve"}},
        {"action": "approve", "comment": ["fine"]},
        {"action": "request_revision", "delegate_to": ["alice"]},
    ])
    def test_non_string_decision_fields_400(self, client, review, body):
        d, wf = review
        rest = {k: v for k, v in body.items() if k != "action"}
        res = _decide(client, d["id"], wf, 1, body["action"], MANAGER, **rest)
        assert res.status_code == 400
        snapshot = client.get(f"/api/v1/deliverables/{d['id']}/revision-workflow").get_json()
        assert snapshot["versions"][0]["revision_workflow"]["status"] == "draft"

    def test_blank_delegate_400(self, client, review):
        d, wf = review
        res = _decide(client, d["id"], wf, 1, "request_revision", MANAGER, delegate_to="  ")
        assert res.status_code == 400

    def test_missing_identity_400(self, client, review):
        d, wf = review
        res = _decide(client, d["id"], wf, 1, "approve", {"X-User-Role": "manager"})
        assert res.status_code == 400

    def test_decision_with_wrong_deliverable_404(self, client, review, default_tenant):
        _, wf = review
        other = _create_deliverable(client, default_tenant.id, title="Other")
        res = _decide(client, other["id"], wf, 1, "approve", MANAGER)
        assert res.status_code == 404
        assert "ApprovalLevel" in res.get_json()["error"]

    def test_project_listing(self, client, review, default_tenant):
        d, wf = review
        _decide(client, d["id"], wf, 1, "approve", MANAGER)
        res = client.get(f"/api/v1/projects/1/revision-workflows?tenant_id={default_tenant.id}")
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["by_status"]["in_review"] == 1
        assert body["items"][0]["deliverable"]["id"] == d["id"]

    def test_project_listing_bad_tenant_param(self, client):
        res = client.get("/api/v1/projects/1/revision-workflows?tenant_id=abc")
        assert res.status_code == 400


# ── Quality checklist & templates ────────────────────────────────────────────


class TestQualityChecklistEndpoints:
    def _template(self, client, tenant_id):
        res = client.post("/api/v1/quality-checklist-templates", json={
            "tenant_id": tenant_id,
            "name": "Doc QA",
            "items": [
                {"name": "Structure", "category": "form"},
                {"name": "Accuracy", "category": "content"},
            ],
        })
        assert res.status_code == 201, res.get_json()
        return res.get_json()

    def test_templates_create_and_list(self, client, default_tenant):
        template = self._template(client, default_tenant.id)
        assert [i["name"] for i in template["items"]] == ["Structure", "Accuracy"]
        res = client.get(f"/api/v1/quality-checklist-templates?tenant_id={default_tenant.id}")
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

    def test_templates_list_requires_tenant(self, client):
        assert client.get("/api/v1/quality-checklist-templates").status_code == 400

    def test_checklist_lifecycle(self, client, default_tenant):
        template = self._template(client, default_tenant.id)
        d = _create_deliverable(client, default_tenant.id)
        _create_workflow(client, d["id"], checklist_template_id=template["id"])

        res = client.get(f"/api/v1/deliverables/{d['id']}/quality-checklist")
        assert res.status_code == 200
        checklist = res.get_json()["checklist"]
        assert checklist["status"] == "pending"

        for item, score in zip(checklist["items"], (80, 60)):
            res = client.post(
                f"/api/v1/deliverables/{d['id']}/quality-checklist",
                json={"check_id": item["id"], "status": "passed", "score": score},
                headers=EMPLOYEE,
            )
            assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "passed"
        assert body["overall_score"] == pytest.approx(70.0)

        # The checklist is surfaced in the workflow snapshot; the workflow is untouched.
        snapshot = client.get(f"/api/v1/deliverables/{d['id']}/revision-workflow").get_json()
        wf = snapshot["versions"][0]["revision_workflow"]
        assert wf["checklist"]["status"] == "passed"
        assert wf["status"] == "draft"

    def test_checklist_none_without_workflow(self, client, default_tenant):
        d = _create_deliverable(client, default_tenant.id)
        res = client.get(f"/api/v1/deliverables/{d['id']}/quality-checklist")
        assert res.status_code == 200
        assert res.get_json()["checklist"] is None

    def test_update_check_validation(self, client, default_tenant):
        template = self._template(client, default_tenant.id)
        d = _create_deliverable(client, default_tenant.id)
        wf = _create_workflow(client, d["id"], checklist_template_id=template["id"])
        check_id = wf["checklist"]["items"][0]["id"]

        res = client.post(
            f"/api/v1/deliverables/{d['id']}/quality-checklist",
            json={"check_id": check_id, "status": "passed", "score": 101},
        )
        assert res.status_code == 400
        res = client.post(
            f"/api/v1/deliverables/{d['id']}/quality-checklist",
            json={"status": "passed"},
        )
        assert res.status_code == 400
        res = client.post(
            f"/api/v1/deliverables/{d['id']}/quality-checklist",
            json={"check_id": check_id, "status": ["passed"]},
        )
        assert res.status_code == 400
        res = client.post(
            f"/api/v1/deliverables/{d['id']}/quality-checklist",
            json={"check_id": check_id, "status": "passed", "notes": {"text": "ok"}},
        )
        assert res.status_code == 400

    def test_template_non_string_name_400(self, client, default_tenant):
        res = client.post("/api/v1/quality-checklist-templates", json={
            "tenant_id": default_tenant.id, "name": 7, "items": [{"name": "Structure"}],
        })
        assert res.status_code == 400
        res = client.post("/api/v1/quality-checklist-templates", json={
            "tenant_id": default_tenant.id, "name": "Doc QA", "items": [{"name": ["Structure"]}],
        })
        assert res.status_code == 400

    def test_update_check_wrong_deliverable_404(self, client, default_tenant):
        template = self._template(client, default_tenant.id)
        d = _create_deliverable(client, default_tenant.id)
        other = _create_deliverable(client, default_tenant.id, title="Other")
        wf = _create_workflow(client, d["id"], checklist_template_id=template["id"])
        res = client.post(
            f"/api/v1/deliverables/{other['id']}/quality-checklist",
            json={"check_id": wf["checklist"]["items"][0]["id"], "status": "passed"},
        )
        assert res.status_code == 404


# ── Health & middleware ──────────────────────────────────────────────────────


class TestHealthAndMiddleware:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["schema"]["status"] == "ok"

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_unknown_route_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"

    def test_method_not_allowed(self, client):
        assert client.delete("/api/v1/health/ready").status_code == 405
