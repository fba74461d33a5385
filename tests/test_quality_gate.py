"""
Tests: Quality Gate — check updates, checklist recomputation, templates.

Covers:
    - pass condition over required, applicable checks (n_a excluded)
    - failed / in_progress / pending precedence
    - mean score over scored checks only
    - validation and ownership checks before any write
    - idempotent recomputation and write-once passed_at / failed_at
    - status-change events reaching the sink
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db as _db
from app.models.audit import AuditLog
from app.models.quality import QualityCheck, QualityChecklist
from app.models.tenant import Tenant
from app.services import deliverable_service, quality_gate_service
from app.services.quality_gate_service import compute_checklist_outcome, recompute_checklist
from app.services.review_capabilities import ReviewCapabilities
from app.services.review_events import NullEventSink
from app.services.revision_workflow_service import RevisionWorkflowService


# ── Helpers ──────────────────────────────────────────────────────────────────


class RecordingSink:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


def _template(tenant_id, items=None):
    items = items or [
        {"name": "Spelling", "category": "form"},
        {"name": "Numbers reconcile", "category": "content"},
        {"name": "Branding", "category": "form", "is_required": False},
    ]
    return quality_gate_service.create_template(tenant_id, "Document QA", items)


def _workflow_with_checklist(version, tenant_id, items=None):
    template = _template(tenant_id, items)
    svc = RevisionWorkflowService(capabilities=ReviewCapabilities.permissive(), sink=NullEventSink())
    return svc.create_workflow(
        version["id"],
        levels=[{"name": "Review", "approver_type": "manager"}],
        checklist_template_id=template["id"],
    )


def _check(checklist, name):
    return next(i for i in checklist["items"] if i["name"] == name)


def _c(status, required=True, score=None):
    return SimpleNamespace(status=status, is_required=required, score=score)


# ── Pure outcome ─────────────────────────────────────────────────────────────


class TestChecklistOutcome:
    def test_all_required_passed_is_passed(self):
        _, status = compute_checklist_outcome([_c("passed"), _c("passed"), _c("pending", required=False)])
        assert status == "passed"

    def test_required_na_is_excluded_from_pass_condition(self):
        _, status = compute_checklist_outcome([_c("passed"), _c("n_a")])
        assert status == "passed"

    def test_only_na_checks_never_pass(self):
        _, status = compute_checklist_outcome([_c("n_a"), _c("n_a")])
        assert status == "pending"

    def test_passed_takes_precedence_over_failed_optional(self):
        _, status = compute_checklist_outcome([_c("passed"), _c("failed", required=False)])
        assert status == "passed"

    def test_required_failed_is_not_passed(self):
        _, status = compute_checklist_outcome([_c("passed"), _c("failed")])
        assert status == "failed"

    def test_optional_passed_checks_do_not_block_pass(self):
        _, status = compute_checklist_outcome([_c("passed"), _c("passed"), _c("passed", required=False)])
        assert status == "passed"

    def test_failed_beats_in_progress(self):
        _, status = compute_checklist_outcome([_c("failed"), _c("in_progress"), _c("passed")])
        assert status == "failed"

    def test_in_progress_beats_pending(self):
        _, status = compute_checklist_outcome([_c("in_progress"), _c("pending")])
        assert status == "in_progress"

    def test_mean_score_ignores_unscored(self):
        score, _ = compute_checklist_outcome([_c("passed", score=80), _c("passed", score=90), _c("pending")])
        assert score == pytest.approx(85.0)

    def test_no_scores_gives_none(self):
        score, status = compute_checklist_outcome([])
        assert score is None
        assert status == "pending"


# ── update_check ─────────────────────────────────────────────────────────────


class TestUpdateCheck:
    def test_passing_all_required_checks_passes_checklist(self, version, default_tenant, actor):
        wf = _workflow_with_checklist(version, default_tenant.id)
        did = version["deliverable_id"]
        checklist = wf["checklist"]
        assert checklist["status"] == "pending"

        checker = actor("Quinn", "employee")
        result = quality_gate_service.update_check(
            did, _check(checklist, "Spelling")["id"], "passed", score=80, checker=checker,
        )
        assert result["status"] == "pending"

        result = quality_gate_service.update_check(
            did, _check(checklist, "Numbers reconcile")["id"], "passed", score=90,
            evidence=["s3://evidence/recon.xlsx"], notes="Tied out", checker=checker,
        )
        assert result["status"] == "passed"
        assert result["overall_score"] == pytest.approx(85.0)
        assert result["passed_at"] is not None
        item = _check(result, "Numbers reconcile")
        assert item["checked_by"] == "Quinn"
        assert item["checked_by_id"] == "quinn"
        assert item["evidence"] == ["s3://evidence/recon.xlsx"]
        assert item["notes"] == "Tied out"

    def test_failed_check_fails_checklist(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        result = quality_gate_service.update_check(
            version["deliverable_id"], _check(wf["checklist"], "Spelling")["id"], "failed",
        )
        assert result["status"] == "failed"
        assert result["failed_at"] is not None

    def test_in_progress_check_moves_checklist_in_progress(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        result = quality_gate_service.update_check(
            version["deliverable_id"], _check(wf["checklist"], "Spelling")["id"], "in_progress",
        )
        assert result["status"] == "in_progress"

    @pytest.mark.parametrize("score", [-1, 100.5, 150, "high", True])
    def test_invalid_score_rejected_before_write(self, version, default_tenant, score):
        wf = _workflow_with_checklist(version, default_tenant.id)
        check_id = _check(wf["checklist"], "Spelling")["id"]
        with pytest.raises(ValidationError):
            quality_gate_service.update_check(version["deliverable_id"], check_id, "passed", score=score)
        assert _db.session.get(QualityCheck, check_id).status == "pending"

    def test_invalid_status_rejected(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        with pytest.raises(ValidationError):
            quality_gate_service.update_check(
                version["deliverable_id"], _check(wf["checklist"], "Spelling")["id"], "done",
            )

    @pytest.mark.parametrize("status, notes", [
        (["passed"], None),
        ({"value": "passed"}, None),
        ("passed", ["ok"]),
    ])
    def test_non_string_fields_rejected(self, version, default_tenant, status, notes):
        wf = _workflow_with_checklist(version, default_tenant.id)
        check_id = _check(wf["checklist"], "Spelling")["id"]
        with pytest.raises(ValidationError):
            quality_gate_service.update_check(version["deliverable_id"], check_id, status, notes=notes)
        assert _db.session.get(QualityCheck, check_id).status == "pending"

    def test_boundary_scores_accepted(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        did = version["deliverable_id"]
        quality_gate_service.update_check(did, _check(wf["checklist"], "Spelling")["id"], "passed", score=0)
        result = quality_gate_service.update_check(
            did, _check(wf["checklist"], "Branding")["id"], "passed", score=100,
        )
        assert result["overall_score"] == pytest.approx(50.0)

    def test_check_from_other_deliverable_is_not_found(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        other = deliverable_service.create_deliverable(default_tenant.id, 1, "Other")
        check_id = _check(wf["checklist"], "Spelling")["id"]
        with pytest.raises(NotFoundError):
            quality_gate_service.update_check(other["id"], check_id, "passed")
        assert _db.session.get(QualityCheck, check_id).status == "pending"

    def test_check_from_other_version_is_not_found(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        v2 = deliverable_service.create_version(version["deliverable_id"])
        with pytest.raises(NotFoundError):
            quality_gate_service.update_check(
                version["deliverable_id"], _check(wf["checklist"], "Spelling")["id"], "passed",
                version_id=v2["id"],
            )

    def test_missing_check_is_not_found(self, version):
        with pytest.raises(NotFoundError):
            quality_gate_service.update_check(version["deliverable_id"], 9999, "passed")

    def test_status_change_is_published(self, version, default_tenant, actor):
        wf = _workflow_with_checklist(version, default_tenant.id)
        sink = RecordingSink()
        quality_gate_service.update_check(
            version["deliverable_id"], _check(wf["checklist"], "Spelling")["id"], "failed",
            checker=actor("Quinn"), sink=sink,
        )
        assert len(sink.events) == 1
        event = sink.events[0]
        assert event.action == "quality_checklist.status_change"
        assert event.payload["status"] == {"old": "pending", "new": "failed"}

    def test_default_sink_writes_audit_row(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        quality_gate_service.update_check(
            version["deliverable_id"], _check(wf["checklist"], "Spelling")["id"], "failed",
        )
        rows = _db.session.execute(
            _db.select(AuditLog).where(AuditLog.action == "quality_checklist.status_change")
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].tenant_id == default_tenant.id


# ── Recompute ────────────────────────────────────────────────────────────────


class TestRecompute:
    def test_scenario_c_two_required_passed_optional_na(self, version, default_tenant):
        items = [
            {"name": "Structure", "category": "form"},
            {"name": "Accuracy", "category": "content"},
            {"name": "Appendix", "category": "form", "is_required": False},
        ]
        wf = _workflow_with_checklist(version, default_tenant.id, items)
        did = version["deliverable_id"]
        quality_gate_service.update_check(did, _check(wf["checklist"], "Structure")["id"], "passed", score=80)
        quality_gate_service.update_check(did, _check(wf["checklist"], "Appendix")["id"], "n_a")
        result = quality_gate_service.update_check(
            did, _check(wf["checklist"], "Accuracy")["id"], "passed", score=60,
        )
        assert result["overall_score"] == pytest.approx(70.0)
        assert result["status"] == "passed"

    def test_recompute_is_idempotent(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        quality_gate_service.update_check(
            version["deliverable_id"], _check(wf["checklist"], "Spelling")["id"], "passed", score=70,
        )
        checklist_id = wf["checklist"]["id"]
        first = recompute_checklist(checklist_id).to_dict()
        second = recompute_checklist(checklist_id).to_dict()
        for key in ("status", "overall_score", "passed_at", "failed_at", "status_changed_at"):
            assert first[key] == second[key]

    def test_recompute_rereads_all_checks(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        checklist_id = wf["checklist"]["id"]
        for check in _db.session.execute(
            _db.select(QualityCheck).where(QualityCheck.checklist_id == checklist_id)
        ).scalars():
            check.status = "passed"
        _db.session.flush()
        assert recompute_checklist(checklist_id).status == "passed"

    def test_passed_at_and_failed_at_are_write_once(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        did = version["deliverable_id"]
        spelling = _check(wf["checklist"], "Spelling")["id"]
        numbers = _check(wf["checklist"], "Numbers reconcile")["id"]

        quality_gate_service.update_check(did, spelling, "passed")
        passed = quality_gate_service.update_check(did, numbers, "passed")
        assert passed["status"] == "passed"
        first_passed_at = passed["passed_at"]

        failed = quality_gate_service.update_check(did, numbers, "failed")
        assert failed["status"] == "failed"
        assert failed["passed_at"] == first_passed_at
        first_failed_at = failed["failed_at"]
        assert first_failed_at is not None

        again = quality_gate_service.update_check(did, numbers, "passed")
        assert again["status"] == "passed"
        assert again["passed_at"] == first_passed_at
        assert again["failed_at"] == first_failed_at
        assert again["status_changed_at"] != failed["status_changed_at"]

    def test_update_reads_checklist_committed_by_another_writer(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id, items=[{"name": "Spelling"}])
        checklist_id = wf["checklist"]["id"]
        check_id = _check(wf["checklist"], "Spelling")["id"]
        stale = _db.session.get(QualityChecklist, checklist_id)
        assert stale.passed_at is None

        # Another session passes the checklist behind this session's back.
        _db.session.execute(
            update(QualityChecklist.__table__)
            .where(QualityChecklist.__table__.c.id == checklist_id)
            .values(status="passed", passed_at=datetime(2020, 1, 1, tzinfo=timezone.utc))
        )

        result = quality_gate_service.update_check(version["deliverable_id"], check_id, "passed")
        assert result["status"] == "passed"
        assert result["passed_at"].startswith("2020-01-01")

    def test_unknown_checklist_is_not_found(self):
        with pytest.raises(NotFoundError):
            recompute_checklist(424242)


# ── Reads & templates ────────────────────────────────────────────────────────


class TestChecklistReadsAndTemplates:
    def test_get_checklist_none_without_workflow(self, version):
        assert quality_gate_service.get_checklist(version["deliverable_id"]) is None

    def test_get_checklist_for_latest_version(self, version, default_tenant):
        wf = _workflow_with_checklist(version, default_tenant.id)
        checklist = quality_gate_service.get_checklist(version["deliverable_id"])
        assert checklist["id"] == wf["checklist"]["id"]
        # ordered by category, then creation order
        assert [i["category"] for i in checklist["items"]] == ["content", "form", "form"]
        assert [i["name"] for i in checklist["items"]][1:] == ["Spelling", "Branding"]

    def test_get_checklist_unknown_deliverable(self):
        with pytest.raises(NotFoundError):
            quality_gate_service.get_checklist(5555)

    def test_template_validation(self, default_tenant):
        with pytest.raises(ValidationError):
            quality_gate_service.create_template(default_tenant.id, "", [{"name": "x"}])
        with pytest.raises(ValidationError):
            quality_gate_service.create_template(default_tenant.id, "QA", [])
        with pytest.raises(ValidationError):
            quality_gate_service.create_template(default_tenant.id, "QA", [{"category": "form"}])
        with pytest.raises(ValidationError):
            quality_gate_service.create_template(default_tenant.id, 7, [{"name": "x"}])
        with pytest.raises(ValidationError):
            quality_gate_service.create_template(default_tenant.id, "QA", [{"name": ["x"]}])
        with pytest.raises(ValidationError):
            quality_gate_service.create_template(default_tenant.id, "QA", ["Spelling"])

    def test_list_templates_is_tenant_scoped(self, default_tenant):
        other = Tenant(name="Other", slug="other")
        _db.session.add(other)
        _db.session.commit()
        _template(default_tenant.id)
        quality_gate_service.create_template(other.id, "Other QA", [{"name": "x"}])

        names = [t["name"] for t in quality_gate_service.list_templates(default_tenant.id)]
        assert names == ["Document QA"]

    def test_template_from_other_tenant_cannot_seed(self, version):
        other = Tenant(name="Other", slug="other")
        _db.session.add(other)
        _db.session.commit()
        template = quality_gate_service.create_template(other.id, "Other QA", [{"name": "x"}])
        svc = RevisionWorkflowService(capabilities=ReviewCapabilities.permissive(), sink=NullEventSink())
        with pytest.raises(NotFoundError):
            svc.create_workflow(
                version["id"],
                levels=[{"name": "Review", "approver_type": "manager"}],
                checklist_template_id=template["id"],
            )
        assert _db.session.execute(_db.select(_db.func.count(QualityChecklist.id))).scalar() == 0
