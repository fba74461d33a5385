"""
Tests: Approval Level Engine — identity resolution, decision recording and
quorum evaluation on a single level.

The engine never commits; tests work on flushed state inside the per-test
session provided by conftest.
"""

import pytest

from app.core.exceptions import ValidationError
from app.models import db as _db
from app.models.revision import ApprovalLevel, LevelApprover, LevelComment
from app.services.approval_level_engine import ApprovalLevelEngine, ApproverResolver
from app.services.review_capabilities import ReviewActor, ReviewCapabilities
from app.services.review_events import NullEventSink
from app.services.revision_workflow_service import RevisionWorkflowService


# ── Helpers ──────────────────────────────────────────────────────────────────


def _level(version_id, min_approvers=1, **extra):
    svc = RevisionWorkflowService(capabilities=ReviewCapabilities.permissive(), sink=NullEventSink())
    fields = {"name": "Manager review", "approver_type": "manager", "min_approvers": min_approvers}
    fields.update(extra)
    wf = svc.create_workflow(version_id, levels=[fields])
    return _db.session.get(ApprovalLevel, wf["levels"][0]["id"])


# ── Identity resolution ──────────────────────────────────────────────────────


class TestApproverResolver:
    def test_creates_pending_row_tagged_with_actor_category(self, version, actor):
        level = _level(version["id"])
        approver, created = ApproverResolver().resolve(level, actor("Alice", "manager"))
        assert created is True
        assert approver.status == "pending"
        assert approver.approver_type == "manager"
        assert approver.approver_id == "alice"

    def test_matches_existing_row_by_id(self, version, actor):
        level = _level(version["id"])
        first, _ = ApproverResolver().resolve(level, actor("Alice", "manager"))
        _db.session.flush()
        renamed = ReviewActor(id="alice", name="Alice Smith", category="manager")
        again, created = ApproverResolver().resolve(level, renamed)
        assert created is False
        assert again.id == first.id

    def test_binds_preseeded_row_matched_by_name(self, version, actor):
        level = _level(version["id"], approver_name="Bob")
        seeded = level.approvers[0]
        assert seeded.approver_id is None

        approver, created = ApproverResolver().resolve(level, actor("Bob", "manager", email="bob@x.io"))
        assert created is False
        assert approver.id == seeded.id
        assert approver.approver_id == "bob"
        assert approver.approver_email == "bob@x.io"

    def test_name_match_bound_to_other_identity_is_not_reused(self, version):
        level = _level(version["id"])
        resolver = ApproverResolver()
        resolver.resolve(level, ReviewActor(id="u1", name="Sam", category="manager"))
        _db.session.flush()
        other, created = resolver.resolve(level, ReviewActor(id="u2", name="Sam", category="manager"))
        assert created is True
        assert other.approver_id == "u2"


# ── Decision recording ───────────────────────────────────────────────────────


class TestRecordDecision:
    def test_approve_sets_status_and_timestamps(self, version, actor):
        level = _level(version["id"])
        approvers = ApprovalLevelEngine().record_decision(level, actor("Alice", "manager"), "approve")
        assert len(approvers) == 1
        assert approvers[0].status == "approved"
        assert approvers[0].approved_at is not None
        assert approvers[0].decided_at is not None

    def test_later_decision_overwrites_earlier_one(self, version, actor):
        level = _level(version["id"])
        engine = ApprovalLevelEngine()
        alice = actor("Alice", "manager")
        engine.record_decision(level, alice, "approve")
        approvers = engine.record_decision(level, alice, "reject")
        assert len(approvers) == 1
        assert approvers[0].status == "rejected"
        assert approvers[0].rejected_at is not None

    def test_comment_appends_typed_level_comment(self, version, actor):
        level = _level(version["id"])
        engine = ApprovalLevelEngine()
        engine.record_decision(level, actor("Alice", "manager"), "approve", comment="Looks good")
        engine.record_decision(level, actor("Bob", "manager"), "reject", comment="Missing annex")
        engine.record_decision(level, actor("Cleo", "manager"), "request_revision", comment="Rework 2.1")

        comments = _db.session.execute(
            _db.select(LevelComment).where(LevelComment.level_id == level.id).order_by(LevelComment.id)
        ).scalars().all()
        assert [c.comment_type for c in comments] == ["approval_note", "feedback", "revision_request"]
        assert comments[0].author_name == "Alice"
        alice_row = next(a for a in level.approvers if a.approver_id == "alice")
        assert alice_row.comments == "Looks good"

    def test_request_revision_with_delegate_marks_delegated(self, version, actor):
        level = _level(version["id"])
        approvers = ApprovalLevelEngine().record_decision(
            level, actor("Alice", "manager"), "request_revision", delegate_to="carol@x.io",
        )
        assert approvers[0].status == "delegated"
        assert approvers[0].delegated_to == "carol@x.io"

    def test_request_revision_without_delegate_leaves_status(self, version, actor):
        level = _level(version["id"])
        engine = ApprovalLevelEngine()
        alice = actor("Alice", "manager")
        engine.record_decision(level, alice, "approve")
        approvers = engine.record_decision(level, alice, "request_revision")
        assert approvers[0].status == "approved"

    def test_unknown_action_rejected_before_write(self, version, actor):
        level = _level(version["id"])
        with pytest.raises(ValidationError):
            ApprovalLevelEngine().record_decision(level, actor("Alice", "manager"), "maybe")
        with pytest.raises(ValidationError):
            ApprovalLevelEngine().record_decision(level, actor("Alice", "manager"), ["approve"])
        count = _db.session.execute(
            _db.select(_db.func.count(LevelApprover.id)).where(LevelApprover.level_id == level.id)
        ).scalar()
        assert count == 0


# ── Quorum ───────────────────────────────────────────────────────────────────


class TestQuorum:
    def test_quorum_requires_min_approvers(self, version, actor):
        level = _level(version["id"], min_approvers=2)
        engine = ApprovalLevelEngine()
        engine.record_decision(level, actor("Alice", "manager"), "approve")
        assert engine.is_quorum_met(level) is False
        engine.record_decision(level, actor("Bob", "manager"), "approve")
        assert engine.is_quorum_met(level) is True

    def test_repeated_approval_by_same_actor_counts_once(self, version, actor):
        level = _level(version["id"], min_approvers=2)
        engine = ApprovalLevelEngine()
        alice = actor("Alice", "manager")
        engine.record_decision(level, alice, "approve")
        engine.record_decision(level, alice, "approve")
        assert engine.approved_count(level) == 1
        assert engine.is_quorum_met(level) is False

    def test_quorum_is_monotonic_under_more_approvals(self, version, actor):
        level = _level(version["id"], min_approvers=1)
        engine = ApprovalLevelEngine()
        engine.record_decision(level, actor("Alice", "manager"), "approve")
        assert engine.is_quorum_met(level) is True
        engine.record_decision(level, actor("Bob", "manager"), "approve")
        assert engine.is_quorum_met(level) is True

    def test_rejections_do_not_count_toward_quorum(self, version, actor):
        level = _level(version["id"], min_approvers=1)
        engine = ApprovalLevelEngine()
        engine.record_decision(level, actor("Alice", "manager"), "reject")
        assert engine.approved_count(level) == 0
        assert engine.is_quorum_met(level) is False
