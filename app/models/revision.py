"""
Deliverable Review Platform
Revision workflow models — the structured, multi-level review of one
deliverable version.

Models:
    - RevisionWorkflow: orchestrated review of a DeliverableVersion.
    - ApprovalLevel: one sequential gate requiring a quorum of approvers.
    - LevelApprover: one identity's standing within a level.
    - LevelComment: append-only annotation on a level.
    - RevisionRound: immutable record of one "send back for rework" event.

Business rules (enforced in app.services, not here):
    - Exactly one workflow per version (unique version_id).
    - Level transitions move to the next higher level_number only;
      request_revision is the single path back to level 1.
    - At most one approver row per (level_id, approver_id).
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

WORKFLOW_TYPES = frozenset({"structured", "simple", "parallel"})

WORKFLOW_STATUSES = frozenset({"draft", "in_review", "approved", "rejected", "revision_requested"})
TERMINAL_WORKFLOW_STATUSES = frozenset({"approved", "rejected"})

APPROVER_TYPES = frozenset({"client", "employee", "manager", "director", "specific_user"})

LEVEL_STATUSES = frozenset({"pending", "in_progress", "approved", "rejected"})
CLOSED_LEVEL_STATUSES = frozenset({"approved", "rejected"})

APPROVER_STATUSES = frozenset({"pending", "approved", "rejected", "delegated"})

DECISION_ACTIONS = frozenset({"approve", "reject", "request_revision"})

LEVEL_COMMENT_TYPES = frozenset({"revision_request", "approval_note", "feedback"})


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class RevisionWorkflow(db.Model):
    """Review state machine for one DeliverableVersion."""

    __tablename__ = "revision_workflows"

    id = db.Column(db.Integer, primary_key=True)
    version_id = db.Column(
        db.Integer,
        db.ForeignKey("deliverable_versions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="One active workflow per version",
    )
    workflow_type = db.Column(
        db.String(20), nullable=False, default="structured",
        comment="structured | simple | parallel",
    )
    current_level = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.String(30), nullable=False, default="draft",
        comment="draft | in_review | approved | rejected | revision_requested",
    )
    revision_round = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    version = db.relationship("DeliverableVersion", back_populates="revision_workflow")
    levels = db.relationship(
        "ApprovalLevel",
        back_populates="workflow",
        order_by="ApprovalLevel.level_number",
        cascade="all, delete-orphan",
    )
    revisions = db.relationship(
        "RevisionRound",
        back_populates="workflow",
        order_by="RevisionRound.round_number.desc()",
        cascade="all, delete-orphan",
    )
    checklist = db.relationship(
        "QualityChecklist",
        back_populates="workflow",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES

    def level_by_number(self, level_number):
        for level in self.levels:
            if level.level_number == level_number:
                return level
        return None

    def to_dict(self, include_children=True):
        d = {
            "id": self.id,
            "version_id": self.version_id,
            "workflow_type": self.workflow_type,
            "current_level": self.current_level,
            "status": self.status,
            "revision_round": self.revision_round,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["levels"] = [lvl.to_dict() for lvl in self.levels]
            d["revisions"] = [r.to_dict() for r in self.revisions]
            d["checklist"] = self.checklist.to_dict() if self.checklist else None
        return d

    def __repr__(self):
        return f"<RevisionWorkflow {self.id}: v={self.version_id} {self.status} L{self.current_level} R{self.revision_round}>"


class ApprovalLevel(db.Model):
    """One sequential gate within a workflow."""

    __tablename__ = "approval_levels"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "level_number", name="uq_approval_level_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("revision_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level_number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    approver_type = db.Column(
        db.String(20), nullable=False,
        comment="client | employee | manager | director | specific_user",
    )
    # Designated approver (optional; required in practice for specific_user levels)
    approver_id = db.Column(db.String(64), nullable=True)
    approver_name = db.Column(db.String(255), nullable=True)
    approver_email = db.Column(db.String(255), nullable=True)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    can_delegate = db.Column(db.Boolean, nullable=False, default=False)
    min_approvers = db.Column(db.Integer, nullable=False, default=1, comment="Quorum threshold")
    max_approvers = db.Column(db.Integer, nullable=False, default=1, comment="Advisory capacity, not enforced")
    deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | in_progress | approved | rejected",
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    workflow = db.relationship("RevisionWorkflow", back_populates="levels")
    approvers = db.relationship(
        "LevelApprover",
        back_populates="level",
        order_by="LevelApprover.id",
        cascade="all, delete-orphan",
    )
    comments = db.relationship(
        "LevelComment",
        back_populates="level",
        order_by="LevelComment.id.desc()",
        cascade="all, delete-orphan",
    )

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_LEVEL_STATUSES

    def to_dict(self):
        approved = sum(1 for a in self.approvers if a.status == "approved")
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "level_number": self.level_number,
            "name": self.name,
            "description": self.description,
            "approver_type": self.approver_type,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "approver_email": self.approver_email,
            "is_required": self.is_required,
            "can_delegate": self.can_delegate,
            "min_approvers": self.min_approvers,
            "max_approvers": self.max_approvers,
            "deadline": _iso(self.deadline),
            "status": self.status,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "approved_count": approved,
            "quorum_met": approved >= self.min_approvers,
            "approvers": [a.to_dict() for a in self.approvers],
            "comments": [c.to_dict() for c in self.comments],
        }

    def __repr__(self):
        return f"<ApprovalLevel {self.id}: wf={self.workflow_id} #{self.level_number} {self.status}>"


class LevelApprover(db.Model):
    """One identity's decision within a level. Created lazily on first action."""

    __tablename__ = "level_approvers"
    __table_args__ = (
        db.UniqueConstraint("level_id", "approver_id", name="uq_level_approver_identity"),
    )

    id = db.Column(db.Integer, primary_key=True)
    level_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_levels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_type = db.Column(db.String(20), nullable=False)
    approver_id = db.Column(db.String(64), nullable=True, comment="NULL for unregistered external reviewers")
    approver_name = db.Column(db.String(255), nullable=True)
    approver_email = db.Column(db.String(255), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | approved | rejected | delegated",
    )
    comments = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delegated_to = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    level = db.relationship("ApprovalLevel", back_populates="approvers")

    def to_dict(self):
        return {
            "id": self.id,
            "level_id": self.level_id,
            "approver_type": self.approver_type,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "approver_email": self.approver_email,
            "status": self.status,
            "comments": self.comments,
            "approved_at": _iso(self.approved_at),
            "rejected_at": _iso(self.rejected_at),
            "decided_at": _iso(self.decided_at),
            "delegated_to": self.delegated_to,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<LevelApprover {self.id}: level={self.level_id} {self.approver_name} {self.status}>"


class LevelComment(db.Model):
    """Append-only annotation on a level. Never updated or deleted."""

    __tablename__ = "level_comments"

    id = db.Column(db.Integer, primary_key=True)
    level_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_levels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    comment_type = db.Column(
        db.String(30), nullable=False,
        comment="revision_request | approval_note | feedback",
    )
    content = db.Column(db.Text, nullable=False)
    author_type = db.Column(db.String(20), nullable=True)
    author_id = db.Column(db.String(64), nullable=True)
    author_name = db.Column(db.String(255), nullable=True)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    level = db.relationship("ApprovalLevel", back_populates="comments")

    def to_dict(self):
        return {
            "id": self.id,
            "level_id": self.level_id,
            "comment_type": self.comment_type,
            "content": self.content,
            "author_type": self.author_type,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "is_internal": self.is_internal,
            "created_at": _iso(self.created_at),
        }


class RevisionRound(db.Model):
    """Immutable ledger entry for one rework cycle."""

    __tablename__ = "revision_rounds"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "round_number", name="uq_revision_round_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("revision_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    round_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="in_progress")
    requested_by = db.Column(db.String(255), nullable=True)
    requested_by_id = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.Text, nullable=False)
    requested_changes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    workflow = db.relationship("RevisionWorkflow", back_populates="revisions")

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "round_number": self.round_number,
            "status": self.status,
            "requested_by": self.requested_by,
            "requested_by_id": self.requested_by_id,
            "reason": self.reason,
            "requested_changes": self.requested_changes,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<RevisionRound {self.id}: wf={self.workflow_id} #{self.round_number}>"
