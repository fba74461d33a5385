"""
Deliverable Review Platform
Quality gate models — scored checklists attached to a revision workflow.

Models:
    - QualityChecklistTemplate / QualityCheckTemplateItem: reusable
      definitions whose items seed a workflow's checklist.
    - QualityChecklist: aggregate score and status for one workflow.
    - QualityCheck: one discrete pass/fail item.

Timestamp semantics on QualityChecklist:
    passed_at / failed_at   first time the status was reached; write-once.
    status_changed_at       when the current status began; rewritten on
                            every status change.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel

# ── Constants ────────────────────────────────────────────────────────────────

CHECKLIST_STATUSES = frozenset({"pending", "in_progress", "passed", "failed"})

CHECK_STATUSES = frozenset({"pending", "in_progress", "passed", "failed", "n_a"})

SCORE_MIN = 0
SCORE_MAX = 100


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class QualityChecklistTemplate(TenantModel):
    """Reusable checklist definition, scoped to a tenant."""

    __tablename__ = "quality_checklist_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    items = db.relationship(
        "QualityCheckTemplateItem",
        back_populates="template",
        order_by="QualityCheckTemplateItem.sort_order",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "items": [i.to_dict() for i in self.items],
        }


class QualityCheckTemplateItem(db.Model):
    __tablename__ = "quality_check_template_items"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer,
        db.ForeignKey("quality_checklist_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(50), nullable=False, default="general")
    description = db.Column(db.Text, nullable=True)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    template = db.relationship("QualityChecklistTemplate", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "is_required": self.is_required,
            "sort_order": self.sort_order,
        }


class QualityChecklist(db.Model):
    """Aggregate quality gate for one revision workflow."""

    __tablename__ = "quality_checklists"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("revision_workflows.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    template_id = db.Column(
        db.Integer,
        db.ForeignKey("quality_checklist_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    overall_score = db.Column(db.Float, nullable=True, comment="Mean of scored checks; NULL when none scored")
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | in_progress | passed | failed",
    )
    passed_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="First time status reached 'passed'")
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="First time status reached 'failed'")
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="Current status since")
    reviewed_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    workflow = db.relationship("RevisionWorkflow", back_populates="checklist")
    template = db.relationship("QualityChecklistTemplate")
    items = db.relationship(
        "QualityCheck",
        back_populates="checklist",
        order_by=lambda: [QualityCheck.category, QualityCheck.sort_order, QualityCheck.id],
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "template_id": self.template_id,
            "overall_score": self.overall_score,
            "status": self.status,
            "passed_at": _iso(self.passed_at),
            "failed_at": _iso(self.failed_at),
            "status_changed_at": _iso(self.status_changed_at),
            "reviewed_by": self.reviewed_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "items": [i.to_dict() for i in self.items],
        }

    def __repr__(self):
        return f"<QualityChecklist {self.id}: wf={self.workflow_id} {self.status} score={self.overall_score}>"


class QualityCheck(db.Model):
    """One discrete checklist item. Only mutated through update_check()."""

    __tablename__ = "quality_checks"

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(
        db.Integer,
        db.ForeignKey("quality_checklists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(50), nullable=False, default="general")
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | in_progress | passed | failed | n_a",
    )
    notes = db.Column(db.Text, nullable=True)
    evidence = db.Column(db.JSON, nullable=True, comment="List of evidence references (URLs, file keys)")
    score = db.Column(db.Float, nullable=True)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    checked_by = db.Column(db.String(255), nullable=True)
    checked_by_id = db.Column(db.String(64), nullable=True)
    checked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    checklist = db.relationship("QualityChecklist", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "checklist_id": self.checklist_id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "status": self.status,
            "notes": self.notes,
            "evidence": self.evidence or [],
            "score": self.score,
            "is_required": self.is_required,
            "sort_order": self.sort_order,
            "checked_by": self.checked_by,
            "checked_by_id": self.checked_by_id,
            "checked_at": _iso(self.checked_at),
        }
