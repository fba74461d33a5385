"""
Deliverable Review Platform
Deliverable domain models.

Models:
    - Deliverable: client-facing artifact produced by a project.
    - DeliverableVersion: one produced revision of a deliverable; the unit
      that a RevisionWorkflow reviews.
    - VersionComment: threaded, resolvable remarks on a version.

Version numbers are monotonically increasing per deliverable and enforced
unique at the database level.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel

# ── Constants ────────────────────────────────────────────────────────────────

VERSION_STATUSES = frozenset({"draft", "in_review", "approved", "rejected"})

VERSION_COMMENT_TYPES = frozenset({"general", "revision_request", "approval_note", "quality_issue"})


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Deliverable(TenantModel):
    """A client deliverable owned by an (external) project."""

    __tablename__ = "deliverables"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        nullable=False,
        index=True,
        comment="Reference to the owning project record (managed outside this service)",
    )
    title = db.Column(db.String(255), nullable=False)
    deliverable_type = db.Column(db.String(50), nullable=True, default="document")
    description = db.Column(db.Text, nullable=True, default="")
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    versions = db.relationship(
        "DeliverableVersion",
        back_populates="deliverable",
        order_by="DeliverableVersion.version_number",
        cascade="all, delete-orphan",
    )

    def latest_version(self):
        return self.versions[-1] if self.versions else None

    def to_dict(self, include_versions=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "title": self.title,
            "deliverable_type": self.deliverable_type,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_versions:
            d["versions"] = [v.to_dict() for v in reversed(self.versions)]
        return d

    def __repr__(self):
        return f"<Deliverable {self.id}: {self.title}>"


class DeliverableVersion(db.Model):
    """One revision of a deliverable. Owns at most one RevisionWorkflow."""

    __tablename__ = "deliverable_versions"
    __table_args__ = (
        db.UniqueConstraint("deliverable_id", "version_number", name="uq_deliverable_version_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    deliverable_id = db.Column(
        db.Integer,
        db.ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | in_review | approved | rejected",
    )
    file_url = db.Column(db.String(500), nullable=True)
    change_log = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(150), nullable=True)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    deliverable = db.relationship("Deliverable", back_populates="versions")
    revision_workflow = db.relationship(
        "RevisionWorkflow",
        back_populates="version",
        uselist=False,
        cascade="all, delete-orphan",
    )
    comments = db.relationship(
        "VersionComment",
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="VersionComment.created_at.desc()",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "deliverable_id": self.deliverable_id,
            "version_number": self.version_number,
            "status": self.status,
            "file_url": self.file_url,
            "change_log": self.change_log,
            "approved_at": _iso(self.approved_at),
            "approved_by": self.approved_by,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<DeliverableVersion {self.id}: d={self.deliverable_id} v{self.version_number} {self.status}>"


class VersionComment(db.Model):
    """Remark on a version. Replies point at their parent via parent_comment_id."""

    __tablename__ = "version_comments"

    id = db.Column(db.Integer, primary_key=True)
    version_id = db.Column(
        db.Integer,
        db.ForeignKey("deliverable_versions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_comment_id = db.Column(
        db.Integer,
        db.ForeignKey("version_comments.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    comment_type = db.Column(db.String(30), nullable=False, default="general")
    content = db.Column(db.Text, nullable=False)
    file_reference = db.Column(db.String(500), nullable=True)
    attachments = db.Column(db.JSON, nullable=True)
    author_type = db.Column(db.String(30), nullable=True, comment="client | employee | manager | director")
    author_id = db.Column(db.String(64), nullable=True)
    author_name = db.Column(db.String(255), nullable=True)
    is_resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    version = db.relationship("DeliverableVersion", back_populates="comments")
    replies = db.relationship(
        "VersionComment",
        backref=db.backref("parent", remote_side=[id]),
        order_by="VersionComment.created_at",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_replies=True):
        d = {
            "id": self.id,
            "version_id": self.version_id,
            "parent_comment_id": self.parent_comment_id,
            "comment_type": self.comment_type,
            "content": self.content,
            "file_reference": self.file_reference,
            "attachments": self.attachments or [],
            "author_type": self.author_type,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "is_resolved": self.is_resolved,
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "created_at": _iso(self.created_at),
        }
        if include_replies:
            d["replies"] = [r.to_dict(include_replies=False) for r in self.replies]
        return d

    def __repr__(self):
        return f"<VersionComment {self.id}: v={self.version_id} {self.comment_type}>"
