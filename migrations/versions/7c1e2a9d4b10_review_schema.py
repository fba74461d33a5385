"""review_schema

Create tenants, deliverables/versions/comments, revision workflows with
levels, approvers, comments and rounds, quality checklists and templates,
and the audit log.

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e2a9d4b10"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "tenants" not in existing_tables:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("settings", sa.JSON(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    # ── Deliverables ─────────────────────────────────────────────────────
    if "deliverables" not in existing_tables:
        op.create_table(
            "deliverables",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("deliverable_type", sa.String(length=50), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_deliverables_tenant_id", "deliverables", ["tenant_id"])
        op.create_index("ix_deliverables_project_id", "deliverables", ["project_id"])

    if "deliverable_versions" not in existing_tables:
        op.create_table(
            "deliverable_versions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("deliverable_id", sa.Integer(), nullable=False),
            sa.Column("version_number", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("file_url", sa.String(length=500), nullable=True),
            sa.Column("change_log", sa.Text(), nullable=True),
            _ts("approved_at"),
            sa.Column("approved_by", sa.String(length=150), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["deliverable_id"], ["deliverables.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("deliverable_id", "version_number", name="uq_deliverable_version_number"),
        )
        op.create_index("ix_deliverable_versions_deliverable_id", "deliverable_versions", ["deliverable_id"])

    if "version_comments" not in existing_tables:
        op.create_table(
            "version_comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.Column("parent_comment_id", sa.Integer(), nullable=True),
            sa.Column("comment_type", sa.String(length=30), nullable=False, server_default="general"),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("file_reference", sa.String(length=500), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=True),
            sa.Column("author_type", sa.String(length=30), nullable=True),
            sa.Column("author_id", sa.String(length=64), nullable=True),
            sa.Column("author_name", sa.String(length=255), nullable=True),
            sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("resolved_at"),
            sa.Column("resolved_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["version_id"], ["deliverable_versions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_comment_id"], ["version_comments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_version_comments_version_id", "version_comments", ["version_id"])
        op.create_index("ix_version_comments_parent_comment_id", "version_comments", ["parent_comment_id"])

    # ── Revision workflow ────────────────────────────────────────────────
    if "revision_workflows" not in existing_tables:
        op.create_table(
            "revision_workflows",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.Column("workflow_type", sa.String(length=20), nullable=False, server_default="structured"),
            sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="draft"),
            sa.Column("revision_round", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["version_id"], ["deliverable_versions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("version_id"),
        )

    if "approval_levels" not in existing_tables:
        op.create_table(
            "approval_levels",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("level_number", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("approver_type", sa.String(length=20), nullable=False),
            sa.Column("approver_id", sa.String(length=64), nullable=True),
            sa.Column("approver_name", sa.String(length=255), nullable=True),
            sa.Column("approver_email", sa.String(length=255), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("can_delegate", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("min_approvers", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("max_approvers", sa.Integer(), nullable=False, server_default="1"),
            _ts("deadline"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            _ts("started_at"),
            _ts("completed_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["workflow_id"], ["revision_workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "level_number", name="uq_approval_level_number"),
        )
        op.create_index("ix_approval_levels_workflow_id", "approval_levels", ["workflow_id"])

    if "level_approvers" not in existing_tables:
        op.create_table(
            "level_approvers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("level_id", sa.Integer(), nullable=False),
            sa.Column("approver_type", sa.String(length=20), nullable=False),
            sa.Column("approver_id", sa.String(length=64), nullable=True),
            sa.Column("approver_name", sa.String(length=255), nullable=True),
            sa.Column("approver_email", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("comments", sa.Text(), nullable=True),
            _ts("approved_at"),
            _ts("rejected_at"),
            _ts("decided_at"),
            sa.Column("delegated_to", sa.String(length=255), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["level_id"], ["approval_levels.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("level_id", "approver_id", name="uq_level_approver_identity"),
        )
        op.create_index("ix_level_approvers_level_id", "level_approvers", ["level_id"])

    if "level_comments" not in existing_tables:
        op.create_table(
            "level_comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("level_id", sa.Integer(), nullable=False),
            sa.Column("comment_type", sa.String(length=30), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("author_type", sa.String(length=20), nullable=True),
            sa.Column("author_id", sa.String(length=64), nullable=True),
            sa.Column("author_name", sa.String(length=255), nullable=True),
            sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["level_id"], ["approval_levels.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_level_comments_level_id", "level_comments", ["level_id"])

    if "revision_rounds" not in existing_tables:
        op.create_table(
            "revision_rounds",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("round_number", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="in_progress"),
            sa.Column("requested_by", sa.String(length=255), nullable=True),
            sa.Column("requested_by_id", sa.String(length=64), nullable=True),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("requested_changes", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["workflow_id"], ["revision_workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "round_number", name="uq_revision_round_number"),
        )
        op.create_index("ix_revision_rounds_workflow_id", "revision_rounds", ["workflow_id"])

    # ── Quality gate ─────────────────────────────────────────────────────
    if "quality_checklist_templates" not in existing_tables:
        op.create_table(
            "quality_checklist_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_quality_checklist_templates_tenant_id", "quality_checklist_templates", ["tenant_id"])

    if "quality_check_template_items" not in existing_tables:
        op.create_table(
            "quality_check_template_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("category", sa.String(length=50), nullable=False, server_default="general"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["template_id"], ["quality_checklist_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_quality_check_template_items_template_id", "quality_check_template_items", ["template_id"],
        )

    if "quality_checklists" not in existing_tables:
        op.create_table(
            "quality_checklists",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=True),
            sa.Column("overall_score", sa.Float(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            _ts("passed_at"),
            _ts("failed_at"),
            _ts("status_changed_at"),
            sa.Column("reviewed_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["workflow_id"], ["revision_workflows.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["template_id"], ["quality_checklist_templates.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id"),
        )

    if "quality_checks" not in existing_tables:
        op.create_table(
            "quality_checks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("checklist_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("category", sa.String(length=50), nullable=False, server_default="general"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("evidence", sa.JSON(), nullable=True),
            sa.Column("score", sa.Float(), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("checked_by", sa.String(length=255), nullable=True),
            sa.Column("checked_by_id", sa.String(length=64), nullable=True),
            _ts("checked_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["checklist_id"], ["quality_checklists.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_quality_checks_checklist_id", "quality_checks", ["checklist_id"])

    # ── Audit trail ──────────────────────────────────────────────────────
    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.String(length=64), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _ts("timestamp", nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for table in (
        "audit_logs",
        "quality_checks",
        "quality_checklists",
        "quality_check_template_items",
        "quality_checklist_templates",
        "revision_rounds",
        "level_comments",
        "level_approvers",
        "approval_levels",
        "revision_workflows",
        "version_comments",
        "deliverable_versions",
        "deliverables",
        "tenants",
    ):
        if table in existing_tables:
            op.drop_table(table)
