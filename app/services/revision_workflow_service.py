"""
Revision Workflow Service — the state machine driving a deliverable version
through its approval levels, revision rounds and quality gate.

States:
    draft ──► in_review ──► approved            (terminal)
                  │    └──► rejected            (terminal)
                  └──► revision_requested ──► in_review

Design decisions:
    - Every mutating call is one transaction (helpers.transaction.atomic).
      decide() locks the workflow row before evaluating quorum so concurrent
      approvals on the same workflow serialize.
    - Guards run before any write: ownership chain (NotFound), terminal
      workflow (InvalidStateError), capability matrix (PermissionDenied),
      current/open level for approve and reject (InvalidStateError).
    - A rejection at any level rejects the whole workflow (fast-fail).
    - request_revision is the only backward transition: new round,
      current_level back to 1, every level reset to pending.
    - ReviewEvents are collected inside the transaction and published after
      the commit; sink failures never reach the caller.
    - The checklist is read-only here apart from seeding at creation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.models import db
from app.models.deliverable import Deliverable, DeliverableVersion
from app.models.revision import (
    APPROVER_TYPES,
    DECISION_ACTIONS,
    WORKFLOW_STATUSES,
    WORKFLOW_TYPES,
    ApprovalLevel,
    LevelApprover,
    RevisionWorkflow,
)
from app.services import deliverable_service, quality_gate_service
from app.services.approval_level_engine import ApprovalLevelEngine
from app.services.helpers.transaction import atomic
from app.services.review_capabilities import ReviewActor, ReviewCapabilities
from app.services.review_events import AuditTrailSink, ReviewEvent, publish_events
from app.services.revision_round_tracker import RevisionRoundTracker
from app.utils.helpers import optional_text, parse_datetime

logger = logging.getLogger(__name__)

DEFAULT_REVISION_REASON = "Revision requested"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Level validation ─────────────────────────────────────────────────────


def _normalise_levels(levels) -> list[dict]:
    """Validate level definitions and return them sorted by level_number.

    Level numbers must be unique and form the sequence 1..N so that
    current_level=1 always addresses a real level.

    Raises:
        ValidationError: on the first malformed level.
    """
    if not isinstance(levels, list) or not levels:
        raise ValidationError("levels must be a non-empty list")

    out = []
    for i, item in enumerate(levels):
        if not isinstance(item, dict):
            raise ValidationError(f"levels[{i}] must be an object")

        name = optional_text(item.get("name"), f"levels[{i}].name")
        if not name:
            raise ValidationError(f"levels[{i}].name is required")

        approver_type = item.get("approver_type")
        if not isinstance(approver_type, str) or approver_type not in APPROVER_TYPES:
            raise ValidationError(
                f"levels[{i}].approver_type is invalid",
                details={"approver_type": sorted(APPROVER_TYPES)},
            )

        level_number = item.get("level_number", i + 1)
        min_approvers = item.get("min_approvers", 1)
        max_approvers = item.get("max_approvers", max(1, min_approvers) if isinstance(min_approvers, int) else 1)
        for field, value in (("level_number", level_number), ("min_approvers", min_approvers),
                             ("max_approvers", max_approvers)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError(f"levels[{i}].{field} must be a positive integer")
        if max_approvers < min_approvers:
            raise ValidationError(f"levels[{i}].max_approvers must be >= min_approvers")

        deadline = item.get("deadline")
        if deadline is not None:
            try:
                deadline = parse_datetime(deadline)
            except ValueError as exc:
                raise ValidationError(f"levels[{i}].deadline: {exc}") from exc

        out.append({
            "level_number": level_number,
            "name": name,
            "description": optional_text(item.get("description"), f"levels[{i}].description"),
            "approver_type": approver_type,
            "approver_id": optional_text(item.get("approver_id"), f"levels[{i}].approver_id"),
            "approver_name": optional_text(item.get("approver_name"), f"levels[{i}].approver_name"),
            "approver_email": optional_text(item.get("approver_email"), f"levels[{i}].approver_email"),
            "is_required": bool(item.get("is_required", True)),
            "can_delegate": bool(item.get("can_delegate", False)),
            "min_approvers": min_approvers,
            "max_approvers": max_approvers,
            "deadline": deadline,
        })

    numbers = sorted(s["level_number"] for s in out)
    if numbers != list(range(1, len(out) + 1)):
        raise ValidationError(
            "level numbers must be unique and run 1..N",
            details={"level_numbers": numbers},
        )
    return sorted(out, key=lambda s: s["level_number"])


# ── Service ───────────────────────────────────────────────────────────────────


class RevisionWorkflowService:
    """Orchestrates workflows. Collaborators are injected for testing."""

    def __init__(
        self,
        capabilities: ReviewCapabilities | None = None,
        level_engine: ApprovalLevelEngine | None = None,
        round_tracker: RevisionRoundTracker | None = None,
        sink=None,
        default_revision_reason: str = DEFAULT_REVISION_REASON,
    ):
        self.capabilities = capabilities or ReviewCapabilities()
        self.level_engine = level_engine or ApprovalLevelEngine()
        self.round_tracker = round_tracker or RevisionRoundTracker()
        self.sink = sink or AuditTrailSink()
        self.default_revision_reason = default_revision_reason

    @classmethod
    def from_config(cls, config, **overrides) -> "RevisionWorkflowService":
        enforce = config.get("REVIEW_ENFORCE_CAPABILITIES", True)
        kwargs = {
            "capabilities": ReviewCapabilities(enforce=enforce),
            "default_revision_reason": config.get("REVIEW_DEFAULT_REVISION_REASON", DEFAULT_REVISION_REASON),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    # ── Creation ─────────────────────────────────────────────────────────

    def create_workflow(
        self,
        version_id: int,
        workflow_type: str = "structured",
        levels: list[dict] | None = None,
        checklist_template_id: int | None = None,
        created_by: ReviewActor | None = None,
    ) -> dict:
        """Create the workflow for an existing version.

        Raises:
            ValidationError: bad workflow type or level definitions (before writes).
            NotFoundError:   version or checklist template missing.
            ConflictError:   the version already has a workflow.
        """
        def _resolve_version():
            version = db.session.get(DeliverableVersion, version_id)
            if version is None:
                raise NotFoundError(resource="DeliverableVersion", resource_id=version_id)
            return version

        return self._create(_resolve_version, workflow_type, levels, checklist_template_id, created_by)

    def create_workflow_for_deliverable(
        self,
        deliverable_id: int,
        version_id: int | None = None,
        workflow_type: str = "structured",
        levels: list[dict] | None = None,
        checklist_template_id: int | None = None,
        created_by: ReviewActor | None = None,
    ) -> dict:
        """Create a workflow for ``version_id`` or the deliverable's latest version.

        A deliverable without versions gets version 1 (draft) in the same
        transaction as the workflow.
        """
        def _resolve_version():
            deliverable = db.session.get(Deliverable, deliverable_id)
            if deliverable is None:
                raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)
            if version_id is not None:
                return deliverable_service.get_version(deliverable_id, version_id)
            return deliverable_service.latest_or_initial_version(
                deliverable, created_by=created_by.display_name if created_by else None,
            )

        return self._create(_resolve_version, workflow_type, levels, checklist_template_id, created_by)

    @staticmethod
    def _existing_workflow_id(version_id: int) -> int | None:
        return db.session.execute(
            select(RevisionWorkflow.id).where(RevisionWorkflow.version_id == version_id)
        ).scalar_one_or_none()

    def _create(self, resolve_version, workflow_type, levels, checklist_template_id, created_by) -> dict:
        if not isinstance(workflow_type, str) or workflow_type not in WORKFLOW_TYPES:
            raise ValidationError(
                f"Invalid workflow_type '{workflow_type}'",
                details={"workflow_type": sorted(WORKFLOW_TYPES)},
            )
        level_defs = _normalise_levels(levels)
        events: list[ReviewEvent] = []

        with atomic("create_workflow"):
            version = resolve_version()
            version_pk = version.id
            if self._existing_workflow_id(version_pk) is not None:
                raise ConflictError(resource="RevisionWorkflow", field="version_id", value=version_pk)

            tenant_id = version.deliverable.tenant_id
            workflow = RevisionWorkflow(
                version=version,
                workflow_type=workflow_type,
                current_level=1,
                status="draft",
                revision_round=1,
                created_by=created_by.display_name if created_by else None,
            )
            db.session.add(workflow)
            try:
                db.session.flush()
            except IntegrityError as exc:
                # A concurrent create won the version's unique slot.
                raise ConflictError(resource="RevisionWorkflow", field="version_id", value=version_pk) from exc

            for fields in level_defs:
                level = ApprovalLevel(status="pending", **fields)
                workflow.levels.append(level)
                if fields["approver_name"]:
                    level.approvers.append(LevelApprover(
                        approver_type=fields["approver_type"],
                        approver_id=fields["approver_id"],
                        approver_name=fields["approver_name"],
                        approver_email=fields["approver_email"],
                        status="pending",
                    ))

            if checklist_template_id is not None:
                quality_gate_service.seed_checklist(workflow, checklist_template_id, tenant_id)

            db.session.flush()
            version_id = version.id
            events.append(self._event("revision_workflow.create", workflow, tenant_id, created_by, {
                "version_id": version.id,
                "workflow_type": workflow_type,
                "levels": len(level_defs),
            }))

        logger.info(
            "Revision workflow created",
            extra={"tenant_id": tenant_id, "workflow_id": events[0].entity_id, "version_id": version_id},
        )
        publish_events(self.sink, events)
        return self.get_workflow(version_id)

    # ── Decisions ────────────────────────────────────────────────────────

    def decide(
        self,
        version_id: int,
        level_id: int,
        actor: ReviewActor,
        action: str,
        comment: str | None = None,
        delegate_to: str | None = None,
    ) -> dict:
        """Apply one approver decision and advance the workflow.

        Args:
            version_id:  Version the level must belong to.
            level_id:    ApprovalLevel PK.
            actor:       Acting identity and category.
            action:      approve | reject | request_revision.
            comment:     Optional remark; also the revision reason.
            delegate_to: Delegate target, request_revision only.

        Returns:
            The reloaded nested workflow dict.

        Raises:
            ValidationError:   bad action / actor / delegate target.
            NotFoundError:     level missing or not on this version.
            InvalidStateError: finalized workflow, closed or non-current level.
            PermissionDenied:  actor category may not take this action here.
        """
        if not isinstance(action, str) or action not in DECISION_ACTIONS:
            raise ValidationError(
                f"Invalid action '{action}'",
                details={"action": sorted(DECISION_ACTIONS)},
            )
        actor.validate()
        if delegate_to is not None:
            if not isinstance(delegate_to, str) or not delegate_to.strip():
                raise ValidationError("delegate_to must be a non-empty string")
            if action != "request_revision":
                raise ValidationError("delegate_to is only valid with request_revision")
            delegate_to = delegate_to.strip()
        comment = optional_text(comment, "comment")

        events: list[ReviewEvent] = []
        with atomic("decide"):
            level = db.session.get(ApprovalLevel, level_id)
            if level is None or level.workflow.version_id != version_id:
                raise NotFoundError(resource="ApprovalLevel", resource_id=level_id)

            workflow = db.session.execute(
                select(RevisionWorkflow)
                .where(RevisionWorkflow.id == level.workflow_id)
                .with_for_update()
            ).scalar_one()
            # Re-read level, approvers and siblings under the lock.
            db.session.expire_all()
            tenant_id = workflow.version.deliverable.tenant_id

            if workflow.is_terminal:
                raise InvalidStateError(
                    resource="RevisionWorkflow",
                    current_state=workflow.status,
                    reason="the review has already been finalized",
                )
            self.capabilities.check(actor, level, action)
            if action in ("approve", "reject"):
                if level.is_closed:
                    raise InvalidStateError(
                        resource="ApprovalLevel",
                        current_state=level.status,
                        reason="the level decision is already final",
                    )
                if level.level_number != workflow.current_level:
                    raise InvalidStateError(
                        resource="ApprovalLevel",
                        current_state=level.status,
                        reason=f"level {level.level_number} is not the current level ({workflow.current_level})",
                    )
            if workflow.status in ("draft", "revision_requested"):
                self._enter_review(workflow, actor, tenant_id, events)

            self.level_engine.record_decision(level, actor, action, comment=comment, delegate_to=delegate_to)

            if action == "approve":
                if self.level_engine.is_quorum_met(level):
                    self._complete_level(workflow, level, actor, tenant_id, events)
            elif action == "reject":
                self._reject(workflow, level, actor, comment, tenant_id, events)
            else:
                self._request_revision(workflow, level, actor, comment, delegate_to, tenant_id, events)

            db.session.flush()
            workflow_id = workflow.id
            final_status = workflow.status

        logger.info(
            "Decision applied action=%s workflow_status=%s",
            action, final_status,
            extra={"tenant_id": tenant_id, "workflow_id": workflow_id, "level_id": level_id, "action": action},
        )
        publish_events(self.sink, events)
        return self.get_workflow(version_id)

    def _enter_review(self, workflow, actor, tenant_id, events):
        now = _utcnow()
        previous = workflow.status
        workflow.status = "in_review"
        current = workflow.level_by_number(workflow.current_level)
        if current is not None and current.status == "pending":
            current.status = "in_progress"
            current.started_at = now
        workflow.version.status = "in_review"
        events.append(self._event("revision_workflow.start_review", workflow, tenant_id, actor, {
            "status": {"old": previous, "new": "in_review"},
            "current_level": workflow.current_level,
        }))

    def _complete_level(self, workflow, level, actor, tenant_id, events):
        now = _utcnow()
        level.status = "approved"
        level.completed_at = now
        events.append(self._event("approval_level.approve", level, tenant_id, actor, {
            "workflow_id": workflow.id,
            "level_number": level.level_number,
            "approved_count": self.level_engine.approved_count(level),
        }, entity_type="approval_level"))

        following = [lvl for lvl in workflow.levels if lvl.level_number > level.level_number]
        if following:
            nxt = min(following, key=lambda lvl: lvl.level_number)
            workflow.current_level = nxt.level_number
            workflow.status = "in_review"
            nxt.status = "in_progress"
            nxt.started_at = now
            events.append(self._event("revision_workflow.advance", workflow, tenant_id, actor, {
                "current_level": {"old": level.level_number, "new": nxt.level_number},
            }))
            return

        workflow.status = "approved"
        version = workflow.version
        version.status = "approved"
        version.approved_at = now
        version.approved_by = actor.id or actor.display_name
        events.append(self._event("revision_workflow.approve", workflow, tenant_id, actor, {
            "status": {"old": "in_review", "new": "approved"},
            "version_id": version.id,
        }))

    def _reject(self, workflow, level, actor, comment, tenant_id, events):
        now = _utcnow()
        level.status = "rejected"
        level.completed_at = now
        workflow.status = "rejected"
        workflow.version.status = "rejected"
        events.append(self._event("approval_level.reject", level, tenant_id, actor, {
            "workflow_id": workflow.id,
            "level_number": level.level_number,
            "comment": comment,
        }, entity_type="approval_level"))
        events.append(self._event("revision_workflow.reject", workflow, tenant_id, actor, {
            "status": {"old": "in_review", "new": "rejected"},
            "rejected_at_level": level.level_number,
        }))

    def _request_revision(self, workflow, level, actor, comment, delegate_to, tenant_id, events):
        previous_status = workflow.status
        rnd = self.round_tracker.start_new_round(
            workflow,
            requested_by=actor.display_name,
            reason=comment or self.default_revision_reason,
            requested_changes=comment,
            requested_by_id=actor.id,
        )
        workflow.status = "revision_requested"
        workflow.revision_round = rnd.round_number
        revision_round = self.round_tracker.current_round_number(workflow)
        workflow.current_level = 1
        for lvl in workflow.levels:
            lvl.status = "pending"
            lvl.started_at = None
            lvl.completed_at = None
            # Approvals from the previous round no longer count toward quorum.
            for approver in lvl.approvers:
                if approver.status in ("approved", "rejected"):
                    approver.status = "pending"
                    approver.decided_at = None

        events.append(self._event("approval_level.request_revision", level, tenant_id, actor, {
            "workflow_id": workflow.id,
            "level_number": level.level_number,
            "delegated_to": delegate_to,
        }, entity_type="approval_level"))
        events.append(self._event("revision_workflow.request_revision", workflow, tenant_id, actor, {
            "status": {"old": previous_status, "new": "revision_requested"},
            "revision_round": revision_round,
            "reason": rnd.reason,
        }))

    @staticmethod
    def _event(action, entity, tenant_id, actor, payload, entity_type="revision_workflow") -> ReviewEvent:
        return ReviewEvent(
            action=action,
            entity_type=entity_type,
            entity_id=entity.id,
            tenant_id=tenant_id,
            actor_name=actor.display_name if actor else None,
            actor_id=actor.id if actor else None,
            payload=payload,
        )

    # ── Reads ────────────────────────────────────────────────────────────

    def get_workflow(self, version_id: int) -> dict:
        """Nested snapshot of the version's workflow."""
        version = db.session.get(DeliverableVersion, version_id)
        if version is None:
            raise NotFoundError(resource="DeliverableVersion", resource_id=version_id)
        workflow = version.revision_workflow
        if workflow is None:
            raise NotFoundError(resource="RevisionWorkflow", resource_id=f"version:{version_id}")
        d = workflow.to_dict()
        d["version"] = version.to_dict()
        return d

    def get_deliverable_review(self, deliverable_id: int) -> dict:
        """Deliverable with every version's workflow snapshot and comments."""
        deliverable = db.session.get(Deliverable, deliverable_id)
        if deliverable is None:
            raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)

        versions = []
        for version in reversed(deliverable.versions):
            v = version.to_dict()
            workflow = version.revision_workflow
            v["revision_workflow"] = workflow.to_dict() if workflow else None
            v["comments"] = [c.to_dict() for c in version.comments if c.parent_comment_id is None]
            versions.append(v)

        d = deliverable.to_dict()
        d["versions"] = versions
        return d

    def list_project_workflows(self, project_id: int, tenant_id: int | None = None) -> dict:
        """Every version with a workflow in the project, plus status counts."""
        stmt = (
            select(RevisionWorkflow, DeliverableVersion, Deliverable)
            .join(DeliverableVersion, RevisionWorkflow.version_id == DeliverableVersion.id)
            .join(Deliverable, DeliverableVersion.deliverable_id == Deliverable.id)
            .where(Deliverable.project_id == project_id)
            .order_by(Deliverable.created_at.desc(), Deliverable.id.desc(), DeliverableVersion.version_number.desc())
        )
        if tenant_id is not None:
            stmt = stmt.where(Deliverable.tenant_id == tenant_id)

        items = []
        for workflow, version, deliverable in db.session.execute(stmt).all():
            items.append({
                "deliverable": {
                    "id": deliverable.id,
                    "title": deliverable.title,
                    "deliverable_type": deliverable.deliverable_type,
                },
                "version": version.to_dict(),
                "workflow": workflow.to_dict(),
            })

        count_stmt = (
            select(RevisionWorkflow.status, func.count(RevisionWorkflow.id))
            .join(DeliverableVersion, RevisionWorkflow.version_id == DeliverableVersion.id)
            .join(Deliverable, DeliverableVersion.deliverable_id == Deliverable.id)
            .where(Deliverable.project_id == project_id)
            .group_by(RevisionWorkflow.status)
        )
        if tenant_id is not None:
            count_stmt = count_stmt.where(Deliverable.tenant_id == tenant_id)
        by_status = {s: 0 for s in sorted(WORKFLOW_STATUSES)}
        by_status.update({status: count for status, count in db.session.execute(count_stmt).all()})

        return {"items": items, "total": len(items), "by_status": by_status}


def get_revision_workflow_service() -> RevisionWorkflowService:
    """Service configured from the current app, cached per app."""
    service = current_app.extensions.get("revision_workflow_service")
    if service is None:
        service = RevisionWorkflowService.from_config(current_app.config)
        current_app.extensions["revision_workflow_service"] = service
    return service
