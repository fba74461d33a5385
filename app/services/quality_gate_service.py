"""
Quality Gate Service — checklist templates, check updates and the aggregate
checklist recomputation.

Rules:
    - update_check() validates input, verifies the ownership chain
      (check → checklist → workflow → version → deliverable) and only then
      writes. The check write and the recomputation share one transaction.
    - recompute_checklist() always re-reads every check; it never patches the
      previous aggregate. It is idempotent.
    - passed_at / failed_at are first-reached markers and are never cleared.
      status_changed_at tracks the current status.
    - The checklist outcome is surfaced in workflow snapshots; it never
      mutates workflow state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.deliverable import Deliverable
from app.models.quality import (
    CHECK_STATUSES,
    SCORE_MAX,
    SCORE_MIN,
    QualityCheck,
    QualityChecklist,
    QualityChecklistTemplate,
    QualityCheckTemplateItem,
)
from app.models.tenant import Tenant
from app.services.helpers.transaction import atomic
from app.services.review_capabilities import ReviewActor
from app.services.review_events import AuditTrailSink, ReviewEvent, publish_events
from app.utils.helpers import optional_text

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Pure scoring ──────────────────────────────────────────────────────────────


def compute_checklist_outcome(checks) -> tuple[float | None, str]:
    """Return ``(overall_score, status)`` for a set of checks.

    overall_score: mean of non-null scores, None when nothing is scored.
    status precedence:
        passed       at least one required, applicable (non n_a) check
                     exists and every such check has passed; optional
                     checks never block or grant the pass
        failed       any check failed
        in_progress  any check in progress
        pending      otherwise
    """
    checks = list(checks)
    scores = [c.score for c in checks if c.score is not None]
    overall_score = sum(scores) / len(scores) if scores else None

    required = [c for c in checks if c.is_required and c.status != "n_a"]
    required_passed = sum(1 for c in required if c.status == "passed")

    if required and required_passed == len(required):
        status = "passed"
    elif any(c.status == "failed" for c in checks):
        status = "failed"
    elif any(c.status == "in_progress" for c in checks):
        status = "in_progress"
    else:
        status = "pending"
    return overall_score, status


# ── Validation ────────────────────────────────────────────────────────────────


def _validate_check_input(status, score, evidence, notes=None):
    if not isinstance(status, str) or status not in CHECK_STATUSES:
        raise ValidationError(
            f"Invalid check status '{status}'",
            details={"status": sorted(CHECK_STATUSES)},
        )
    if score is not None:
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise ValidationError("score must be a number", details={"score": score})
        if not SCORE_MIN <= score <= SCORE_MAX:
            raise ValidationError(
                f"score must be between {SCORE_MIN} and {SCORE_MAX}",
                details={"score": score},
            )
    if evidence is not None:
        if not isinstance(evidence, list) or not all(isinstance(e, str) for e in evidence):
            raise ValidationError("evidence must be a list of strings")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")


# ── Recomputation ─────────────────────────────────────────────────────────────


def recompute_checklist(checklist_id: int, reviewed_by: str | None = None) -> QualityChecklist:
    """Recompute score and status from the current checks (flush only).

    Runs inside the caller's transaction; update_check() is the normal entry
    point.
    """
    checklist = db.session.get(QualityChecklist, checklist_id)
    if checklist is None:
        raise NotFoundError(resource="QualityChecklist", resource_id=checklist_id)

    checks = db.session.execute(
        select(QualityCheck).where(QualityCheck.checklist_id == checklist_id)
    ).scalars().all()
    overall_score, status = compute_checklist_outcome(checks)

    now = _utcnow()
    if status != checklist.status:
        checklist.status_changed_at = now
    if status == "passed" and checklist.passed_at is None:
        checklist.passed_at = now
    if status == "failed" and checklist.failed_at is None:
        checklist.failed_at = now

    checklist.overall_score = overall_score
    checklist.status = status
    if reviewed_by:
        checklist.reviewed_by = reviewed_by
    db.session.flush()
    return checklist


# ── Check update ──────────────────────────────────────────────────────────────


def update_check(
    deliverable_id: int,
    check_id: int,
    status: str,
    *,
    notes: str | None = None,
    evidence: list[str] | None = None,
    score: float | None = None,
    checker: ReviewActor | None = None,
    version_id: int | None = None,
    sink=None,
) -> dict:
    """Update one check and recompute its checklist.

    Args:
        deliverable_id: Deliverable the request is scoped to.
        check_id:       QualityCheck PK.
        status:         pending | in_progress | passed | failed | n_a.
        notes, evidence, score: Only written when supplied.
        checker:        Acting identity, recorded as checked_by.
        version_id:     Optional tighter scope; the check must belong to
                        this version's checklist.
        sink:           Event sink for the checklist status change.

    Returns:
        The checklist dict with nested items.

    Raises:
        ValidationError: bad status / score / evidence (before any write).
        NotFoundError:   check missing or outside the deliverable/version.
    """
    _validate_check_input(status, score, evidence, notes)
    sink = sink or AuditTrailSink()
    events: list[ReviewEvent] = []

    with atomic("update_check"):
        check = db.session.get(QualityCheck, check_id)
        if check is None or not _check_belongs_to(check, deliverable_id, version_id):
            raise NotFoundError(resource="QualityCheck", resource_id=check_id)

        checklist_id = check.checklist_id
        db.session.execute(
            select(QualityChecklist.id)
            .where(QualityChecklist.id == checklist_id)
            .with_for_update()
        )
        # Re-read the checklist and its checks under the lock.
        db.session.expire_all()
        checklist = db.session.get(QualityChecklist, checklist_id)
        check = db.session.get(QualityCheck, check_id)
        previous_status = checklist.status

        check.status = status
        if notes is not None:
            check.notes = notes
        if evidence is not None:
            check.evidence = evidence
        if score is not None:
            check.score = float(score)
        if checker is not None:
            check.checked_by = checker.display_name
            check.checked_by_id = checker.id
        check.checked_at = _utcnow()
        db.session.flush()

        checklist = recompute_checklist(
            checklist.id,
            reviewed_by=(checker.id or checker.display_name) if checker else None,
        )
        checklist_id = checklist.id

        if checklist.status != previous_status:
            events.append(ReviewEvent(
                action="quality_checklist.status_change",
                entity_type="quality_checklist",
                entity_id=checklist.id,
                tenant_id=checklist.workflow.version.deliverable.tenant_id,
                actor_name=checker.display_name if checker else None,
                actor_id=checker.id if checker else None,
                payload={
                    "status": {"old": previous_status, "new": checklist.status},
                    "overall_score": checklist.overall_score,
                },
            ))

    logger.info(
        "Quality check updated check_id=%s status=%s checklist_status=%s",
        check_id, status, events[0].payload["status"]["new"] if events else previous_status,
        extra={"checklist_id": checklist_id},
    )
    publish_events(sink, events)
    return db.session.get(QualityChecklist, checklist_id).to_dict()


def _check_belongs_to(check: QualityCheck, deliverable_id: int, version_id: int | None) -> bool:
    checklist = check.checklist
    workflow = checklist.workflow if checklist else None
    version = workflow.version if workflow else None
    if version is None or version.deliverable_id != deliverable_id:
        return False
    return version_id is None or version.id == version_id


# ── Reads ─────────────────────────────────────────────────────────────────────


def get_checklist(deliverable_id: int) -> dict | None:
    """Checklist of the deliverable's latest version, or None if it has none."""
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None:
        raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)

    version = deliverable.latest_version()
    workflow = version.revision_workflow if version else None
    if workflow is None or workflow.checklist is None:
        return None
    return workflow.checklist.to_dict()


# ── Templates ─────────────────────────────────────────────────────────────────


def create_template(
    tenant_id: int,
    name: str,
    items: list[dict],
    description: str | None = None,
) -> dict:
    """Create a checklist template with its items.

    Each item: {name, category?, description?, is_required?}. Item order is
    preserved via sort_order.
    """
    name = optional_text(name, "name")
    if not name:
        raise ValidationError("name is required")
    description = optional_text(description, "description")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    item_defs = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{i}] must be an object")
        item_name = optional_text(item.get("name"), f"items[{i}].name")
        if not item_name:
            raise ValidationError(f"items[{i}].name is required")
        item_defs.append({
            "name": item_name,
            "category": optional_text(item.get("category"), f"items[{i}].category") or "general",
            "description": optional_text(item.get("description"), f"items[{i}].description"),
            "is_required": bool(item.get("is_required", True)),
        })

    with atomic("create_template"):
        if db.session.get(Tenant, tenant_id) is None:
            raise NotFoundError(resource="Tenant", resource_id=tenant_id)

        template = QualityChecklistTemplate(
            tenant_id=tenant_id,
            name=name,
            description=description or "",
        )
        for i, fields in enumerate(item_defs):
            template.items.append(QualityCheckTemplateItem(sort_order=i, **fields))
        db.session.add(template)
        db.session.flush()
        template_id = template.id

    logger.info("Checklist template created", extra={"tenant_id": tenant_id})
    return db.session.get(QualityChecklistTemplate, template_id).to_dict()


def list_templates(tenant_id: int, active_only: bool = True) -> list[dict]:
    stmt = QualityChecklistTemplate.query_for_tenant(tenant_id).order_by(QualityChecklistTemplate.name)
    if active_only:
        stmt = stmt.where(QualityChecklistTemplate.is_active.is_(True))
    return [t.to_dict() for t in db.session.execute(stmt).scalars()]


def seed_checklist(workflow, template_id: int, tenant_id: int) -> QualityChecklist:
    """Attach a pending checklist seeded from a template (flush only).

    Raises:
        NotFoundError: template missing or owned by another tenant.
    """
    template = QualityChecklistTemplate.get_for_tenant(template_id, tenant_id)
    if template is None:
        raise NotFoundError(resource="QualityChecklistTemplate", resource_id=template_id, tenant_id=tenant_id)

    checklist = QualityChecklist(
        workflow=workflow,
        template_id=template.id,
        status="pending",
        status_changed_at=_utcnow(),
    )
    for item in template.items:
        checklist.items.append(QualityCheck(
            name=item.name,
            category=item.category,
            description=item.description,
            is_required=item.is_required,
            sort_order=item.sort_order,
            status="pending",
        ))
    db.session.add(checklist)
    db.session.flush()
    return checklist
