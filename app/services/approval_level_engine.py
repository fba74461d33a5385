"""
Approval Level Engine — decision recording and quorum evaluation for one
ApprovalLevel.

Responsibilities:
    - Resolve the acting identity to a LevelApprover row (ApproverResolver).
    - Apply the decision to that row; decisions are idempotent per actor, so
      a later decision overwrites the earlier one.
    - Append a LevelComment when the decision carries a comment.
    - Answer "is the quorum met?" without side effects.

Rules:
    - No commits here. The orchestrator owns the transaction; this module
      only adds/flushes.
    - max_approvers is advisory capacity and is not enforced.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.core.exceptions import ValidationError
from app.models import db
from app.models.revision import DECISION_ACTIONS, ApprovalLevel, LevelApprover, LevelComment
from app.services.review_capabilities import ReviewActor

logger = logging.getLogger(__name__)

# Decision action → LevelComment.comment_type
COMMENT_TYPE_BY_ACTION = {
    "request_revision": "revision_request",
    "approve": "approval_note",
    "reject": "feedback",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApproverResolver:
    """Map an actor onto the level's approver rows.

    Precedence:
        1. a row bound to the actor's id;
        2. a row with the actor's display name that is not bound to a
           different identity (pre-seeded approvers and unregistered
           external reviewers). The row is bound to the actor's id;
        3. a new ``pending`` row tagged with the actor's category.
    """

    def find(self, level: ApprovalLevel, actor: ReviewActor) -> LevelApprover | None:
        if actor.id:
            for approver in level.approvers:
                if approver.approver_id == actor.id:
                    return approver

        name = actor.display_name
        for approver in level.approvers:
            if approver.approver_name == name and approver.approver_id in (None, actor.id):
                return approver
        return None

    def resolve(self, level: ApprovalLevel, actor: ReviewActor) -> tuple[LevelApprover, bool]:
        """Return ``(approver, created)``."""
        approver = self.find(level, actor)
        if approver is not None:
            if actor.id and approver.approver_id is None:
                approver.approver_id = actor.id
            if actor.email and not approver.approver_email:
                approver.approver_email = actor.email
            return approver, False

        approver = LevelApprover(
            level=level,
            approver_type=actor.category,
            approver_id=actor.id,
            approver_name=actor.display_name,
            approver_email=actor.email,
            status="pending",
        )
        db.session.add(approver)
        return approver, True


class ApprovalLevelEngine:
    """Stateless engine; one instance can serve every level."""

    def __init__(self, resolver: ApproverResolver | None = None):
        self.resolver = resolver or ApproverResolver()

    def record_decision(
        self,
        level: ApprovalLevel,
        actor: ReviewActor,
        action: str,
        comment: str | None = None,
        delegate_to: str | None = None,
    ) -> list[LevelApprover]:
        """Record ``actor``'s decision on ``level`` and return the approver set.

        approve            → approved (+ approved_at)
        reject             → rejected (+ rejected_at)
        request_revision   → delegated when a delegate target is given;
                             otherwise the approver status is untouched.

        Raises:
            ValidationError: unknown action.
        """
        if not isinstance(action, str) or action not in DECISION_ACTIONS:
            raise ValidationError(
                f"Unknown action '{action}'",
                details={"action": sorted(DECISION_ACTIONS)},
            )

        approver, created = self.resolver.resolve(level, actor)
        now = _utcnow()

        if action == "approve":
            approver.status = "approved"
            approver.approved_at = now
            approver.decided_at = now
        elif action == "reject":
            approver.status = "rejected"
            approver.rejected_at = now
            approver.decided_at = now
        elif action == "request_revision" and delegate_to:
            approver.status = "delegated"
            approver.delegated_to = delegate_to
            approver.decided_at = now

        if comment:
            approver.comments = comment
            db.session.add(LevelComment(
                level=level,
                comment_type=COMMENT_TYPE_BY_ACTION[action],
                content=comment,
                author_type=actor.category,
                author_id=actor.id,
                author_name=actor.display_name,
                is_internal=False,
            ))

        db.session.flush()
        logger.debug(
            "Decision recorded level_id=%s approver=%s action=%s created=%s",
            level.id, approver.approver_name, action, created,
        )
        return list(level.approvers)

    @staticmethod
    def approved_count(level: ApprovalLevel) -> int:
        return sum(1 for a in level.approvers if a.status == "approved")

    def is_quorum_met(self, level: ApprovalLevel) -> bool:
        """True once at least ``min_approvers`` approvers have approved. Pure."""
        return self.approved_count(level) >= level.min_approvers
