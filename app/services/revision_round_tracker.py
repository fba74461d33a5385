"""
Revision Round Tracker — append-only ledger of rework cycles.

A workflow starts at round 1 without a ledger row; each "request revision"
appends a RevisionRound numbered ``workflow.revision_round + 1``. The
orchestrator applies the new number to the workflow in the same transaction.

This module never reads or mutates levels or the checklist, and never
commits.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from app.models import db
from app.models.revision import RevisionRound, RevisionWorkflow

logger = logging.getLogger(__name__)


class RevisionRoundTracker:

    def start_new_round(
        self,
        workflow: RevisionWorkflow,
        requested_by: str | None,
        reason: str,
        requested_changes: str | None = None,
        requested_by_id: str | None = None,
    ) -> RevisionRound:
        """Append the next round for ``workflow`` (flush only)."""
        rnd = RevisionRound(
            workflow=workflow,
            round_number=self.current_round_number(workflow) + 1,
            status="in_progress",
            requested_by=requested_by,
            requested_by_id=requested_by_id,
            reason=reason,
            requested_changes=requested_changes,
        )
        db.session.add(rnd)
        db.session.flush()
        logger.info(
            "Revision round opened",
            extra={"workflow_id": workflow.id, "round_number": rnd.round_number},
        )
        return rnd

    @staticmethod
    def current_round_number(workflow: RevisionWorkflow) -> int:
        """Round the workflow is in; 1 until the first revision request."""
        return workflow.revision_round

    @staticmethod
    def list_rounds(workflow_id: int) -> list[RevisionRound]:
        """Round history, newest first."""
        return list(db.session.execute(
            select(RevisionRound)
            .where(RevisionRound.workflow_id == workflow_id)
            .order_by(RevisionRound.round_number.desc())
        ).scalars())
