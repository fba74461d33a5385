"""
Version Comment Service — threaded, resolvable remarks on a deliverable
version.

Replies reference their parent; a reply must target a comment on the same
version. Listing returns top-level comments newest first, each with its
replies oldest first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.deliverable import VERSION_COMMENT_TYPES, VersionComment
from app.services import deliverable_service
from app.services.helpers.transaction import atomic
from app.services.review_capabilities import ReviewActor
from app.utils.helpers import optional_text

logger = logging.getLogger(__name__)


def list_comments(deliverable_id: int, version_id: int) -> list[dict]:
    version = deliverable_service.get_version(deliverable_id, version_id)
    return [c.to_dict() for c in version.comments if c.parent_comment_id is None]


def add_comment(
    deliverable_id: int,
    version_id: int,
    author: ReviewActor,
    content: str,
    comment_type: str = "general",
    file_reference: str | None = None,
    parent_comment_id: int | None = None,
    attachments: list | None = None,
) -> dict:
    """Add a comment or a reply.

    Raises:
        ValidationError: empty content, unknown type, bad attachments.
        NotFoundError:   version or parent comment outside this version.
    """
    content = optional_text(content, "content")
    if not content:
        raise ValidationError("content is required")
    file_reference = optional_text(file_reference, "file_reference")
    if not isinstance(comment_type, str) or comment_type not in VERSION_COMMENT_TYPES:
        raise ValidationError(
            f"Invalid comment_type '{comment_type}'",
            details={"comment_type": sorted(VERSION_COMMENT_TYPES)},
        )
    if attachments is not None and not isinstance(attachments, list):
        raise ValidationError("attachments must be a list")

    with atomic("add_comment"):
        version = deliverable_service.get_version(deliverable_id, version_id)
        if parent_comment_id is not None:
            parent = db.session.get(VersionComment, parent_comment_id)
            if parent is None or parent.version_id != version.id:
                raise NotFoundError(resource="VersionComment", resource_id=parent_comment_id)

        comment = VersionComment(
            version_id=version.id,
            parent_comment_id=parent_comment_id,
            comment_type=comment_type,
            content=content,
            file_reference=file_reference,
            attachments=attachments or [],
            author_type=author.category,
            author_id=author.id,
            author_name=author.display_name,
        )
        db.session.add(comment)
        db.session.flush()
        result = comment.to_dict()

    logger.info("Version comment added", extra={"version_id": version_id})
    return result


def resolve_comment(
    deliverable_id: int,
    version_id: int,
    comment_id: int,
    resolver: ReviewActor,
    resolved: bool = True,
) -> dict:
    """Mark a comment resolved (or reopen it with ``resolved=False``)."""
    with atomic("resolve_comment"):
        version = deliverable_service.get_version(deliverable_id, version_id)
        comment = db.session.get(VersionComment, comment_id)
        if comment is None or comment.version_id != version.id:
            raise NotFoundError(resource="VersionComment", resource_id=comment_id)

        comment.is_resolved = bool(resolved)
        if resolved:
            comment.resolved_at = datetime.now(timezone.utc)
            comment.resolved_by = resolver.id or resolver.display_name
        else:
            comment.resolved_at = None
            comment.resolved_by = None
        db.session.flush()
        result = comment.to_dict()

    return result
