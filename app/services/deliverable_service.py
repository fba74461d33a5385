"""
Deliverable Service — deliverables and their versions.

Version numbers are monotonic per deliverable: create_version() locks the
deliverable row and takes max(version_number) + 1. The unique constraint on
(deliverable_id, version_number) backs this up; a lost race surfaces as
TransactionError.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.deliverable import Deliverable, DeliverableVersion
from app.models.tenant import Tenant
from app.services.helpers.transaction import atomic
from app.utils.helpers import optional_text

logger = logging.getLogger(__name__)


def create_deliverable(
    tenant_id: int,
    project_id: int,
    title: str,
    deliverable_type: str | None = None,
    description: str | None = None,
    created_by: str | None = None,
) -> dict:
    title = optional_text(title, "title")
    if not title:
        raise ValidationError("title is required")
    deliverable_type = optional_text(deliverable_type, "deliverable_type")
    description = optional_text(description, "description")

    with atomic("create_deliverable"):
        if db.session.get(Tenant, tenant_id) is None:
            raise NotFoundError(resource="Tenant", resource_id=tenant_id)
        deliverable = Deliverable(
            tenant_id=tenant_id,
            project_id=project_id,
            title=title,
            deliverable_type=deliverable_type or "document",
            description=description or "",
            created_by=created_by,
        )
        db.session.add(deliverable)
        db.session.flush()
        deliverable_id = deliverable.id

    logger.info("Deliverable created", extra={"tenant_id": tenant_id, "deliverable_id": deliverable_id})
    return get_deliverable(deliverable_id)


def get_deliverable(deliverable_id: int) -> dict:
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None:
        raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)
    return deliverable.to_dict(include_versions=True)


def get_version(deliverable_id: int, version_id: int) -> DeliverableVersion:
    """Return the version if it belongs to the deliverable.

    Raises:
        NotFoundError: missing, or owned by another deliverable.
    """
    version = db.session.get(DeliverableVersion, version_id)
    if version is None or version.deliverable_id != deliverable_id:
        raise NotFoundError(resource="DeliverableVersion", resource_id=version_id)
    return version


def _next_version_number(deliverable_id: int) -> int:
    current = db.session.execute(
        select(func.max(DeliverableVersion.version_number))
        .where(DeliverableVersion.deliverable_id == deliverable_id)
    ).scalar()
    return (current or 0) + 1


def _add_version(deliverable, file_url=None, change_log=None, created_by=None) -> DeliverableVersion:
    version = DeliverableVersion(
        deliverable=deliverable,
        version_number=_next_version_number(deliverable.id),
        status="draft",
        file_url=file_url,
        change_log=change_log,
        created_by=created_by,
    )
    db.session.add(version)
    db.session.flush()
    return version


def create_version(
    deliverable_id: int,
    file_url: str | None = None,
    change_log: str | None = None,
    created_by: str | None = None,
) -> dict:
    """Append the next version (draft) to a deliverable."""
    file_url = optional_text(file_url, "file_url")
    change_log = optional_text(change_log, "change_log")
    with atomic("create_version"):
        deliverable = db.session.execute(
            select(Deliverable).where(Deliverable.id == deliverable_id).with_for_update()
        ).scalar_one_or_none()
        if deliverable is None:
            raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)
        version = _add_version(deliverable, file_url, change_log, created_by)
        result = version.to_dict()

    logger.info(
        "Deliverable version created v%s", result["version_number"],
        extra={"tenant_id": deliverable.tenant_id, "version_id": result["id"]},
    )
    return result


def latest_or_initial_version(deliverable, created_by: str | None = None) -> DeliverableVersion:
    """Latest version, or a new version 1 when there is none (flush only)."""
    version = deliverable.latest_version()
    if version is not None:
        return version
    return _add_version(deliverable, created_by=created_by)
