"""
Deliverable Blueprint — deliverables, versions and version comments.

Endpoints:
    POST   /api/v1/projects/<pid>/deliverables
           Body: { "tenant_id": <int>, "title": "...", "deliverable_type": "...",
                   "description": "..." }
    GET    /api/v1/deliverables/<did>
    POST   /api/v1/deliverables/<did>/versions
           Body: { "file_url": "...", "change_log": "..." }

    GET    /api/v1/deliverables/<did>/versions/<vid>/comments
    POST   /api/v1/deliverables/<did>/versions/<vid>/comments
           Body: { "content": "...", "comment_type": "general",
                   "parent_comment_id": <int optional>, "file_reference": "...",
                   "attachments": [...] }
    PATCH  /api/v1/deliverables/<did>/versions/<vid>/comments
           Body: { "comment_id": <int>, "is_resolved": true|false }

Layer contract:
    - Blueprint: parse input, resolve caller identity, call service.
    - NO db.session calls here.
"""

import logging

from flask import Blueprint, jsonify

from app.blueprints import current_actor, int_field, json_body
from app.core.exceptions import ValidationError
from app.services import deliverable_service, version_comment_service
from app.utils.errors import register_review_error_handlers

logger = logging.getLogger(__name__)

deliverable_bp = Blueprint("deliverable", __name__, url_prefix="/api/v1")
register_review_error_handlers(deliverable_bp)


# ── Deliverables ───────────────────────────────────────────────────────────────


@deliverable_bp.route("/projects/<int:project_id>/deliverables", methods=["POST"])
def create_deliverable(project_id: int):
    data = json_body()
    actor = current_actor()
    deliverable = deliverable_service.create_deliverable(
        tenant_id=int_field(data, "tenant_id", required=True),
        project_id=project_id,
        title=data.get("title"),
        deliverable_type=data.get("deliverable_type"),
        description=data.get("description"),
        created_by=actor.id or actor.name,
    )
    return jsonify(deliverable), 201


@deliverable_bp.route("/deliverables/<int:deliverable_id>", methods=["GET"])
def get_deliverable(deliverable_id: int):
    return jsonify(deliverable_service.get_deliverable(deliverable_id)), 200


@deliverable_bp.route("/deliverables/<int:deliverable_id>/versions", methods=["POST"])
def create_version(deliverable_id: int):
    data = json_body()
    actor = current_actor()
    version = deliverable_service.create_version(
        deliverable_id,
        file_url=data.get("file_url"),
        change_log=data.get("change_log"),
        created_by=actor.id or actor.name,
    )
    return jsonify(version), 201


# ── Version comments ───────────────────────────────────────────────────────────


@deliverable_bp.route(
    "/deliverables/<int:deliverable_id>/versions/<int:version_id>/comments",
    methods=["GET"],
)
def list_comments(deliverable_id: int, version_id: int):
    comments = version_comment_service.list_comments(deliverable_id, version_id)
    return jsonify({"items": comments, "total": len(comments)}), 200


@deliverable_bp.route(
    "/deliverables/<int:deliverable_id>/versions/<int:version_id>/comments",
    methods=["POST"],
)
def add_comment(deliverable_id: int, version_id: int):
    data = json_body()
    comment = version_comment_service.add_comment(
        deliverable_id,
        version_id,
        author=current_actor().validate(),
        content=data.get("content"),
        comment_type=data.get("comment_type") or "general",
        file_reference=data.get("file_reference"),
        parent_comment_id=int_field(data, "parent_comment_id"),
        attachments=data.get("attachments"),
    )
    return jsonify(comment), 201


@deliverable_bp.route(
    "/deliverables/<int:deliverable_id>/versions/<int:version_id>/comments",
    methods=["PATCH"],
)
def resolve_comment(deliverable_id: int, version_id: int):
    data = json_body()
    is_resolved = data.get("is_resolved", True)
    if not isinstance(is_resolved, bool):
        raise ValidationError("is_resolved must be a boolean", details={"is_resolved": is_resolved})
    comment = version_comment_service.resolve_comment(
        deliverable_id,
        version_id,
        comment_id=int_field(data, "comment_id", required=True),
        resolver=current_actor().validate(),
        resolved=is_resolved,
    )
    return jsonify(comment), 200
