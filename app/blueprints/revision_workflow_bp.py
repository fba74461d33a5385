"""
Revision Workflow Blueprint — multi-level review of deliverable versions.

Endpoints:
    POST   /api/v1/deliverables/<did>/revision-workflow
           Body: { "version_id": <int optional>, "workflow_type": "structured",
                   "levels": [ { "level_number": 1, "name": "...",
                                 "approver_type": "manager", "min_approvers": 1,
                                 "approver_name": "...", "deadline": "ISO" }, ... ],
                   "checklist_template_id": <int optional> }
           Returns: 201 with the nested workflow.
    GET    /api/v1/deliverables/<did>/revision-workflow
           Returns: deliverable with every version's workflow and comments.
    GET    /api/v1/deliverables/<did>/versions/<vid>/revision-workflow
    POST   /api/v1/deliverables/<did>/versions/<vid>/revision-workflow/levels/<lid>/decision
           Body: { "action": "approve|reject|request_revision",
                   "comment": "...", "delegate_to": "..." }
    GET    /api/v1/projects/<pid>/revision-workflows
           Query: tenant_id (optional)

Caller identity: X-User-Id / X-User-Name / X-User-Email / X-User-Role.

Layer contract:
    - Blueprint: parse input, resolve caller identity, call service.
    - Guards (state, capability, ownership) live in the service; their
      exceptions are mapped by register_review_error_handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import current_actor, int_field, json_body
from app.core.exceptions import NotFoundError
from app.services import deliverable_service
from app.services.revision_workflow_service import get_revision_workflow_service
from app.utils.errors import register_review_error_handlers

logger = logging.getLogger(__name__)

revision_workflow_bp = Blueprint("revision_workflow", __name__, url_prefix="/api/v1")
register_review_error_handlers(revision_workflow_bp)


@revision_workflow_bp.route("/deliverables/<int:deliverable_id>/revision-workflow", methods=["POST"])
def create_workflow(deliverable_id: int):
    data = json_body()
    actor = current_actor()
    workflow = get_revision_workflow_service().create_workflow_for_deliverable(
        deliverable_id,
        version_id=int_field(data, "version_id"),
        workflow_type=data.get("workflow_type") or "structured",
        levels=data.get("levels"),
        checklist_template_id=int_field(data, "checklist_template_id"),
        created_by=actor if (actor.id or actor.name or actor.email) else None,
    )
    return jsonify(workflow), 201


@revision_workflow_bp.route("/deliverables/<int:deliverable_id>/revision-workflow", methods=["GET"])
def get_deliverable_review(deliverable_id: int):
    return jsonify(get_revision_workflow_service().get_deliverable_review(deliverable_id)), 200


@revision_workflow_bp.route(
    "/deliverables/<int:deliverable_id>/versions/<int:version_id>/revision-workflow",
    methods=["GET"],
)
def get_workflow(deliverable_id: int, version_id: int):
    deliverable_service.get_version(deliverable_id, version_id)
    return jsonify(get_revision_workflow_service().get_workflow(version_id)), 200


@revision_workflow_bp.route(
    "/deliverables/<int:deliverable_id>/versions/<int:version_id>"
    "/revision-workflow/levels/<int:level_id>/decision",
    methods=["POST"],
)
def decide(deliverable_id: int, version_id: int, level_id: int):
    """Record an approver decision on a level.

    Returns 200 with the updated workflow; 400 bad input, 403 capability
    denied, 404 ownership chain broken, 409 finalized workflow or closed level.
    """
    data = json_body()
    action = data.get("action")
    try:
        deliverable_service.get_version(deliverable_id, version_id)
    except NotFoundError:
        # Hide whether the level exists when the URL prefix is wrong.
        raise NotFoundError(resource="ApprovalLevel", resource_id=level_id) from None

    workflow = get_revision_workflow_service().decide(
        version_id,
        level_id,
        actor=current_actor(),
        action=action.strip() if isinstance(action, str) else action,
        comment=data.get("comment"),
        delegate_to=data.get("delegate_to"),
    )
    return jsonify(workflow), 200


@revision_workflow_bp.route("/projects/<int:project_id>/revision-workflows", methods=["GET"])
def list_project_workflows(project_id: int):
    tenant_id = int_field(request.args, "tenant_id")
    return jsonify(get_revision_workflow_service().list_project_workflows(project_id, tenant_id=tenant_id)), 200
