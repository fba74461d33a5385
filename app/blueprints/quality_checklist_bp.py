"""
Quality Checklist Blueprint — checklist reads, check updates and templates.

Endpoints:
    GET    /api/v1/deliverables/<did>/quality-checklist
           Returns: { "checklist": {...} | null } for the latest version.
    POST   /api/v1/deliverables/<did>/quality-checklist
           Body: { "check_id": <int>, "status": "pending|in_progress|passed|failed|n_a",
                   "notes": "...", "evidence": ["..."], "score": 0-100,
                   "version_id": <int optional> }
           Returns: 200 with the recomputed checklist.

    GET    /api/v1/quality-checklist-templates?tenant_id=<int>
    POST   /api/v1/quality-checklist-templates
           Body: { "tenant_id": <int>, "name": "...", "description": "...",
                   "items": [ { "name": "...", "category": "...",
                                "is_required": true }, ... ] }
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import current_actor, int_field, json_body
from app.services import quality_gate_service
from app.utils.errors import register_review_error_handlers

logger = logging.getLogger(__name__)

quality_checklist_bp = Blueprint("quality_checklist", __name__, url_prefix="/api/v1")
register_review_error_handlers(quality_checklist_bp)


@quality_checklist_bp.route("/deliverables/<int:deliverable_id>/quality-checklist", methods=["GET"])
def get_checklist(deliverable_id: int):
    return jsonify({"checklist": quality_gate_service.get_checklist(deliverable_id)}), 200


@quality_checklist_bp.route("/deliverables/<int:deliverable_id>/quality-checklist", methods=["POST"])
def update_check(deliverable_id: int):
    data = json_body()
    actor = current_actor()
    checklist = quality_gate_service.update_check(
        deliverable_id,
        int_field(data, "check_id", required=True),
        data.get("status"),
        notes=data.get("notes"),
        evidence=data.get("evidence"),
        score=data.get("score"),
        checker=actor if (actor.id or actor.name or actor.email) else None,
        version_id=int_field(data, "version_id"),
    )
    return jsonify(checklist), 200


@quality_checklist_bp.route("/quality-checklist-templates", methods=["GET"])
def list_templates():
    tenant_id = int_field(request.args, "tenant_id", required=True)
    items = quality_gate_service.list_templates(tenant_id)
    return jsonify({"items": items, "total": len(items)}), 200


@quality_checklist_bp.route("/quality-checklist-templates", methods=["POST"])
def create_template():
    data = json_body()
    template = quality_gate_service.create_template(
        tenant_id=int_field(data, "tenant_id", required=True),
        name=data.get("name"),
        items=data.get("items"),
        description=data.get("description"),
    )
    return jsonify(template), 201
