"""
Deliverable Review Platform
Blueprint helpers shared by the review endpoints.
"""

from flask import request

from app.core.exceptions import ValidationError
from app.services.review_capabilities import ReviewActor


def current_actor(default_category="employee") -> ReviewActor:
    """Build the caller identity from upstream-resolved headers.

    Headers:
        X-User-Id     — stable identity id
        X-User-Name   — display name
        X-User-Email  — email
        X-User-Role   — actor category (client | employee | manager | director)
    """
    def _header(name):
        value = request.headers.get(name, "").strip()
        return value or None

    return ReviewActor(
        id=_header("X-User-Id"),
        name=_header("X-User-Name"),
        email=_header("X-User-Email"),
        category=(_header("X-User-Role") or default_category).lower(),
    )


def json_body() -> dict:
    """Return the JSON object body, or raise ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_field(data, field, required=False):
    """Read an integer field from a body/args mapping."""
    value = data.get(field)
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer") from exc
