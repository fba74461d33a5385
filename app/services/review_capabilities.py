"""
Review capability matrix — which actor categories may take which decision
actions on which kind of approval level.

The matrix is keyed by the level's ``approver_type`` and then by the acting
identity's category:

    DEFAULT_CAPABILITY_MATRIX["manager"]["director"] == {"approve", "reject", "request_revision"}

An instance of ReviewCapabilities is injected into the workflow
orchestrator; tests and tenants with looser rules can pass their own matrix
or ``ReviewCapabilities.permissive()``.

``specific_user`` levels additionally require the actor to be the level's
designated approver (matched by id, else by name) when one is recorded.

Usage:
    from app.services.review_capabilities import ReviewActor, ReviewCapabilities

    caps = ReviewCapabilities()
    caps.check(actor, level, "approve")     # raises PermissionDenied
"""

from dataclasses import dataclass

from app.core.exceptions import ValidationError
from app.models.revision import DECISION_ACTIONS

ACTOR_CATEGORIES = frozenset({"client", "employee", "manager", "director"})

_ALL = frozenset(DECISION_ACTIONS)
_REVISION_ONLY = frozenset({"request_revision"})

DEFAULT_CAPABILITY_MATRIX = {
    "client": {
        "client": _ALL,
        "director": _ALL,
        "manager": _REVISION_ONLY,
        "employee": _REVISION_ONLY,
    },
    "employee": {
        "employee": _ALL,
        "manager": _ALL,
        "director": _ALL,
    },
    "manager": {
        "manager": _ALL,
        "director": _ALL,
        "employee": _REVISION_ONLY,
    },
    "director": {
        "director": _ALL,
        "manager": _REVISION_ONLY,
        "employee": _REVISION_ONLY,
    },
    "specific_user": {
        "client": _ALL,
        "employee": _ALL,
        "manager": _ALL,
        "director": _ALL,
    },
}


class PermissionDenied(Exception):
    """Raised when an actor's category does not permit an action on a level."""

    def __init__(self, actor_name: str, action: str, level_type: str, reason: str | None = None):
        msg = f"{actor_name} may not '{action}' on a {level_type} level"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.actor_name = actor_name
        self.action = action
        self.level_type = level_type
        self.reason = reason


@dataclass(frozen=True)
class ReviewActor:
    """Caller identity, already resolved by the authentication layer.

    Any of id / name / email may be missing for unregistered external
    reviewers; ``display_name`` falls back through them in that order.
    """

    id: str | None = None
    name: str | None = None
    email: str | None = None
    category: str = "employee"

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id or "anonymous"

    def validate(self) -> "ReviewActor":
        if self.category not in ACTOR_CATEGORIES:
            raise ValidationError(
                f"Unknown actor category '{self.category}'",
                details={"category": sorted(ACTOR_CATEGORIES)},
            )
        if not (self.id or self.name or self.email):
            raise ValidationError("Actor identity is required (id, name or email)")
        return self


class ReviewCapabilities:
    """Explicit actor-category → permitted-actions check per level type."""

    def __init__(self, matrix: dict | None = None, enforce: bool = True):
        self.matrix = matrix if matrix is not None else DEFAULT_CAPABILITY_MATRIX
        self.enforce = enforce

    @classmethod
    def permissive(cls) -> "ReviewCapabilities":
        """Every category may take every action (legacy behaviour)."""
        return cls(enforce=False)

    def allowed_actions(self, level_type: str, actor_category: str) -> frozenset:
        if not self.enforce:
            return _ALL
        return frozenset(self.matrix.get(level_type, {}).get(actor_category, ()))

    def can(self, actor: ReviewActor, level, action: str) -> bool:
        try:
            self.check(actor, level, action)
        except PermissionDenied:
            return False
        return True

    def check(self, actor: ReviewActor, level, action: str) -> None:
        if action not in self.allowed_actions(level.approver_type, actor.category):
            raise PermissionDenied(actor.display_name, action, level.approver_type)

        if self.enforce and level.approver_type == "specific_user" and not _is_designated(actor, level):
            raise PermissionDenied(
                actor.display_name, action, level.approver_type,
                reason="only the designated approver may act on this level",
            )


def _is_designated(actor: ReviewActor, level) -> bool:
    if level.approver_id:
        return actor.id == level.approver_id
    if level.approver_name:
        return actor.display_name == level.approver_name
    return True
