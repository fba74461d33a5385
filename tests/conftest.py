"""
Shared pytest fixtures for the Deliverable Review Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_tenant: Pre-created Tenant entity
    - deliverable / version: a deliverable with one draft version
    - actor: factory for ReviewActor identities
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.tenant import Tenant
from app.services.review_capabilities import ReviewActor


def _ensure_default_tenant():
    """Create a default tenant for tests if it doesn't exist. Returns the id."""
    t = _db.session.execute(
        _db.select(Tenant).filter_by(slug="test-default")
    ).scalar_one_or_none()
    if not t:
        t = Tenant(name="Test Default", slug="test-default")
        _db.session.add(t)
        _db.session.commit()
    return t.id


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        app.extensions.pop("revision_workflow_service", None)
        _ensure_default_tenant()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def default_tenant():
    """Return the auto-created default test tenant."""
    return _db.session.execute(
        _db.select(Tenant).filter_by(slug="test-default")
    ).scalar_one()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def deliverable(default_tenant):
    """A deliverable in project 1 with no versions."""
    from app.services import deliverable_service
    return deliverable_service.create_deliverable(
        tenant_id=default_tenant.id,
        project_id=1,
        title="Blueprint Document",
        deliverable_type="document",
    )


@pytest.fixture()
def version(deliverable):
    """Version 1 (draft) of ``deliverable``."""
    from app.services import deliverable_service
    return deliverable_service.create_version(deliverable["id"], file_url="s3://docs/bp-v1.pdf")


@pytest.fixture()
def actor():
    """Factory: actor("Alice", "manager") → ReviewActor(id="alice", ...)."""
    def _make(name, category="employee", id=None, email=None):
        return ReviewActor(
            id=id if id is not None else name.lower(),
            name=name,
            email=email,
            category=category,
        )
    return _make
