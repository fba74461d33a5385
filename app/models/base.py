"""
TenantModel — Abstract base class for tenant-scoped models.

Deliverables and checklist templates inherit from TenantModel instead of
db.Model directly. This adds:
  - tenant_id FK column with index
  - query_for_tenant(tenant_id) classmethod
  - get_for_tenant(pk, tenant_id) scoped single-row lookup
"""

from sqlalchemy import select

from app.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a select() statement filtered by tenant_id."""
        return select(cls).where(cls.tenant_id == tenant_id)

    @classmethod
    def get_for_tenant(cls, pk, tenant_id):
        """Fetch one row by PK inside the tenant, or None.

        A row from another tenant is indistinguishable from a missing one.
        """
        return db.session.execute(
            select(cls).where(cls.id == pk, cls.tenant_id == tenant_id)
        ).scalar_one_or_none()
