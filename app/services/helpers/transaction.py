"""
Transaction scope helper for review services.

Every mutating review operation (create_workflow, decide, update_check, …)
runs inside ``atomic()`` so that all of its writes commit together or not at
all. A half-applied decision (level approved but workflow not advanced) is
never observable.

Usage:
    with atomic("decide"):
        ...mutate ORM objects...
    # committed here; on any exception the session is rolled back

SQLAlchemy failures (flush or commit) surface as TransactionError; any other
exception (NotFoundError, ValidationError, …) rolls back and propagates
unchanged. No retry is attempted.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import TransactionError
from app.models import db

logger = logging.getLogger(__name__)


@contextmanager
def atomic(operation: str):
    """Run the block as a single unit of work on ``db.session``."""
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Transaction failed during %s", operation)
        raise TransactionError(operation, exc) from exc
    except Exception:
        db.session.rollback()
        raise
