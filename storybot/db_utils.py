"""Schema upkeep for the session store, run on every application start."""
from __future__ import annotations

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


def ensure_database_schema() -> None:
    """Create the ``session_snapshots`` table when it does not exist yet."""

    from .models import SessionSnapshot

    try:
        if SessionSnapshot.__tablename__ not in inspect(db.engine).get_table_names():
            SessionSnapshot.__table__.create(bind=db.engine)
    except SQLAlchemyError:
        db.session.rollback()
        raise
