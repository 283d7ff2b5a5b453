from __future__ import annotations

from .extensions import db
from .session import utcnow


class SessionSnapshot(db.Model):
    """The whole operator session, stored as one JSON document."""

    __tablename__ = "session_snapshots"

    id = db.Column(db.Integer, primary_key=True)
    operator_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    payload = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<SessionSnapshot {self.operator_id}>"
