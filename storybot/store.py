"""Load and save the operator :class:`~storybot.session.Session`.

The session is written in full on every save; there is exactly one writer.
"""
from __future__ import annotations

import json

from flask import current_app

from .extensions import db
from .models import SessionSnapshot
from .session import Session


def load_session(operator_id: str) -> Session:
    """Return the stored session for ``operator_id`` or a fresh one."""

    snapshot = SessionSnapshot.query.filter_by(operator_id=str(operator_id)).first()
    if snapshot is None:
        return Session(operator_id=str(operator_id))

    try:
        data = json.loads(snapshot.payload)
    except json.JSONDecodeError as exc:
        current_app.logger.error("Stored session for %s is not valid JSON: %s", operator_id, exc)
        raise

    session = Session.from_dict(data)
    session.operator_id = str(operator_id)
    return session


def save_session(session: Session) -> None:
    payload = json.dumps(session.to_dict(), ensure_ascii=False)
    snapshot = SessionSnapshot.query.filter_by(operator_id=session.operator_id).first()
    if snapshot is None:
        snapshot = SessionSnapshot(operator_id=session.operator_id, payload=payload)
    else:
        snapshot.payload = payload
    db.session.add(snapshot)
    db.session.commit()
