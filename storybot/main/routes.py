from flask import current_app, jsonify

from ..controller import ControllerSettings, build_status_snapshot
from ..session import utcnow
from ..store import load_session
from . import bp


@bp.route("/")
def index():
    settings = ControllerSettings.from_config(current_app.config)
    session = load_session(settings.authorized_user_id or "unconfigured")
    session.usage.reset_if_new_day()

    payload = build_status_snapshot(session, settings.limits)
    payload["features"] = [
        "Universal writing rules",
        "Story-specific bibles",
        "Multi-story support",
        "Auto message splitting",
        "Chapter versioning",
        "Chapter continuation",
        "Cost tracking",
    ]
    payload["timestamp"] = utcnow().isoformat(timespec="seconds")
    return jsonify(payload)
