import hmac

from flask import abort, current_app, jsonify, request

from ..bot import get_controller
from ..transport import InboundMessage
from . import bp

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


@bp.route("/webhook", methods=["POST"])
def webhook():
    expected = current_app.config.get("TELEGRAM_WEBHOOK_SECRET") or ""
    if expected and not hmac.compare_digest(request.headers.get(SECRET_HEADER, ""), expected):
        abort(403)

    update = request.get_json(silent=True)
    if not isinstance(update, dict):
        abort(400)

    message = InboundMessage.from_update(update)
    if message is None:
        current_app.logger.debug("Ignoring update without a message: %s", update.get("update_id"))
        return jsonify({"ok": True, "handled": False})

    get_controller().handle(message)
    return jsonify({"ok": True, "handled": True})
