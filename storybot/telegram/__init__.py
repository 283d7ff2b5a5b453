from flask import Blueprint

bp = Blueprint("telegram", __name__, url_prefix="/telegram")

from . import routes  # noqa: E402,F401
