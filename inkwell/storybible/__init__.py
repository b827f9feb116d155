from flask import Blueprint

bp = Blueprint("storybible", __name__, url_prefix="/storybible")

from . import routes  # noqa: E402,F401
