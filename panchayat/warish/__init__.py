from flask import Blueprint

warish_bp = Blueprint("warish", __name__, url_prefix="/warish")

from panchayat.warish import routes  # noqa: E402,F401
