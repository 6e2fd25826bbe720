from flask import Blueprint

library_bp = Blueprint("library", __name__, url_prefix="/api/v1")

from app.library import routes  # noqa: E402,F401
