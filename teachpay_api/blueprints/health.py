from flask import Blueprint
from sqlalchemy import text

from teachpay_api.common.http import ok
from teachpay_api.extensions import db

bp = Blueprint("health", __name__, url_prefix="/api")


@bp.get("/health")
def health():
    db.session.execute(text("SELECT 1"))
    return ok({"status": "ok"})
