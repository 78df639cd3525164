from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.analytics.service import load_analytics
from app.kibbledrop.rbac import require_permission
from app.kibbledrop.utils import parse_int

bp = Blueprint("analytics_admin", __name__)

# a century; the previous-window comparison doubles this and must stay a valid date
MAX_PERIOD_DAYS = 36500


@bp.get("/analytics")
@require_permission("analytics.view")
def analytics():
    raw = request.args.get("period")
    period = 30 if raw in (None, "") else parse_int(raw)
    if period is None or period < 1:
        abort(400, description="period must be a positive number of days")
    if period > MAX_PERIOD_DAYS:
        abort(400, description="period out of range")
    return jsonify(load_analytics(db_session(), period))
