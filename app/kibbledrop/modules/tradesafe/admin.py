from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.tradesafe.config import config_status
from app.kibbledrop.modules.tradesafe.models import Trade
from app.kibbledrop.modules.tradesafe.service import serialize_trade
from app.kibbledrop.rbac import require_permission

bp = Blueprint("tradesafe_admin", __name__)


@bp.get("/tradesafe/config-status")
@require_permission("payments.view")
def tradesafe_config_status():
    return jsonify(config_status(current_app.config))


@bp.get("/tradesafe/trades")
@require_permission("payments.view")
def tradesafe_trades():
    s = db_session()
    status = (request.args.get("status") or "").strip().upper()
    q = s.query(Trade)
    if status:
        q = q.filter(Trade.status == status)
    trades = q.order_by(Trade.created_at.desc(), Trade.id.desc()).all()
    return jsonify([serialize_trade(t) for t in trades])
