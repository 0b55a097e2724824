# Overview: Flask API routes for the transaction log; parses filters and returns JSON.

from flask import Blueprint, g, jsonify, request

from ..decorators import json_errors, require_actor
from ..services import transaction_service
from ..services.concurrency import run_in_transaction
from ..services.transaction_service import DEFAULT_QUERY_LIMIT, TransactionFilter
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _parse_date(name: str):
    raw = request.args.get(name)
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


def _parse_flag(name: str, default: bool) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@transactions_bp.get("")
@json_errors("query transactions")
def list_transactions():
    """
    Query the transaction log, newest first.

    Query params (all optional):
    - sku, location, transaction_type, status, performed_by
    - date_from, date_to: ISO-8601, inclusive
    - search: substring of sku, item name, notes or reference
    - include_rectifications: bool (default true)
    - limit: int (default 500)
    """
    criteria = TransactionFilter(
        sku=request.args.get("sku"),
        location=request.args.get("location"),
        transaction_type=request.args.get("transaction_type"),
        status=request.args.get("status"),
        performed_by=request.args.get("performed_by"),
        date_from=_parse_date("date_from"),
        date_to=_parse_date("date_to"),
        search_term=request.args.get("search"),
        include_rectifications=_parse_flag("include_rectifications", True),
        limit=request.args.get("limit", DEFAULT_QUERY_LIMIT),
    )
    rows = transaction_service.query_transactions(criteria)
    return jsonify({"transactions": [txn.to_dict() for txn in rows], "count": len(rows)}), 200


@transactions_bp.get("/<int:transaction_id>")
@json_errors("load transaction")
def get_transaction(transaction_id: int):
    return jsonify(transaction_service.get_transaction(transaction_id).to_dict()), 200


@transactions_bp.post("/conclude")
@require_actor
@json_errors("conclude transactions")
def conclude_transactions():
    """
    Stamp concluded_at on resolved transactions (period close).

    Request body: {"ids": [int, ...]}
    """
    data = request.get_json(silent=True) or {}
    ids = data.get("ids")
    if not isinstance(ids, list):
        raise ValidationError("ids must be a list")
    count = run_in_transaction(lambda: transaction_service.mark_concluded(ids))
    return jsonify({"concluded": count, "by": g.actor}), 200
