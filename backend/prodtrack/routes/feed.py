# Overview: Polling endpoint over the change feed: full snapshot plus rows changed since a timestamp.

from flask import Blueprint, jsonify, request

from ..decorators import json_errors
from ..models import InventoryQuantity, Transaction, WorkStation
from ..extensions import db
from ..services import change_feed
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from ..validation import NotFoundError, ValidationError

feed_bp = Blueprint("feed", __name__, url_prefix="/api/feed")

_CHANGED_SINCE = {
    change_feed.CHANNEL_TRANSACTIONS: (Transaction, Transaction.updated_at),
    change_feed.CHANNEL_INVENTORY: (InventoryQuantity, InventoryQuantity.updated_at),
    change_feed.CHANNEL_WORK_STATIONS: (WorkStation, WorkStation.last_updated),
}


@feed_bp.get("/<channel>")
@json_errors("read change feed")
def read_feed(channel: str):
    """
    Without ?since=: the channel snapshot.
    With ?since=<iso>: only rows changed at or after that instant.

    The response carries "as_of"; pass it back as the next ?since=.
    """
    if channel not in change_feed.CHANNELS:
        raise NotFoundError(f"Unknown channel {channel!r}")

    as_of = utcnow()
    raw = request.args.get("since")
    if not raw:
        return jsonify({
            "channel": channel,
            "snapshot": change_feed.get_snapshot(channel),
            "as_of": to_utc_z(as_of),
        }), 200

    try:
        since = parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError("since must be an ISO-8601 datetime")

    model, column = _CHANGED_SINCE[channel]
    rows = db.session.query(model).filter(column >= since).order_by(column.asc()).all()
    return jsonify({
        "channel": channel,
        "changes": [row.to_dict() for row in rows],
        "as_of": to_utc_z(as_of),
    }), 200
