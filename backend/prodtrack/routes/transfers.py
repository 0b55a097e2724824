# backend/prodtrack/routes/transfers.py
"""
Transfer API routes: send, confirm with OTP, reject, rectify.
"""
from flask import Blueprint, g, jsonify, request

from prodtrack.decorators import json_errors, require_actor
from prodtrack.services import otp_service, transaction_service, transfer_service
from prodtrack.services.concurrency import run_in_transaction
from prodtrack.services.transfer_service import TransferItem
from prodtrack.validation import NotFoundError, ValidationError


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _parse_items(raw) -> list[TransferItem] | None:
    if raw is None:
        return None
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError("each item must be an object")
        items.append(TransferItem(
            code=entry.get("sku") or entry.get("bom_code"),
            amount=entry.get("amount"),
            item_name=entry.get("item_name"),
        ))
    return items


@transfers_bp.route("", methods=["POST"])
@require_actor
@json_errors("send transfer")
def send_transfer():
    """
    Send stock to a production zone.

    Request body:
    {
        "sku": str (SKU or BOM code; omit when "items" is given),
        "amount": int,
        "destination_zone": int,
        "source_location": str (optional, default "logistics"),
        "items": [{"sku": str, "amount": int}] (optional),
        "notes": str (optional),
        "reference": str (optional),
        "skip_otp": bool (optional)
    }

    Returns:
        201: {transaction, otp, warnings}
        400: Invalid request
    """
    data = request.get_json(silent=True) or {}
    items = _parse_items(data.get("items"))

    result = run_in_transaction(lambda: transfer_service.send_transfer(
        data.get("sku") or data.get("bom_code"),
        data.get("amount"),
        data.get("destination_zone"),
        g.actor,
        source_location=data.get("source_location") or "logistics",
        items=items,
        notes=data.get("notes"),
        reference=data.get("reference"),
        skip_otp=bool(data.get("skip_otp", False)),
    ))
    return jsonify(result.to_dict()), 201


@transfers_bp.route("/<int:transaction_id>/confirm", methods=["POST"])
@require_actor
@json_errors("confirm transfer")
def confirm_transfer(transaction_id: int):
    """
    Confirm receipt with the OTP.

    Returns:
        200: Transfer completed
        404: Transaction not found
        409: Wrong OTP or already resolved
    """
    data = request.get_json(silent=True) or {}
    result = run_in_transaction(
        lambda: transfer_service.confirm_transfer(transaction_id, data.get("otp"), g.actor)
    )
    return jsonify(result.to_dict()), 200


@transfers_bp.route("/<int:transaction_id>/reject", methods=["POST"])
@require_actor
@json_errors("reject transfer")
def reject_transfer(transaction_id: int):
    """
    Reject a pending transfer; the source is re-credited.

    Returns:
        200: Transfer cancelled
        400: Missing reason
        404: Transaction not found
        409: Already resolved
    """
    data = request.get_json(silent=True) or {}
    result = run_in_transaction(
        lambda: transfer_service.reject_transfer(transaction_id, data.get("reason"), g.actor)
    )
    return jsonify(result.to_dict()), 200


@transfers_bp.route("/<int:transaction_id>/rectify", methods=["POST"])
@require_actor
@json_errors("rectify transfer")
def rectify_transfer(transaction_id: int):
    data = request.get_json(silent=True) or {}
    result = run_in_transaction(
        lambda: transfer_service.rectify_transfer(transaction_id, g.actor, data.get("reason"))
    )
    return jsonify(result.to_dict()), 201


@transfers_bp.route("/<int:transaction_id>/otp", methods=["GET"])
@json_errors("load OTP")
def get_transfer_otp(transaction_id: int):
    """Re-display the OTP of a pending transfer on the sender's screen."""
    txn = transaction_service.get_transaction(transaction_id)
    code = otp_service.get_otp(txn.id)
    if code is None:
        raise NotFoundError(f"No OTP for transaction {txn.id}")
    return jsonify({"transaction_id": txn.id, "otp": code}), 200


@transfers_bp.route("/pending", methods=["GET"])
@json_errors("list pending transfers")
def list_pending():
    """Pending transfers waiting at ?location=production_zone_N."""
    location = request.args.get("location")
    if not location:
        raise ValidationError("location is required")
    rows = transaction_service.list_pending_for_location(location)
    return jsonify({"transactions": [txn.to_dict() for txn in rows]}), 200
