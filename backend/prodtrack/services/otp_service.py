# Overview: OTP gate binding a 4-digit code to each pending transfer.

"""
OTP gate for the sender/receiver handshake.

The sender sees the code and reads it out to the receiver, who must present
it to confirm the transfer. Codes are stored in clear text because the
sender's screen re-displays them; they protect against accidental
confirmation, not against an attacker with database access.

No expiry and no attempt lockout: a pending transfer stays confirmable until
it is confirmed or rejected.
"""
from __future__ import annotations

import hmac
import secrets

from flask import current_app
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import TransactionOTP
from ..models.transactions import STATUS_PENDING
from ..validation import ConflictError, coerce_int
from .transaction_service import get_transaction

OTP_DIGITS = 4


def generate_code() -> str:
    """Uniform draw from 0000-9999."""
    return f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"


def issue_otp(transaction_id) -> str:
    txn = get_transaction(transaction_id)
    if txn.status != STATUS_PENDING:
        raise ConflictError(f"Transaction {txn.id} is {txn.status}; OTPs are only issued for pending transfers")

    code = generate_code()
    try:
        with db.session.begin_nested():
            db.session.add(TransactionOTP(transaction_id=txn.id, code=code))
    except IntegrityError:
        raise ConflictError(f"Transaction {txn.id} already has an OTP")

    current_app.logger.info("OTP issued for transaction %s", txn.id)
    return code


def get_otp(transaction_id) -> str | None:
    txn_id = coerce_int(transaction_id, "transaction_id")
    row = db.session.query(TransactionOTP).filter_by(transaction_id=txn_id).first()
    return row.code if row else None


def verify_otp(transaction_id, code) -> bool:
    """Constant-time check of `code`; a transaction without an OTP never verifies."""
    expected = get_otp(transaction_id)
    if expected is None or code is None or isinstance(code, bool):
        return False
    # JSON clients may send the code as a number, losing leading zeros
    presented = f"{code:0{OTP_DIGITS}d}" if isinstance(code, int) else str(code).strip()
    return hmac.compare_digest(expected.encode(), presented.encode())


def revoke_otp(transaction_id) -> bool:
    """Delete the OTP row. Returns False when there was nothing to delete."""
    txn_id = coerce_int(transaction_id, "transaction_id")
    result = db.session.execute(
        delete(TransactionOTP).where(TransactionOTP.transaction_id == txn_id)
    )
    return result.rowcount > 0
