from __future__ import annotations

from ..extensions import db
from prodtrack.time_utils import to_utc_z


TYPE_COUNT = "count"
TYPE_TRANSFER_IN = "transfer_in"
TYPE_TRANSFER_OUT = "transfer_out"
TYPE_ADJUSTMENT = "adjustment"
TYPE_INITIAL_STOCK = "initial_stock"

TRANSACTION_TYPES = (
    TYPE_COUNT,
    TYPE_TRANSFER_IN,
    TYPE_TRANSFER_OUT,
    TYPE_ADJUSTMENT,
    TYPE_INITIAL_STOCK,
)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

TRANSACTION_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_CANCELLED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)


class Transaction(db.Model):
    """
    One stock movement attempt (transfer, count, adjustment, consumption).

    LIFECYCLE:
    1. pending: created by the sender; source already debited, OTP issued
    2. completed: receiver confirmed with the OTP; destination credited
    3. cancelled: receiver rejected; source re-credited

    Only pending -> completed and pending -> cancelled exist. Terminal rows
    are never resurrected. After append, only status, approved_by, notes,
    concluded_at and updated_at change; everything else is the audit record.

    Multi-item and BOM transfers keep a single row with embedded lines so a
    status change applies to the whole batch at once.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_status_timestamp", "status", "timestamp"),
        db.Index("ix_transactions_to_location_status", "to_location", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # SKU for single-item rows, BOM code for BOM transfers
    sku = db.Column(db.String(64), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Integer, nullable=False)

    # Audit snapshot at the source location (null for multi-line rows)
    previous_amount = db.Column(db.Integer, nullable=True)
    new_amount = db.Column(db.Integer, nullable=True)

    location = db.Column(db.String(64), nullable=False, index=True)
    from_location = db.Column(db.String(64), nullable=True)
    to_location = db.Column(db.String(64), nullable=True)

    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)

    performed_by = db.Column(db.String(255), nullable=False, index=True)
    approved_by = db.Column(db.String(255), nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    concluded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    notes = db.Column(db.Text, nullable=True)
    reference = db.Column(db.String(128), nullable=True)

    bom_code = db.Column(db.String(64), nullable=True)
    bom_quantity = db.Column(db.Integer, nullable=True)

    # Only rectifications set this; unique means one rectification per original
    parent_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, unique=True)
    is_rectification = db.Column(db.Boolean, nullable=False, default=False)

    lines = db.relationship(
        "TransactionLine",
        backref="transaction",
        lazy=True,
        order_by="TransactionLine.line_number",
        cascade="all, delete-orphan",
    )
    parent = db.relationship("Transaction", remote_side=[id])

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} sku={self.sku!r} status={self.status!r}>"

    @property
    def is_multi_item(self) -> bool:
        return len(self.lines) > 1 or self.bom_code is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "item_name": self.item_name,
            "amount": self.amount,
            "previous_amount": self.previous_amount,
            "new_amount": self.new_amount,
            "location": self.location,
            "from_location": self.from_location,
            "to_location": self.to_location,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "performed_by": self.performed_by,
            "approved_by": self.approved_by,
            "timestamp": to_utc_z(self.timestamp),
            "concluded_at": to_utc_z(self.concluded_at),
            "updated_at": to_utc_z(self.updated_at),
            "notes": self.notes,
            "reference": self.reference,
            "bom_code": self.bom_code,
            "bom_quantity": self.bom_quantity,
            "parent_transaction_id": self.parent_transaction_id,
            "is_rectification": self.is_rectification,
            "items": [line.to_dict() for line in self.lines],
        }


class TransactionLine(db.Model):
    __tablename__ = "transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_transaction_lines_txn_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    sku = db.Column(db.String(64), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    previous_amount = db.Column(db.Integer, nullable=True)
    new_amount = db.Column(db.Integer, nullable=True)

    # Set when the line came out of a BOM expansion
    bom_code = db.Column(db.String(64), nullable=True)
    component_quantity = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "sku": self.sku,
            "item_name": self.item_name,
            "amount": self.amount,
            "previous_amount": self.previous_amount,
            "new_amount": self.new_amount,
            "bom_code": self.bom_code,
            "component_quantity": self.component_quantity,
        }


class TransactionOTP(db.Model):
    """
    One-time code bound 1:1 to a pending transaction.

    The unique constraint on transaction_id is what guarantees at most one
    live code per transaction. Rows are deleted on confirm or reject.
    """
    __tablename__ = "transaction_otps"

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, unique=True)
    code = db.Column(db.String(4), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<TransactionOTP transaction_id={self.transaction_id}>"
