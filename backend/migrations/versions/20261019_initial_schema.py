"""Initial schema: quantity ledger, transaction log, OTPs, BOMs, zones and cars

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit", sa.String(length=32), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_items_sku", "items", ["sku"], unique=True)

    op.create_table(
        "inventory_quantities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("location", sa.String(length=64), nullable=False),
        sa.Column("item_name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", "location", name="uq_inventory_quantities_sku_location"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_quantities_sku", "inventory_quantities", ["sku"], unique=False)
    op.create_index("ix_inventory_quantities_location", "inventory_quantities", ["location"], unique=False)
    op.create_index("ix_inventory_quantities_updated_at", "inventory_quantities", ["updated_at"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("item_name", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("previous_amount", sa.Integer(), nullable=True),
        sa.Column("new_amount", sa.Integer(), nullable=True),
        sa.Column("location", sa.String(length=64), nullable=False),
        sa.Column("from_location", sa.String(length=64), nullable=True),
        sa.Column("to_location", sa.String(length=64), nullable=True),
        sa.Column("transaction_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("performed_by", sa.String(length=255), nullable=False),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("concluded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("bom_code", sa.String(length=64), nullable=True),
        sa.Column("bom_quantity", sa.Integer(), nullable=True),
        sa.Column("parent_transaction_id", sa.Integer(), nullable=True),
        sa.Column("is_rectification", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["parent_transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("parent_transaction_id"),
        sqlite_autoincrement=True,
    )
    for column in ("sku", "location", "transaction_type", "status", "performed_by", "timestamp", "updated_at"):
        op.create_index(f"ix_transactions_{column}", "transactions", [column], unique=False)
    op.create_index("ix_transactions_status_timestamp", "transactions", ["status", "timestamp"], unique=False)
    op.create_index("ix_transactions_to_location_status", "transactions", ["to_location", "status"], unique=False)

    op.create_table(
        "transaction_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("item_name", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("previous_amount", sa.Integer(), nullable=True),
        sa.Column("new_amount", sa.Integer(), nullable=True),
        sa.Column("bom_code", sa.String(length=64), nullable=True),
        sa.Column("component_quantity", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", "line_number", name="uq_transaction_lines_txn_line"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transaction_lines_transaction_id", "transaction_lines", ["transaction_id"], unique=False)
    op.create_index("ix_transaction_lines_sku", "transaction_lines", ["sku"], unique=False)

    op.create_table(
        "transaction_otps",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=4), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
    )

    op.create_table(
        "boms",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bom_code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("total_components", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_boms_bom_code", "boms", ["bom_code"], unique=True)

    op.create_table(
        "bom_components",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bom_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit", sa.String(length=32), nullable=True),
        sa.ForeignKeyConstraint(["bom_id"], ["boms.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bom_id", "sku", name="uq_bom_components_bom_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_bom_components_bom_id", "bom_components", ["bom_id"], unique=False)

    op.create_table(
        "zone_bom_mappings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("zone_id", sa.Integer(), nullable=False),
        sa.Column("car_type", sa.String(length=64), nullable=False),
        sa.Column("bom_code", sa.String(length=64), nullable=False),
        sa.Column("consume_on_completion", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("zone_id", "car_type", "bom_code", name="uq_zone_bom_mappings_zone_type_bom"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_zone_bom_mappings_zone_type", "zone_bom_mappings", ["zone_id", "car_type"], unique=False)

    op.create_table(
        "work_stations",
        sa.Column("zone_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("current_vin", sa.String(length=17), nullable=True),
        sa.Column("current_car_type", sa.String(length=64), nullable=True),
        sa.Column("current_car_color", sa.String(length=64), nullable=True),
        sa.Column("car_entered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("worker_email", sa.String(length=255), nullable=True),
        sa.Column("worker_name", sa.String(length=255), nullable=True),
        sa.Column("worker_checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cars_processed_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_processing_time", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("zone_id"),
        # One VIN can be current in at most one zone
        sa.UniqueConstraint("current_vin"),
    )

    op.create_table(
        "cars",
        sa.Column("vin", sa.String(length=17), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("color", sa.String(length=64), nullable=False),
        sa.Column("series", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("current_zone", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("vin"),
    )
    op.create_index("ix_cars_status", "cars", ["status"], unique=False)
    op.create_index("ix_cars_current_zone", "cars", ["current_zone"], unique=False)

    op.create_table(
        "zone_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("vin", sa.String(length=17), nullable=False),
        sa.Column("zone_id", sa.Integer(), nullable=False),
        sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("exited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("entered_by", sa.String(length=255), nullable=False),
        sa.Column("completed_by", sa.String(length=255), nullable=True),
        sa.Column("time_spent", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["vin"], ["cars.vin"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_zone_entries_vin", "zone_entries", ["vin"], unique=False)
    op.create_index("ix_zone_entries_zone_entered", "zone_entries", ["zone_id", "entered_at"], unique=False)

    op.create_table(
        "car_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("vin", sa.String(length=17), nullable=False),
        sa.Column("from_zone", sa.Integer(), nullable=True),
        sa.Column("to_zone", sa.Integer(), nullable=True),
        sa.Column("moved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("moved_by", sa.String(length=255), nullable=False),
        sa.Column("movement_type", sa.String(length=16), nullable=False),
        sa.Column("time_in_previous_zone", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_car_movements_moved_at", "car_movements", ["moved_at"], unique=False)
    op.create_index("ix_car_movements_vin_moved", "car_movements", ["vin", "moved_at"], unique=False)


def downgrade():
    op.drop_index("ix_car_movements_vin_moved", table_name="car_movements")
    op.drop_index("ix_car_movements_moved_at", table_name="car_movements")
    op.drop_table("car_movements")

    op.drop_index("ix_zone_entries_zone_entered", table_name="zone_entries")
    op.drop_index("ix_zone_entries_vin", table_name="zone_entries")
    op.drop_table("zone_entries")

    op.drop_index("ix_cars_current_zone", table_name="cars")
    op.drop_index("ix_cars_status", table_name="cars")
    op.drop_table("cars")

    op.drop_table("work_stations")

    op.drop_index("ix_zone_bom_mappings_zone_type", table_name="zone_bom_mappings")
    op.drop_table("zone_bom_mappings")

    op.drop_index("ix_bom_components_bom_id", table_name="bom_components")
    op.drop_table("bom_components")

    op.drop_index("ix_boms_bom_code", table_name="boms")
    op.drop_table("boms")

    op.drop_table("transaction_otps")

    op.drop_index("ix_transaction_lines_sku", table_name="transaction_lines")
    op.drop_index("ix_transaction_lines_transaction_id", table_name="transaction_lines")
    op.drop_table("transaction_lines")

    op.drop_index("ix_transactions_to_location_status", table_name="transactions")
    op.drop_index("ix_transactions_status_timestamp", table_name="transactions")
    for column in ("sku", "location", "transaction_type", "status", "performed_by", "timestamp", "updated_at"):
        op.drop_index(f"ix_transactions_{column}", table_name="transactions")
    op.drop_table("transactions")

    op.drop_index("ix_inventory_quantities_updated_at", table_name="inventory_quantities")
    op.drop_index("ix_inventory_quantities_location", table_name="inventory_quantities")
    op.drop_index("ix_inventory_quantities_sku", table_name="inventory_quantities")
    op.drop_table("inventory_quantities")

    op.drop_index("ix_items_sku", table_name="items")
    op.drop_table("items")
