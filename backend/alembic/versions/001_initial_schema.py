"""Initial schema.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

BARCODE_PATTERN = r"^CRS[0-9]{2}[WB][TWB](36|40|60|72|144)[0-9]{5}$"


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    """Create all initial tables."""
    # --- stations ---
    op.create_table(
        "stations",
        _uuid_pk(),
        sa.Column("line", sa.String(20), nullable=False),
        sa.Column("station_number", sa.Integer(), nullable=False),
        sa.Column("station_type", sa.String(30), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("line", "station_number", name="uq_station_line_number"),
    )

    # --- manufacturing_orders ---
    op.create_table(
        "manufacturing_orders",
        _uuid_pk(),
        sa.Column("order_number", sa.String(50), nullable=False),
        sa.Column("panel_type", sa.String(10), nullable=True),
        sa.Column("status", sa.String(20), server_default="OPEN", nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("completed_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expected_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_completion_date", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
        sa.CheckConstraint("quantity > 0", name="ck_mo_quantity_positive"),
        sa.CheckConstraint(
            "completed_count >= 0 AND completed_count <= quantity", name="ck_mo_completed_count_range"
        ),
        sa.CheckConstraint("status IN ('OPEN', 'IN_PROGRESS', 'COMPLETED')", name="ck_mo_status"),
    )

    # --- panels ---
    op.create_table(
        "panels",
        _uuid_pk(),
        sa.Column("barcode", sa.String(20), nullable=False),
        sa.Column("panel_type", sa.String(10), nullable=False),
        sa.Column("frame_type", sa.String(20), nullable=False),
        sa.Column("backsheet_type", sa.String(20), nullable=False),
        sa.Column("line", sa.String(20), nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("workflow_state", sa.String(20), server_default="SCANNED", nullable=False),
        sa.Column("current_station", sa.Integer(), nullable=True),
        sa.Column("station_1_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("station_2_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("station_3_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("station_4_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rework_reentry_station", sa.Integer(), nullable=True),
        sa.Column("rework_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("rework_reason", sa.Text(), nullable=True),
        sa.Column("quarantine_reason", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("wattage_pmax", sa.Float(), nullable=True, comment="Max power (W)"),
        sa.Column("vmp", sa.Float(), nullable=True, comment="Voltage at max power (V)"),
        sa.Column("imp", sa.Float(), nullable=True, comment="Current at max power (A)"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("barcode"),
        sa.ForeignKeyConstraint(["order_id"], ["manufacturing_orders.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(f"barcode ~ '{BARCODE_PATTERN}'", name="ck_panel_barcode_format"),
        sa.CheckConstraint(
            "(station_2_completed_at IS NULL OR station_1_completed_at IS NOT NULL) AND "
            "(station_3_completed_at IS NULL OR station_2_completed_at IS NOT NULL) AND "
            "(station_4_completed_at IS NULL OR station_3_completed_at IS NOT NULL)",
            name="ck_panel_station_sequence",
        ),
    )
    op.create_index("ix_panels_order_id", "panels", ["order_id"])

    # --- inspections ---
    op.create_table(
        "inspections",
        _uuid_pk(),
        sa.Column("panel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("station_number", sa.Integer(), nullable=False),
        sa.Column("inspector_id", sa.String(100), nullable=False),
        sa.Column("result", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("override_by", sa.String(100), nullable=True),
        sa.Column("corrects_inspection_id", postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["panel_id"], ["panels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["corrects_inspection_id"], ["inspections.id"]),
        sa.CheckConstraint("result IN ('PASS', 'FAIL', 'CONDITIONAL')", name="ck_inspection_result"),
        sa.CheckConstraint(
            "result <> 'FAIL' OR (notes IS NOT NULL AND length(trim(notes)) > 0)",
            name="ck_inspection_fail_notes",
        ),
    )
    op.create_index("ix_inspections_panel_id", "inspections", ["panel_id"])

    # --- pallets ---
    op.create_table(
        "pallets",
        _uuid_pk(),
        sa.Column("pallet_number", sa.String(50), nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("capacity", sa.Integer(), server_default="25", nullable=False),
        sa.Column("assigned_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("status", sa.String(20), server_default="OPEN", nullable=False),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalized_by", sa.String(100), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pallet_number"),
        sa.ForeignKeyConstraint(["order_id"], ["manufacturing_orders.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_pallets_order_id", "pallets", ["order_id"])

    # --- pallet_assignments ---
    op.create_table(
        "pallet_assignments",
        _uuid_pk(),
        sa.Column("pallet_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("panel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("is_finalized", sa.Boolean(), server_default="false", nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["pallet_id"], ["pallets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["panel_id"], ["panels.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("panel_id", name="uq_pallet_assignment_panel"),
        sa.UniqueConstraint("pallet_id", "position", name="uq_pallet_assignment_position"),
    )

    # --- closure_rule_versions ---
    op.create_table(
        "closure_rule_versions",
        sa.Column("version", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("min_completion_percentage", sa.Float(), nullable=False),
        sa.Column("max_failure_rate", sa.Float(), nullable=False),
        sa.Column("min_panels_for_closure", sa.Integer(), nullable=False),
        sa.Column("max_idle_time_hours", sa.Float(), nullable=False),
        sa.Column("require_pallet_finalization", sa.Boolean(), nullable=False),
        sa.Column("updated_by", sa.String(100), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("version"),
    )

    # --- closure_audit_records (append-only) ---
    op.create_table(
        "closure_audit_records",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(100), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("forced", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("previous_status", sa.String(20), nullable=True),
        sa.Column("rule_version", sa.Integer(), nullable=True),
        sa.Column("final_statistics", postgresql.JSONB(), nullable=True),
        sa.Column("options", postgresql.JSONB(), nullable=True),
        sa.Column("assessment", postgresql.JSONB(), nullable=True),
        sa.Column("pallet_finalization", postgresql.JSONB(), nullable=True),
        sa.Column("completion_report", postgresql.JSONB(), nullable=True),
        sa.Column("reverses_record_id", sa.BigInteger(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["order_id"], ["manufacturing_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["reverses_record_id"], ["closure_audit_records.id"]),
        sa.UniqueConstraint("reverses_record_id"),
        sa.CheckConstraint(
            "kind IN ('AUTOMATIC_CLOSE', 'MANUAL_CLOSE', 'ROLLBACK')", name="ck_closure_audit_kind"
        ),
        sa.CheckConstraint(
            "kind <> 'ROLLBACK' OR (reverses_record_id IS NOT NULL AND reason IS NOT NULL)",
            name="ck_closure_audit_rollback_ref",
        ),
    )
    op.create_index("ix_closure_audit_records_order_id", "closure_audit_records", ["order_id"])


def downgrade() -> None:
    """Drop all tables in reverse order."""
    op.drop_table("closure_audit_records")
    op.drop_table("closure_rule_versions")
    op.drop_table("pallet_assignments")
    op.drop_table("pallets")
    op.drop_table("inspections")
    op.drop_table("panels")
    op.drop_table("manufacturing_orders")
    op.drop_table("stations")
