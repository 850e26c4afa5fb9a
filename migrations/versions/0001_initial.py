"""initial transfer tables

Revision ID: 0001_initial
Revises:
Create Date: 2024-01-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def upgrade() -> None:
    op.create_table(
        "items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=100), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit_of_measure", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "transfers",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("kind", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("reference_number", sa.String(length=50), nullable=False),
        sa.Column("origin_ref", sa.String(length=100), nullable=False),
        sa.Column("destination_ref", sa.String(length=100), nullable=False),
        sa.Column("expected_arrival_date", sa.Date(), nullable=True),
        sa.Column("actual_arrival_date", sa.Date(), nullable=True),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("transport_method", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("discrepancy_notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.Column("dispatched_by", sa.String(length=100), nullable=True),
        sa.Column("received_by", sa.String(length=100), nullable=True),
        sa.Column("validated_by", sa.String(length=100), nullable=True),
        sa.Column("cancelled_by", sa.String(length=100), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=True),
        sa.Column("validated_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("kind", "reference_number", name="uq_transfers_kind_reference_number"),
    )
    op.create_index("ix_transfers_kind", "transfers", ["kind"], unique=False)
    op.create_index("ix_transfers_status", "transfers", ["status"], unique=False)
    op.create_index("ix_transfers_origin_ref", "transfers", ["origin_ref"], unique=False)
    op.create_index("ix_transfers_destination_ref", "transfers", ["destination_ref"], unique=False)
    op.create_index("ix_transfers_kind_status", "transfers", ["kind", "status"], unique=False)
    op.create_index("ix_transfers_created_at", "transfers", ["created_at"], unique=False)

    op.create_table(
        "transfer_line_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transfer_id", GUID(), sa.ForeignKey("transfers.id"), nullable=False, index=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("item_id", GUID(), nullable=False, index=True),
        sa.Column("unit_of_measure", sa.String(length=50), nullable=False),
        sa.Column("quantity_expected", sa.Integer(), nullable=False),
        sa.Column("quantity_received", sa.Integer(), nullable=True),
        sa.Column("quantity_damaged", sa.Integer(), nullable=True),
        sa.Column("condition_on_receipt", sa.String(length=20), nullable=True),
        sa.Column("batch_number", sa.String(length=100), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "transfer_audit_entries",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transfer_id", GUID(), sa.ForeignKey("transfers.id"), nullable=False, index=True),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=30), nullable=False),
        sa.Column("actor_id", sa.String(length=100), nullable=False),
        sa.Column("actor_role", sa.String(length=50), nullable=True),
        sa.Column("from_status", sa.String(length=30), nullable=True),
        sa.Column("to_status", sa.String(length=30), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("attachment_ids", sa.JSON(), nullable=True),
        sa.Column("quality_check_ids", sa.JSON(), nullable=True),
        sa.Column("trace_id", sa.String(length=100), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("transfer_id", "sequence_number", name="uq_transfer_audit_sequence"),
    )

    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("actor_id", sa.String(length=100), nullable=False, index=True),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("actor_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )


def downgrade() -> None:
    op.drop_table("idempotency_records")
    op.drop_table("transfer_audit_entries")
    op.drop_table("transfer_line_items")
    op.drop_index("ix_transfers_created_at", table_name="transfers")
    op.drop_index("ix_transfers_kind_status", table_name="transfers")
    op.drop_index("ix_transfers_destination_ref", table_name="transfers")
    op.drop_index("ix_transfers_origin_ref", table_name="transfers")
    op.drop_index("ix_transfers_status", table_name="transfers")
    op.drop_index("ix_transfers_kind", table_name="transfers")
    op.drop_table("transfers")
    op.drop_table("items")
