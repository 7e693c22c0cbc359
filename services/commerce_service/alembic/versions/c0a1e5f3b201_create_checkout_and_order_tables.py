"""create_checkout_and_order_tables

Revision ID: c0a1e5f3b201
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "c0a1e5f3b201"
down_revision = None
branch_labels = None
depends_on = None


ORDER_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "completed",
    "cancelled",
    "refunded",
)
PAYMENT_METHODS = ("cod", "bank_transfer", "e_wallet", "credit_card")
DELIVERY_METHODS = (
    "self_pickup",
    "delivery",
    "meetup",
    "campus_delivery",
    "room_delivery",
)

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("buyer_id", sa.String(255), nullable=False),
        sa.Column(
            "session_type",
            sa.Enum("from_cart", "from_listing", name="checkout_session_type_enum"),
            nullable=False,
        ),
        sa.Column("items", JSONType, nullable=False),
        sa.Column("seller_groups", JSONType, nullable=False),
        sa.Column(
            "delivery_method",
            sa.Enum(*DELIVERY_METHODS, name="checkout_delivery_method_enum"),
            nullable=True,
        ),
        sa.Column(
            "payment_method",
            sa.Enum(*PAYMENT_METHODS, name="checkout_payment_method_enum"),
            nullable=True,
        ),
        sa.Column("delivery_address", JSONType, nullable=True),
        _money("subtotal"),
        _money("delivery_fee"),
        _money("tax"),
        _money("discount"),
        _money("total_amount"),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_intent_ref", sa.String(100), nullable=True),
        sa.Column("payment_client_secret", sa.String(255), nullable=True),
        sa.Column(
            "payment_state",
            sa.Enum(
                "pending", "succeeded", "failed", name="checkout_payment_state_enum"
            ),
            nullable=True,
        ),
        sa.Column("payment_attempts", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_checkout_sessions_buyer_id", "checkout_sessions", ["buyer_id"], unique=True
    )
    op.create_index(
        "ix_checkout_sessions_payment_intent_ref",
        "checkout_sessions",
        ["payment_intent_ref"],
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("order_number", sa.String(20), nullable=False),
        sa.Column("checkout_session_id", sa.Uuid(), nullable=False),
        sa.Column("buyer_id", sa.String(255), nullable=False),
        sa.Column("seller_id", sa.String(255), nullable=False),
        sa.Column("seller_name", sa.String(255), nullable=True),
        sa.Column(
            "status", sa.Enum(*ORDER_STATUSES, name="order_status_enum"), nullable=False
        ),
        sa.Column(
            "payment_status",
            sa.Enum(
                "pending",
                "paid",
                "failed",
                "refunded",
                "cod_confirmed",
                "cod_declined",
                name="order_payment_status_enum",
            ),
            nullable=False,
        ),
        sa.Column(
            "payment_method",
            sa.Enum(*PAYMENT_METHODS, name="order_payment_method_enum"),
            nullable=False,
        ),
        sa.Column("payment_intent_ref", sa.String(100), nullable=True),
        sa.Column(
            "delivery_method",
            sa.Enum(*DELIVERY_METHODS, name="order_delivery_method_enum"),
            nullable=False,
        ),
        sa.Column("delivery_address", JSONType, nullable=True),
        _money("items_total"),
        _money("delivery_fee"),
        _money("tax"),
        _money("total_discount"),
        _money("total_amount"),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column(
            "cancel_reason",
            sa.Enum(
                "buyer_request",
                "seller_unavailable",
                "payment_failed",
                "stock_insufficient",
                "delivery_issues",
                "other",
                name="order_cancel_reason_enum",
            ),
            nullable=True,
        ),
        sa.Column("cancel_description", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(255), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "checkout_session_id", "seller_id", name="uq_orders_session_seller"
        ),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_checkout_session_id", "orders", ["checkout_session_id"])
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_seller_id", "orders", ["seller_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_payment_intent_ref", "orders", ["payment_intent_ref"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("listing_id", sa.String(255), nullable=False),
        sa.Column("variant_id", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("image", sa.String(1024), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _money("unit_price"),
        _money("unit_discount"),
        _money("line_total"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "order_status_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*ORDER_STATUSES, name="order_history_status_enum"),
            nullable=False,
        ),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("changed_by", sa.String(255), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("order_id", "position", name="uq_order_history_position"),
    )
    op.create_index(
        "ix_order_status_history_order_id", "order_status_history", ["order_id"]
    )


def downgrade() -> None:
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("checkout_sessions")
    for enum_name in (
        "order_history_status_enum",
        "order_cancel_reason_enum",
        "order_delivery_method_enum",
        "order_payment_method_enum",
        "order_payment_status_enum",
        "order_status_enum",
        "checkout_payment_state_enum",
        "checkout_payment_method_enum",
        "checkout_delivery_method_enum",
        "checkout_session_type_enum",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
