"""init orchestrator tables

Revision ID: 0001_init_orchestrator
Revises:
Create Date: 2026-10-19T09:12:41.508113Z
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init_orchestrator"
down_revision = None
branch_labels = None
depends_on = None

PROVIDERS = ("hostycare", "smartvps", "virtualizor")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "resellers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("business_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("status", sa.Enum("active", "suspended", "pending", name="resellerstatus"), nullable=False, server_default="pending"),
        sa.Column("pricing", sa.JSON(), nullable=False),
        sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="INR"),
        sa.Column("credit_limit", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("min_balance", sa.BigInteger(), nullable=False, server_default="1000"),
        sa.Column("total_orders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_recharge", sa.BigInteger(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_resellers_email", "resellers", ["email"], unique=True)

    op.create_table(
        "ip_stocks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("server_type", sa.String(length=64), nullable=False, server_default="Linux"),
        sa.Column("provider", sa.Enum(*PROVIDERS, name="providername"), nullable=False, server_default="hostycare"),
        sa.Column("available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("single_use", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("memory_options", sa.JSON(), nullable=False),
        sa.Column("promo_codes", sa.JSON(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("default_configurations", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_ip_stocks_name", "ip_stocks", ["name"], unique=True)
    op.create_index("ix_ip_stocks_available", "ip_stocks", ["available"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("reseller_id", sa.Integer(), sa.ForeignKey("resellers.id"), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("memory", sa.String(length=32), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("promo_code", sa.String(length=64), nullable=True),
        sa.Column("promo_discount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("gateway_txn_id", sa.String(length=128), nullable=True),
        sa.Column("client_txn_id", sa.String(length=128), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "confirmed", "paid", "failed", "active", name="paymentstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("ip_stock_id", sa.Integer(), sa.ForeignKey("ip_stocks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("provider", sa.Enum(*PROVIDERS, name="providername", create_type=False), nullable=True),
        sa.Column("provider_product_id", sa.String(length=64), nullable=True),
        sa.Column("provider_service_id", sa.String(length=128), nullable=True),
        sa.Column(
            "provisioning_status",
            sa.Enum("pending", "provisioning", "active", "failed", name="provisioningstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("auto_provisioned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provisioning_error", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("hostname", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("password", sa.String(length=128), nullable=True),
        sa.Column("os", sa.String(length=64), nullable=True),
        sa.Column("charged_amount", sa.BigInteger(), nullable=True),
        sa.Column("wallet_debit_txn_id", sa.Integer(), nullable=True),
        sa.Column("wallet_refund_txn_id", sa.Integer(), nullable=True),
        sa.Column("last_action", sa.String(length=32), nullable=True),
        sa.Column("last_action_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_reseller_id", "orders", ["reseller_id"])
    op.create_index("ix_orders_client_txn_id", "orders", ["client_txn_id"], unique=True)
    op.create_index("ix_orders_provisioning_status", "orders", ["provisioning_status"])
    op.create_index("ix_orders_expiry_date", "orders", ["expiry_date"])

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("reseller_id", sa.Integer(), sa.ForeignKey("resellers.id"), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.Enum("recharge", "debit", "credit", name="transactiontype"), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=64), nullable=False, server_default="system"),
        sa.Column("meta", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_wallet_transactions_reseller_id", "wallet_transactions", ["reseller_id"])
    op.create_index("ix_wallet_transactions_order_id", "wallet_transactions", ["order_id"])

    op.create_table(
        "renewal_intents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("renewal_txn_id", sa.String(length=64), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "processing", "completed", "failed", name="renewalintentstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("gateway_reference", sa.String(length=128), nullable=True),
        sa.Column("requested_by", sa.String(length=64), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_renewal_intents_renewal_txn_id", "renewal_intents", ["renewal_txn_id"], unique=True)
    op.create_index("ix_renewal_intents_order_id", "renewal_intents", ["order_id"])

    op.create_table(
        "renewal_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("renewal_txn_id", sa.String(length=64), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("processed_via", sa.Enum("webhook", "confirm-api", "manual", name="processedvia"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("order_context", sa.JSON(), nullable=False),
        sa.Column("payment_info", sa.JSON(), nullable=False),
        sa.Column("provider_result", sa.JSON(), nullable=False),
        sa.Column("new_expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_renewal_logs_order_id", "renewal_logs", ["order_id"])
    op.create_index("ix_renewal_logs_renewal_txn_id", "renewal_logs", ["renewal_txn_id"])
    op.create_index("ix_renewal_logs_success", "renewal_logs", ["success"])

    op.create_table(
        "server_action_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "action",
            sa.Enum("start", "stop", "restart", "format", "changepassword", "reinstall", name="serveraction"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "rejected", name="serveractionstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("order_snapshot", sa.JSON(), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("processed_by", sa.String(length=64), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_server_action_requests_order_id", "server_action_requests", ["order_id"])
    op.create_index("ix_server_action_requests_user_id", "server_action_requests", ["user_id"])
    op.create_index("ix_server_action_requests_status", "server_action_requests", ["status"])
    op.create_index(
        "uq_server_action_pending",
        "server_action_requests",
        ["order_id", "action"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade():
    op.drop_table("server_action_requests")
    op.drop_table("renewal_logs")
    op.drop_table("renewal_intents")
    op.drop_table("wallet_transactions")
    op.drop_table("orders")
    op.drop_table("ip_stocks")
    op.drop_table("resellers")
    for name in (
        "serveractionstatus",
        "serveraction",
        "processedvia",
        "renewalintentstatus",
        "transactiontype",
        "provisioningstatus",
        "paymentstatus",
        "providername",
        "resellerstatus",
    ):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
