"""core pawnbroker schema

Revision ID: 0001_core_schema
Revises: 
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_core_schema"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name: str, *args, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, **kwargs)


def _jsonb(name: str, default: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        server_default=sa.text(f"'{default}'::jsonb") if default else None,
        nullable=nullable,
    )


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _money(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 2), nullable=nullable)


def _percent(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(7, 3), nullable=False)


def _stamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        _jsonb("roles", "[]"),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("email_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _jsonb("kyc_docs", "[]"),
        _jsonb("auth_providers", "[]"),
        sa.Column("email_verification_otp", sa.String(length=12), nullable=True),
        _ts("email_verification_otp_expires"),
        sa.Column("reset_password_otp", sa.String(length=12), nullable=True),
        _ts("reset_password_otp_expires"),
        sa.Column("delete_account_otp", sa.String(length=12), nullable=True),
        _ts("delete_account_otp_expires"),
        _ts("last_login_at"),
        _ts("deleted_at"),
        *_stamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'suspended', 'deleted')", name="ck_users_status"
        ),
    )
    op.create_index(
        "uq_users_email_live",
        "users",
        ["email"],
        unique=True,
        postgresql_where=sa.text("status <> 'deleted'"),
    )

    op.create_table(
        "debtor_records",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("client_name", sa.String(length=200), nullable=False),
        sa.Column("national_id_number", sa.String(length=50), nullable=True),
        sa.Column("asset_no", sa.String(length=50), nullable=True),
        sa.Column("reg_or_serial_no", sa.String(length=100), nullable=True),
        sa.Column("account_status", sa.String(length=50), nullable=True),
        _money("amount_outstanding"),
        *_stamps(),
    )
    op.create_index("ix_debtor_records_client_name", "debtor_records", ["client_name"])
    op.create_index("ix_debtor_records_national_id", "debtor_records", ["national_id_number"])

    op.create_table(
        "assets",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("asset_no", sa.String(length=20), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("condition", sa.String(length=100), nullable=True),
        sa.Column("storage_location", sa.String(length=200), nullable=True),
        _uuid("owner_id", sa.ForeignKey("users.id"), nullable=False),
        _uuid("submitted_by", sa.ForeignKey("users.id"), nullable=True),
        _money("declared_value"),
        _money("evaluated_value"),
        sa.Column("valuation_notes", sa.Text(), nullable=True),
        _uuid("evaluated_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("evaluated_at"),
        _jsonb("details", "{}"),
        _jsonb("attachments", "[]"),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'submitted'"), nullable=False),
        _uuid("active_loan_id", nullable=True),
        _ts("closed_at"),
        *_stamps(),
        sa.UniqueConstraint("asset_no", name="uq_assets_asset_no"),
        sa.CheckConstraint("category IN ('electronics', 'vehicle', 'jewellery')", name="ck_assets_category"),
        sa.CheckConstraint(
            "status IN ('submitted', 'valuating', 'active', 'pawned', 'overdue', 'in_grace', "
            "'in_repair', 'auction', 'sold', 'redeemed', 'closed')",
            name="ck_assets_status",
        ),
    )
    op.create_index("ix_assets_owner_status", "assets", ["owner_id", "status"])
    op.create_index("ix_assets_category_status", "assets", ["category", "status"])

    op.create_table(
        "asset_valuations",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("asset_id", sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("stage", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'requested'"), nullable=False),
        sa.Column("method", sa.String(length=20), server_default=sa.text("'manual'"), nullable=False),
        _uuid("requested_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("requested_at"),
        _uuid("valued_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("assessment_date"),
        _money("estimated_market_value"),
        _money("estimated_loan_value"),
        _money("final_value"),
        _money("desired_loan_amount"),
        sa.Column("currency", sa.String(length=3), server_default=sa.text("'USD'"), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        _jsonb("credit_check", "", nullable=True),
        _jsonb("attachments", "[]"),
        _jsonb("meta", "{}"),
        *_stamps(),
        sa.CheckConstraint("stage IN ('market', 'final')", name="ck_asset_valuations_stage"),
    )
    op.create_index("ix_asset_valuations_asset_stage", "asset_valuations", ["asset_id", "stage"])

    op.create_table(
        "loan_applications",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("application_no", sa.String(length=20), nullable=False),
        _uuid("customer_id", sa.ForeignKey("users.id"), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("national_id_number", sa.String(length=50), nullable=False),
        sa.Column("gender", sa.String(length=20), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("marital_status", sa.String(length=30), nullable=True),
        sa.Column("contact_details", sa.String(length=50), nullable=True),
        sa.Column("alternative_number", sa.String(length=50), nullable=True),
        sa.Column("email_address", sa.String(length=255), nullable=True),
        sa.Column("home_address", sa.Text(), nullable=True),
        _jsonb("employment", "{}"),
        _money("requested_loan_amount", nullable=False),
        sa.Column("collateral_category", sa.String(length=20), nullable=False),
        sa.Column("collateral_description", sa.Text(), nullable=True),
        sa.Column("surety_description", sa.Text(), nullable=True),
        _money("declared_asset_value"),
        sa.Column("declaration_text", sa.Text(), nullable=True),
        sa.Column("declaration_signature_name", sa.String(length=200), nullable=True),
        _ts("declaration_signed_at"),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'draft'"), nullable=False),
        _ts("submitted_at"),
        _uuid("decided_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("decided_at"),
        _jsonb("debtor_check", "{}"),
        _jsonb("attachments", "[]"),
        _jsonb("internal_notes", "[]"),
        *_stamps(),
        sa.UniqueConstraint("application_no", name="uq_loan_applications_application_no"),
        sa.CheckConstraint("requested_loan_amount > 0", name="ck_loan_applications_amount"),
    )
    op.create_index("ix_loan_applications_customer_status", "loan_applications", ["customer_id", "status"])

    op.create_table(
        "loans",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("loan_no", sa.String(length=20), nullable=False),
        _uuid("customer_id", sa.ForeignKey("users.id"), nullable=False),
        _uuid("application_id", sa.ForeignKey("loan_applications.id"), nullable=True),
        _uuid("asset_id", sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("collateral_category", sa.String(length=20), nullable=False),
        _money("principal", nullable=False),
        _money("current_balance", nullable=False),
        sa.Column("currency", sa.String(length=3), server_default=sa.text("'USD'"), nullable=False),
        _percent("interest_rate_percent"),
        sa.Column("interest_period_days", sa.Integer(), nullable=False),
        _percent("storage_charge_percent"),
        _percent("penalty_percent"),
        sa.Column("grace_days", sa.Integer(), nullable=False),
        _ts("start_date", nullable=False),
        _ts("due_date", nullable=False),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'draft'"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _uuid("created_by", sa.ForeignKey("users.id"), nullable=True),
        _uuid("processed_by", sa.ForeignKey("users.id"), nullable=True),
        _uuid("approved_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("disbursed_at"),
        _ts("closed_at"),
        _jsonb("meta", "{}"),
        *_stamps(),
        sa.UniqueConstraint("loan_no", name="uq_loans_loan_no"),
        sa.CheckConstraint("principal > 0", name="ck_loans_principal"),
        sa.CheckConstraint("current_balance >= 0", name="ck_loans_balance"),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'overdue', 'in_grace', 'auction', 'sold', 'redeemed', 'closed', 'cancelled')",
            name="ck_loans_status",
        ),
    )
    op.create_index("ix_loans_customer_status", "loans", ["customer_id", "status"])
    op.create_index(
        "uq_loans_asset_open",
        "loans",
        ["asset_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('active', 'overdue', 'in_grace', 'auction')"),
    )
    op.create_foreign_key("fk_assets_active_loan_id", "assets", "loans", ["active_loan_id"], ["id"])

    op.create_table(
        "loan_terms",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("loan_id", sa.ForeignKey("loans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("term_no", sa.Integer(), nullable=False),
        _ts("start_date", nullable=False),
        _ts("due_date", nullable=False),
        _money("opening_balance", nullable=False),
        _money("closing_balance", nullable=False),
        _money("payment_amount"),
        _percent("interest_rate_percent"),
        sa.Column("interest_period_days", sa.Integer(), nullable=False),
        _percent("storage_charge_percent"),
        sa.Column("renewal_type", sa.String(length=30), server_default=sa.text("'initial'"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _uuid("created_by", sa.ForeignKey("users.id"), nullable=True),
        _uuid("approved_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("approved_at"),
        *_stamps(),
        sa.UniqueConstraint("loan_id", "term_no", name="uq_loan_terms_loan_term_no"),
        sa.CheckConstraint("due_date > start_date", name="ck_loan_terms_dates"),
        sa.CheckConstraint("opening_balance >= 0 AND closing_balance >= 0", name="ck_loan_terms_balances"),
    )

    op.create_table(
        "auctions",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("auction_no", sa.String(length=24), nullable=False),
        _uuid("asset_id", sa.ForeignKey("assets.id"), nullable=False),
        _money("starting_bid", nullable=False),
        _money("reserve_price"),
        sa.Column("currency", sa.String(length=3), server_default=sa.text("'USD'"), nullable=False),
        sa.Column("auction_type", sa.String(length=20), server_default=sa.text("'online'"), nullable=False),
        _ts("starts_at", nullable=False),
        _ts("ends_at", nullable=False),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'draft'"), nullable=False),
        _uuid("winner_id", sa.ForeignKey("users.id"), nullable=True),
        _uuid("winning_bid_id", nullable=True),
        _money("winning_bid_amount"),
        _ts("closed_at"),
        _uuid("created_by", sa.ForeignKey("users.id"), nullable=True),
        _jsonb("meta", "{}"),
        *_stamps(),
        sa.UniqueConstraint("auction_no", name="uq_auctions_auction_no"),
        sa.CheckConstraint("ends_at > starts_at", name="ck_auctions_window"),
        sa.CheckConstraint("starting_bid > 0", name="ck_auctions_starting_bid"),
        sa.CheckConstraint("status IN ('draft', 'live', 'closed', 'cancelled')", name="ck_auctions_status"),
    )
    op.create_index("ix_auctions_asset_status", "auctions", ["asset_id", "status"])
    op.create_index("ix_auctions_status_ends_at", "auctions", ["status", "ends_at"])

    op.create_table(
        "bids",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("auction_id", sa.ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False),
        _uuid("bidder_id", sa.ForeignKey("users.id"), nullable=False),
        _money("amount", nullable=False),
        sa.Column("currency", sa.String(length=3), server_default=sa.text("'USD'"), nullable=False),
        _ts("placed_at", nullable=False),
        sa.Column("dispute_status", sa.String(length=20), server_default=sa.text("'none'"), nullable=False),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        _uuid("dispute_raised_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("dispute_raised_at"),
        _uuid("dispute_resolved_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("dispute_resolved_at"),
        sa.Column("dispute_resolution_notes", sa.Text(), nullable=True),
        sa.Column("payment_status", sa.String(length=20), server_default=sa.text("'unpaid'"), nullable=False),
        _money("paid_amount", nullable=False),
        _ts("paid_at"),
        sa.Column("payment_reference", sa.String(length=100), nullable=True),
        _jsonb("meta", "{}"),
        *_stamps(),
        sa.UniqueConstraint("auction_id", "amount", name="uq_bids_auction_amount"),
        sa.CheckConstraint("amount > 0", name="ck_bids_amount"),
    )
    op.create_index("ix_bids_bidder", "bids", ["bidder_id"])

    op.create_table(
        "bid_payments",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("receipt_no", sa.String(length=24), nullable=False),
        _uuid("bid_id", sa.ForeignKey("bids.id"), nullable=False),
        _uuid("auction_id", sa.ForeignKey("auctions.id"), nullable=False),
        _uuid("payer_id", sa.ForeignKey("users.id"), nullable=False),
        _money("amount", nullable=False),
        sa.Column("currency", sa.String(length=3), server_default=sa.text("'USD'"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("method", sa.String(length=20), nullable=False),
        sa.Column("provider", sa.String(length=20), nullable=True),
        sa.Column("provider_txn_id", sa.String(length=255), nullable=True),
        sa.Column("poll_url", sa.Text(), nullable=True),
        sa.Column("redirect_url", sa.Text(), nullable=True),
        sa.Column("payer_phone", sa.String(length=20), nullable=True),
        _ts("paid_at"),
        sa.Column("notes", sa.Text(), nullable=True),
        _jsonb("meta", "{}"),
        *_stamps(),
        sa.UniqueConstraint("receipt_no", name="uq_bid_payments_receipt_no"),
        sa.CheckConstraint("amount > 0", name="ck_bid_payments_amount"),
        sa.CheckConstraint(
            "status IN ('initiated', 'pending', 'success', 'failed', 'cancelled', 'refunded')",
            name="ck_bid_payments_status",
        ),
    )
    op.create_index(
        "uq_bid_payments_one_success",
        "bid_payments",
        ["bid_id"],
        unique=True,
        postgresql_where=sa.text("status = 'success'"),
    )
    op.create_index("ix_bid_payments_provider_txn_id", "bid_payments", ["provider_txn_id"])
    op.create_index("ix_bid_payments_payer_status", "bid_payments", ["payer_id", "status"])

    op.create_table(
        "audit_logs",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("actor_id", nullable=True),
        sa.Column("actor_email", sa.String(length=255), nullable=True),
        sa.Column("actor_name", sa.String(length=200), nullable=True),
        _jsonb("actor_roles", "[]"),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        _jsonb("before", "", nullable=True),
        _jsonb("after", "", nullable=True),
        _jsonb("meta", "{}"),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("channel", sa.String(length=10), server_default=sa.text("'api'"), nullable=False),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_actor_created", "audit_logs", ["actor_id", "created_at"])
    op.create_index("ix_audit_logs_action_created", "audit_logs", ["action", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action_created", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_created", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_bid_payments_payer_status", table_name="bid_payments")
    op.drop_index("ix_bid_payments_provider_txn_id", table_name="bid_payments")
    op.drop_index("uq_bid_payments_one_success", table_name="bid_payments")
    op.drop_table("bid_payments")

    op.drop_index("ix_bids_bidder", table_name="bids")
    op.drop_table("bids")

    op.drop_index("ix_auctions_status_ends_at", table_name="auctions")
    op.drop_index("ix_auctions_asset_status", table_name="auctions")
    op.drop_table("auctions")

    op.drop_table("loan_terms")

    op.drop_constraint("fk_assets_active_loan_id", "assets", type_="foreignkey")
    op.drop_index("uq_loans_asset_open", table_name="loans")
    op.drop_index("ix_loans_customer_status", table_name="loans")
    op.drop_table("loans")

    op.drop_index("ix_loan_applications_customer_status", table_name="loan_applications")
    op.drop_table("loan_applications")

    op.drop_index("ix_asset_valuations_asset_stage", table_name="asset_valuations")
    op.drop_table("asset_valuations")

    op.drop_index("ix_assets_category_status", table_name="assets")
    op.drop_index("ix_assets_owner_status", table_name="assets")
    op.drop_table("assets")

    op.drop_index("ix_debtor_records_national_id", table_name="debtor_records")
    op.drop_index("ix_debtor_records_client_name", table_name="debtor_records")
    op.drop_table("debtor_records")

    op.drop_index("uq_users_email_live", table_name="users")
    op.drop_table("users")
