"""Initial schema: riders, drivers, rides, payments, refresh tokens"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE = sa.text("deleted_at IS NULL")


def _account_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(10), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("profile_picture", sa.String(500), nullable=False, server_default=""),
        sa.Column("wallet_balance", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("total_ratings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("location_lat", sa.Float, nullable=True),
        sa.Column("location_lng", sa.Float, nullable=True),
        sa.Column("location_address", sa.String(500), nullable=False, server_default=""),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "riders",
        *_account_columns(),
        sa.Column("rides_completed", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("uq_riders_email_active", "riders", ["email"], unique=True, postgresql_where=ACTIVE)
    op.create_index("uq_riders_phone_active", "riders", ["phone"], unique=True, postgresql_where=ACTIVE)

    op.create_table(
        "drivers",
        *_account_columns(),
        sa.Column("vehicle_type", sa.String(10), nullable=False),
        sa.Column("vehicle_number", sa.String(20), nullable=False),
        sa.Column("vehicle_model", sa.String(100), nullable=False),
        sa.Column("vehicle_color", sa.String(30), nullable=False, server_default=""),
        sa.Column("license_number", sa.String(30), nullable=False),
        sa.Column("license_expiry", sa.DateTime(timezone=True), nullable=False),
        sa.Column("kyc_status", sa.String(10), nullable=False, server_default="pending"),
        sa.Column("kyc_documents", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("current_ride_id", sa.String, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_earnings", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("acceptance_rate", sa.Float, nullable=False, server_default="100.0"),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("experience", sa.Integer, nullable=False, server_default="0"),
        sa.Column("badges", sa.JSON, nullable=False, server_default="[]"),
    )
    op.create_index("uq_drivers_email_active", "drivers", ["email"], unique=True, postgresql_where=ACTIVE)
    op.create_index("uq_drivers_phone_active", "drivers", ["phone"], unique=True, postgresql_where=ACTIVE)
    op.create_index("uq_drivers_vehicle_active", "drivers", ["vehicle_number"], unique=True, postgresql_where=ACTIVE)
    op.create_index("uq_drivers_license_active", "drivers", ["license_number"], unique=True, postgresql_where=ACTIVE)
    op.create_index("idx_drivers_available_kyc", "drivers", ["is_available", "kyc_status"])
    op.create_index("ix_drivers_vehicle_type", "drivers", ["vehicle_type"])
    op.create_index("ix_drivers_current_ride_id", "drivers", ["current_ride_id"])

    op.create_table(
        "rides",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("rider_id", sa.String, sa.ForeignKey("riders.id"), nullable=False),
        sa.Column("driver_id", sa.String, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("ride_type", sa.String(10), nullable=False),
        sa.Column("is_group_ride", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(500), nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("dropoff_address", sa.String(500), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="requested"),
        sa.Column("estimated_fare", sa.Numeric(10, 2), nullable=False),
        sa.Column("final_fare", sa.Numeric(10, 2), nullable=True),
        sa.Column("base_fare", sa.Numeric(10, 2), nullable=False),
        sa.Column("distance_fare", sa.Numeric(10, 2), nullable=False),
        sa.Column("time_fare", sa.Numeric(10, 2), nullable=False),
        sa.Column("surge_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("group_discount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("surge_multiplier", sa.Numeric(4, 2), nullable=False, server_default="1.0"),
        sa.Column("distance_km", sa.Float, nullable=False, server_default="0"),
        sa.Column("duration_estimated", sa.Integer, nullable=False, server_default="0"),
        sa.Column("duration_actual", sa.Integer, nullable=True),
        sa.Column("otp", sa.String(4), nullable=True),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("cancelled_by", sa.String(10), nullable=True),
        sa.Column("rider_rating", sa.Integer, nullable=True),
        sa.Column("rider_feedback", sa.String(1000), nullable=True),
        sa.Column("payment_status", sa.String(10), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_rides_rider_id", "rides", ["rider_id"])
    op.create_index("ix_rides_driver_id", "rides", ["driver_id"])
    op.create_index("ix_rides_status", "rides", ["status"])
    op.create_index("ix_rides_created_at", "rides", ["created_at"])
    op.create_index("idx_rides_status_rider", "rides", ["status", "rider_id"])
    op.create_index("idx_rides_status_driver", "rides", ["status", "driver_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("ride_id", sa.String, sa.ForeignKey("rides.id"), unique=True, nullable=False),
        sa.Column("rider_id", sa.String, sa.ForeignKey("riders.id"), nullable=False),
        sa.Column("driver_id", sa.String, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(5), server_default="INR"),
        sa.Column("method", sa.String(10), nullable=False, server_default="wallet"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("platform_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("driver_earnings", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("transaction_id", sa.String(64), unique=True, nullable=True),
        sa.Column("receipt_number", sa.String(64), unique=True, nullable=False),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("refund_reason", sa.String(500), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_payments_rider_id", "payments", ["rider_id"])
    op.create_index("ix_payments_driver_id", "payments", ["driver_id"])
    op.create_index("ix_payments_status", "payments", ["status"])

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, nullable=False),
        sa.Column("role", sa.String(10), nullable=False),
        sa.Column("token_hash", sa.String(64), unique=True, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(50), nullable=True),
        sa.Column("replaced_by_token_hash", sa.String(64), nullable=True),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])
    op.create_index("ix_refresh_tokens_expires_at", "refresh_tokens", ["expires_at"])
    op.create_index("idx_refresh_tokens_user_revoked", "refresh_tokens", ["user_id", "revoked_at"])


def downgrade() -> None:
    op.drop_table("refresh_tokens")
    op.drop_table("payments")
    op.drop_table("rides")
    op.drop_table("drivers")
    op.drop_table("riders")
