import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from miniola.database import Base, utcnow


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ride_id: Mapped[str] = mapped_column(String, ForeignKey("rides.id"), unique=True, nullable=False)
    rider_id: Mapped[str] = mapped_column(String, ForeignKey("riders.id"), nullable=False, index=True)
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("drivers.id"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(5), default="INR")
    # wallet | upi | cash
    method: Mapped[str] = mapped_column(String(10), nullable=False, default="wallet")
    # pending | processing | completed | failed | refunded
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)

    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    driver_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    transaction_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    receipt_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    refund_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
