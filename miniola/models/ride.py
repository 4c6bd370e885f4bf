import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Float, Integer, Boolean, Numeric, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import Mapped, mapped_column
from miniola.database import Base, utcnow


class Ride(Base):
    __tablename__ = "rides"
    __table_args__ = (
        Index("idx_rides_status_rider", "status", "rider_id"),
        Index("idx_rides_status_driver", "status", "driver_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rider_id: Mapped[str] = mapped_column(String, ForeignKey("riders.id"), nullable=False, index=True)
    driver_id: Mapped[str | None] = mapped_column(String, ForeignKey("drivers.id"), nullable=True, index=True)

    # bike | mini | sedan | suv
    ride_type: Mapped[str] = mapped_column(String(10), nullable=False)
    is_group_ride: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_address: Mapped[str] = mapped_column(String(500), nullable=False)
    dropoff_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_address: Mapped[str] = mapped_column(String(500), nullable=False)

    # requested | accepted | driver-arrived | in-progress | completed | cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="requested", index=True)

    estimated_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    final_fare: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    base_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    distance_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    time_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    surge_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    group_discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    surge_multiplier: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("1.0"))

    distance_km: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    duration_estimated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minutes
    duration_actual: Mapped[int | None] = mapped_column(Integer, nullable=True)

    otp: Mapped[str | None] = mapped_column(String(4), nullable=True)
    scheduled_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # rider | driver | system
    cancelled_by: Mapped[str | None] = mapped_column(String(10), nullable=True)

    rider_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rider_feedback: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # pending | completed | failed | refunded
    payment_status: Mapped[str] = mapped_column(String(10), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    def verify_otp(self, candidate: str | None) -> bool:
        return self.otp is not None and candidate == self.otp
