from datetime import datetime
from decimal import Decimal
from sqlalchemy import JSON, String, Float, Integer, Boolean, Numeric, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from miniola.database import Base, utcnow
from miniola.models.account import AccountMixin

_ACTIVE = text("deleted_at IS NULL")

# rides completed -> badge awarded
BADGE_THRESHOLDS: dict[int, str] = {10: "Rookie", 50: "Experienced", 100: "Expert"}


class Driver(AccountMixin, Base):
    __tablename__ = "drivers"
    __table_args__ = (
        Index("uq_drivers_email_active", "email", unique=True, postgresql_where=_ACTIVE, sqlite_where=_ACTIVE),
        Index("uq_drivers_phone_active", "phone", unique=True, postgresql_where=_ACTIVE, sqlite_where=_ACTIVE),
        Index("uq_drivers_vehicle_active", "vehicle_number", unique=True, postgresql_where=_ACTIVE, sqlite_where=_ACTIVE),
        Index("uq_drivers_license_active", "license_number", unique=True, postgresql_where=_ACTIVE, sqlite_where=_ACTIVE),
        Index("idx_drivers_available_kyc", "is_available", "kyc_status"),
    )

    role = "driver"

    # bike | mini | sedan | suv
    vehicle_type: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    vehicle_number: Mapped[str] = mapped_column(String(20), nullable=False)
    vehicle_model: Mapped[str] = mapped_column(String(100), nullable=False)
    vehicle_color: Mapped[str] = mapped_column(String(30), nullable=False, default="")
    license_number: Mapped[str] = mapped_column(String(30), nullable=False)
    license_expiry: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # pending | approved | rejected
    kyc_status: Mapped[str] = mapped_column(String(10), nullable=False, default="pending")
    kyc_documents: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # weak back-reference, lookup only
    current_ride_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    total_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_rides: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    acceptance_rate: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)

    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # [{"name": "Rookie", "earned_at": "<iso8601>"}]
    badges: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    @property
    def badge_names(self) -> list[str]:
        return [b["name"] for b in self.badges or []]

    def toggle_availability(self) -> bool:
        self.is_available = not self.is_available
        return self.is_available

    def update_location(self, lat: float, lng: float, address: str | None = None) -> None:
        self.location_lat = lat
        self.location_lng = lng
        self.location_address = address or ""
        self.location_updated_at = utcnow()

    def add_earnings(self, amount: Decimal) -> None:
        """Credit a completed ride: totals, level/experience and milestone badges."""
        self.total_earnings = Decimal(self.total_earnings or 0) + Decimal(amount)
        self.total_rides = (self.total_rides or 0) + 1

        self.experience = self.total_rides * 10
        self.level = self.total_rides // 10 + 1

        earned = [
            {"name": name, "earned_at": utcnow().isoformat()}
            for threshold, name in BADGE_THRESHOLDS.items()
            if self.total_rides >= threshold and name not in self.badge_names
        ]
        if earned:
            # reassign: JSON columns don't track in-place mutation
            self.badges = [*(self.badges or []), *earned]

    def free(self) -> None:
        """Release the driver for new assignments."""
        self.current_ride_id = None
        self.is_available = True
