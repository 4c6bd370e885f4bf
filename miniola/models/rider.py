from sqlalchemy import Index, Integer, text
from sqlalchemy.orm import Mapped, mapped_column

from miniola.database import Base
from miniola.models.account import AccountMixin

_ACTIVE = text("deleted_at IS NULL")


class Rider(AccountMixin, Base):
    __tablename__ = "riders"
    __table_args__ = (
        # Unique among live accounts only, so a deleted account frees its email/phone.
        Index("uq_riders_email_active", "email", unique=True, postgresql_where=_ACTIVE, sqlite_where=_ACTIVE),
        Index("uq_riders_phone_active", "phone", unique=True, postgresql_where=_ACTIVE, sqlite_where=_ACTIVE),
    )

    role = "rider"

    rides_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
