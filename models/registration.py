from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Integer, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class RegistrationItem(Base):
    """One user's seat on one training session."""

    __tablename__ = "registration_items"
    __table_args__ = (UniqueConstraint("formation_id", "user_id", name="uq_registration_items_formation_user"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    formation_id: Mapped[int] = mapped_column(ForeignKey("formations.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(30), default="pending")
    amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="XOF")
    payment_id: Mapped[int | None] = mapped_column(ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    formation = relationship("Formation", back_populates="registrations")
    user = relationship("User", back_populates="registrations")
