from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    plan_id: Mapped[int | None] = mapped_column(ForeignKey("plans.id", ondelete="SET NULL"), nullable=True, index=True)
    period: Mapped[str] = mapped_column(String(10), default="monthly")  # monthly, yearly
    status: Mapped[str] = mapped_column(String(30), default="pending")
    current_cycle_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_cycle_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_payment_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("Plan")

    def is_current(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return self.status == "active" and self.current_cycle_end is not None and self.current_cycle_end > now
