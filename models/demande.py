from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Boolean, Float, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class Demande(Base):
    """Document-generation request submitted through a per-type form."""

    __tablename__ = "demandes"

    PAYMENT_PENDING = "paiement en attente"
    PAYMENT_CONFIRMED = "paiement confirmé"
    PAYMENT_FAILED = "paiement échoué"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    ref: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    type_slug: Mapped[str] = mapped_column(String(100), index=True)
    variant_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="reçu")
    priority: Mapped[str] = mapped_column(String(20), default="normal")
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    paid_status: Mapped[str] = mapped_column(String(50), default="unpaid")
    payment_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    paid_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    author = relationship("User", foreign_keys=[created_by])
