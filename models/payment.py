from datetime import datetime, timedelta
from sqlalchemy import Boolean, String, DateTime, ForeignKey, Integer, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class InvalidTransitionError(Exception):
    """Raised when a payment is asked to move along an edge the ledger forbids."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move payment from '{current}' to '{target}'")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_payable", "payable_type", "payable_id"),
        Index("ix_payments_status_created", "status", "created_at"),
    )

    S_PENDING = "pending"
    S_INITIATED = "initiated"
    S_PROCESSING = "processing"
    S_SUCCEEDED = "succeeded"
    S_FAILED = "failed"
    S_CANCELLED = "cancelled"
    S_EXPIRED = "expired"

    STATUSES = (S_PENDING, S_INITIATED, S_PROCESSING, S_SUCCEEDED, S_FAILED, S_CANCELLED, S_EXPIRED)
    OPEN_STATUSES = (S_PENDING, S_INITIATED, S_PROCESSING)
    FAILURE_STATUSES = (S_FAILED, S_CANCELLED, S_EXPIRED)
    TERMINAL_STATUSES = (S_SUCCEEDED,) + FAILURE_STATUSES

    # Forward-only; terminal statuses have no outgoing edges
    TRANSITIONS = {
        S_PENDING: {S_INITIATED, S_PROCESSING, S_SUCCEEDED, *FAILURE_STATUSES},
        S_INITIATED: {S_PROCESSING, S_SUCCEEDED, *FAILURE_STATUSES},
        S_PROCESSING: {S_SUCCEEDED, *FAILURE_STATUSES},
        S_SUCCEEDED: set(),
        S_FAILED: set(),
        S_CANCELLED: set(),
        S_EXPIRED: set(),
    }

    SNAPSHOT_FIELDS = ("customer_first_name", "customer_last_name", "customer_email", "customer_phone")

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    payable_type: Mapped[str] = mapped_column(String(50))
    payable_id: Mapped[int] = mapped_column(Integer)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    provider: Mapped[str] = mapped_column(String(32), default="paiementpro", index=True)
    reference: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    session_id: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="XOF")
    channel: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Snapshot taken at initiation, kept even if the payable changes later
    customer_first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    customer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=S_PENDING, index=True)
    response_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    response_message: Mapped[str | None] = mapped_column(String(255), nullable=True)

    initialized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notification_count: Mapped[int] = mapped_column(Integer, default=0)
    last_notified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")
    events = relationship("PaymentEvent", back_populates="payment", order_by="PaymentEvent.id")

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def customer_name(self) -> str:
        return f"{self.customer_first_name or ''} {self.customer_last_name or ''}".strip()

    def can_transition(self, target: str) -> bool:
        return target in self.TRANSITIONS.get(self.status or self.S_PENDING, set())

    def transition_to(self, target: str) -> bool:
        """Move to ``target``. Returns False when already there, raises on a forbidden edge."""
        if target not in self.STATUSES:
            raise ValueError(f"Unknown payment status: {target}")
        current = self.status or self.S_PENDING
        if current == target:
            return False
        if not self.can_transition(target):
            raise InvalidTransitionError(current, target)
        self.status = target
        return True

    def set_customer(self, **snapshot) -> None:
        for field in self.SNAPSHOT_FIELDS:
            value = snapshot.get(field)
            if value and not getattr(self, field):
                setattr(self, field, value)

    def merge_meta(self, **values) -> None:
        # JSON columns only notice reassignment, not in-place edits
        self.meta = {**(self.meta or {}), **values}

    def add_warning(self, message: str) -> None:
        meta = dict(self.meta or {})
        warnings = list(meta.get("fulfillment_warnings") or [])
        if message not in warnings:
            warnings.append(message)
        meta["fulfillment_warnings"] = warnings
        meta["needs_review"] = True
        self.meta = meta
        self.needs_review = True

    def mark_initiated(self, session_id: str, ttl_minutes: int = 5) -> bool:
        changed = self.transition_to(self.S_INITIATED)
        if changed:
            now = datetime.utcnow()
            self.session_id = session_id
            self.initialized_at = now
            self.expires_at = now + timedelta(minutes=ttl_minutes)
        return changed

    def mark_processing(self) -> bool:
        return self.transition_to(self.S_PROCESSING)

    def mark_succeeded(self, code: str | None = None, message: str | None = None) -> bool:
        changed = self.transition_to(self.S_SUCCEEDED)
        if changed:
            self.response_code = code
            self.response_message = message
            self.paid_at = datetime.utcnow()
        return changed

    def mark_failed(self, code: str | None = None, message: str | None = None) -> bool:
        changed = self.transition_to(self.S_FAILED)
        if changed:
            self.response_code = code
            self.response_message = message
        return changed

    def mark_cancelled(self, code: str | None = None, message: str | None = None) -> bool:
        changed = self.transition_to(self.S_CANCELLED)
        if changed:
            self.response_code = code
            self.response_message = message
            self.cancelled_at = datetime.utcnow()
        return changed

    def mark_expired(self) -> bool:
        return self.transition_to(self.S_EXPIRED)

    def record_notification(self) -> None:
        self.notification_count = (self.notification_count or 0) + 1
        self.last_notified_at = datetime.utcnow()
