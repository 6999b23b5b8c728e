"""
Fulfillment dispatcher: payment status -> hook on the concrete payable.

No business rules here. Callers wrap the status change and the dispatch in
``core.db.atomic`` so the ledger and the fulfilled resource commit together.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from models.payment import Payment
from models.payment_event import PaymentEvent
from services.payables import resolve_payable

logger = logging.getLogger(__name__)

HOOKS = {
    Payment.S_PENDING: "on_payment_pending",
    Payment.S_INITIATED: "on_payment_pending",
    Payment.S_PROCESSING: "on_payment_pending",
    Payment.S_SUCCEEDED: "on_payment_succeeded",
    Payment.S_FAILED: "on_payment_failed",
    Payment.S_CANCELLED: "on_payment_failed",
    Payment.S_EXPIRED: "on_payment_failed",
}

# PaiementPro response codes
CODE_SUCCESS = "0"
CODE_CANCELLED = "-1"


def dispatch(db: Session, payment: Payment) -> Optional[str]:
    """Invoke the hook matching the payment's current status. Returns the hook name that ran."""
    payable = resolve_payable(db, payment.payable_type, payment.payable_id)
    if payable is None:
        message = f"Ressource introuvable: {payment.payable_type} #{payment.payable_id}"
        logger.warning("Payment %s: %s", payment.reference, message)
        payment.add_warning(message)
        return None

    hook = HOOKS[payment.status]
    getattr(payable, hook)(payment)
    logger.info("Payment %s (%s): %s ran on %s #%s", payment.reference, payment.status, hook,
                payment.payable_type, payment.payable_id)
    return hook


def status_for_code(code: Optional[str]) -> str:
    code = (code or "").strip()
    if code == CODE_SUCCESS:
        return Payment.S_SUCCEEDED
    if code == CODE_CANCELLED:
        return Payment.S_CANCELLED
    return Payment.S_FAILED


def settle_payment(db: Session, payment: Payment, code: Optional[str], message: Optional[str] = None) -> bool:
    """
    Apply a gateway verdict. Returns True when the status changed.

    A verdict for a payment that is already terminal is a redelivery: the
    status is left alone and the hook for the recorded status runs again.
    """
    if payment.is_terminal:
        logger.info("Payment %s already %s, redelivery of code %s", payment.reference, payment.status, code)
        if payment.status != Payment.S_SUCCEEDED and status_for_code(code) == Payment.S_SUCCEEDED:
            payment.add_warning(f"Paiement confirmé par la passerelle après clôture ({payment.status})")
        dispatch(db, payment)
        return False

    target = status_for_code(code)
    if target == Payment.S_SUCCEEDED:
        changed = payment.mark_succeeded(code, message)
    elif target == Payment.S_CANCELLED:
        changed = payment.mark_cancelled(code, message)
    else:
        changed = payment.mark_failed(code, message)

    db.flush()
    dispatch(db, payment)
    return changed


def record_event(
    db: Session,
    payment: Payment,
    event_type: str,
    payload: Optional[Dict[str, Any]] = None,
    remote_ip: Optional[str] = None,
) -> PaymentEvent:
    event = PaymentEvent(payment_id=payment.id, type=event_type, payload=payload or {}, remote_ip=remote_ip)
    db.add(event)
    return event
