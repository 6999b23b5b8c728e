"""Payment initiation, gateway notifications and the stale-payment sweep."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from core.config import settings
from models.payment import Payment
from models.user import User
from services import paiementpro
from services.fulfillment import dispatch, record_event, settle_payment
from services.payables import Payable, resolve_payable
from services.references import PAYMENT_REF_WIDTH, SCOPE_DAY, assign_reference

logger = logging.getLogger(__name__)


class PayableNotFoundError(Exception):
    pass


class AlreadyPaidError(Exception):
    pass


class InvalidSignatureError(Exception):
    pass


def _open_payment(db: Session, payable: Payable, customer_email: Optional[str]) -> Optional[Payment]:
    query = db.query(Payment).filter(
        Payment.payable_type == payable.type_tag,
        Payment.payable_id == payable.id,
        Payment.status.in_(Payment.OPEN_STATUSES),
    )
    if customer_email:
        query = query.filter(Payment.customer_email == customer_email)
    return query.order_by(Payment.id.desc()).first()


def _redirect(payment: Payment) -> Dict[str, Any]:
    return {
        "action": settings.PAIEMENTPRO_PROCESSING_URL,
        "method": "GET",
        "fields": {"sessionId": payment.session_id, "referenceNumber": payment.reference},
        "reference": payment.reference,
    }


def _open_gateway_session(db: Session, payment: Payment, label: str) -> Dict[str, Any]:
    gateway = paiementpro.initialize_transaction(
        reference=payment.reference,
        amount=payment.amount,
        channel=payment.channel,
        customer={
            "email": payment.customer_email,
            "first_name": payment.customer_first_name,
            "last_name": payment.customer_last_name,
            "phone": payment.customer_phone,
        },
        description=label,
    )
    payment.mark_initiated(gateway["session_id"], ttl_minutes=settings.PAYMENT_SESSION_TTL_MINUTES)
    payment.merge_meta(gateway_init=gateway.get("raw"))
    record_event(db, payment, "initiated", {"sessionId": gateway["session_id"]})
    dispatch(db, payment)
    return _redirect(payment)


def initiate_payment(
    db: Session,
    payable_type: str,
    payable_id: int,
    customer: Dict[str, Any],
    channel: Optional[str] = None,
    user: Optional[User] = None,
    repay: bool = False,
) -> Tuple[Payment, Dict[str, Any]]:
    """
    Create (or reuse) the ledger row for a payable and open a gateway session.

    The amount is resolved before anything is written, so an unpriced resource
    fails the request without leaving a half-created payment behind.
    """
    payable = resolve_payable(db, payable_type, payable_id)
    if payable is None:
        raise PayableNotFoundError(f"Unknown payable {payable_type} #{payable_id}")

    amount = payable.amount_xof()
    email = (customer.get("email") or (user.email if user else "") or "").lower() or None

    if not repay and payable.already_paid(email):
        raise AlreadyPaidError(f"{payable.label()} is already paid")

    now = datetime.utcnow()
    existing = _open_payment(db, payable, email)
    if existing is not None:
        if repay:
            existing.mark_cancelled(message="Remplacé par un nouveau paiement")
            record_event(db, existing, "replaced")
            dispatch(db, existing)
        elif existing.status == Payment.S_INITIATED and existing.session_id and existing.expires_at and existing.expires_at > now:
            logger.info("Reusing open payment %s for %s #%s", existing.reference, payable.type_tag, payable.id)
            return existing, _redirect(existing)
        elif existing.status == Payment.S_PENDING and existing.amount == amount:
            return existing, _open_gateway_session(db, existing, payable.label())
        else:
            existing.mark_expired()
            record_event(db, existing, "expired", {"reason": "superseded"})
            dispatch(db, existing)

    payment = Payment(
        payable_type=payable.type_tag,
        payable_id=payable.id,
        user_id=user.id if user else None,
        amount=amount,
        currency="XOF",
        channel=channel,
        status=Payment.S_PENDING,
        meta={"type": payable.type_tag, "label": payable.label(), "user_id": user.id if user else None},
    )
    payment.set_customer(
        customer_first_name=customer.get("first_name") or (user.first_name if user else None),
        customer_last_name=customer.get("last_name") or (user.last_name if user else None),
        customer_email=email,
        customer_phone=customer.get("phone") or (user.phone if user else None),
    )
    assign_reference(db, payment, "reference", payable.type_tag.upper(), SCOPE_DAY, PAYMENT_REF_WIDTH)
    logger.info("Payment %s created for %s (%s XOF)", payment.reference, payable.label(), amount)
    dispatch(db, payment)

    return payment, _open_gateway_session(db, payment, payable.label())


def _locked(db: Session):
    # Lock held until commit, so a return and a webhook for one payment apply in turn
    return db.query(Payment).with_for_update()


def find_payment(db: Session, reference: Optional[str] = None, session_id: Optional[str] = None) -> Optional[Payment]:
    if reference:
        payment = _locked(db).filter(Payment.reference == reference).one_or_none()
        if payment is not None:
            return payment
    if session_id:
        return _locked(db).filter(Payment.session_id == session_id).one_or_none()
    return None


def handle_notification(
    db: Session,
    params: Dict[str, Any],
    source: str,
    remote_ip: Optional[str] = None,
    require_signature: bool = True,
) -> Optional[Payment]:
    """
    Apply a gateway return/webhook. Returns the payment, or None for an unknown reference.

    Raises InvalidSignatureError when signing is configured and the hashcode does
    not verify; nothing is written in that case.
    Unsigned return-URL verdicts are ignored when no secret is configured outside
    debug and test runs.
    """
    reference = params.get("referenceNumber") or params.get("reference")
    payment = find_payment(db, reference, params.get("sessionId") or params.get("sessionid"))
    if payment is None:
        logger.warning("%s for unknown payment reference %s", source, reference)
        return None

    code = params.get("responsecode")
    if code is None or code == "":
        # Plain status lookup, nothing to apply
        return payment

    if not require_signature and not paiementpro.unsigned_verdicts_allowed():
        logger.warning("%s for %s not applied: unsigned and no PMP_SECRET configured", source, payment.reference)
        return payment

    if paiementpro.signing_enabled() and not paiementpro.verify_signature(params):
        logger.warning("%s for %s rejected: bad hashcode", source, payment.reference)
        if require_signature:
            raise InvalidSignatureError(f"Invalid hashcode for {payment.reference}")
        return payment

    payment.record_notification()
    record_event(db, payment, source, dict(params), remote_ip)
    settle_payment(db, payment, str(code), params.get("message"))
    return payment


def expire_stale_payments(db: Session, now: Optional[datetime] = None) -> int:
    """Move open payments that outlived their session (plus grace) to ``expired``."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=settings.PAYMENT_PENDING_TTL_MINUTES)
    stale = (
        db.query(Payment)
        .filter(
            Payment.status.in_(Payment.OPEN_STATUSES),
            or_(
                Payment.expires_at < cutoff,
                and_(Payment.expires_at.is_(None), Payment.created_at < cutoff),
            ),
        )
        .all()
    )
    for payment in stale:
        payment.mark_expired()
        record_event(db, payment, "expired", {"swept_at": now.isoformat()})
        dispatch(db, payment)
    db.flush()
    if stale:
        logger.info("Expired %s stale payment(s)", len(stale))
    return len(stale)
