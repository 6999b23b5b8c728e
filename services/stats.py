"""Read-only reporting over payments and the resources they pay for."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from models.boutique import Boutique
from models.demande import Demande
from models.payment import Payment
from models.plan import Plan
from models.purchase import Purchase
from models.registration import RegistrationItem
from models.subscription import Subscription
from models.user import User
from services.payables import payable_for

STATUS_KEYWORDS = {
    "active": "active",
    "actif": "active",
    "paid": "active",
    "payé": "active",
    "pending": "pending",
    "en_attente": "pending",
    "à valider": "pending",
    "a_valider": "pending",
    "expired": "expired",
    "expiré": "expired",
    "expire": "expired",
}
SERVICE_BUCKETS = ("active", "pending", "expired", "inactive")


def classify_status(raw: Optional[str]) -> str:
    return STATUS_KEYWORDS.get((raw or "").strip().lower(), "inactive")


def boutique_purchase_stats(db: Session, boutique: Boutique) -> Dict[str, Any]:
    base = db.query(Purchase).filter(Purchase.boutique_id == boutique.id)
    paid = base.filter(Purchase.status == "paid")
    return {
        "product": {"id": boutique.id, "name": boutique.name, "type": boutique.type},
        "purchases": base.count(),
        "paid_purchases": paid.count(),
        "revenue_cfa": int(paid.with_entities(func.coalesce(func.sum(Purchase.unit_price_cfa), 0)).scalar() or 0),
    }


def boutique_dashboard(db: Session) -> Dict[str, int]:
    paid = db.query(Purchase).filter(Purchase.status == "paid")
    return {
        "total_products": db.query(func.count(Boutique.id)).scalar() or 0,
        "active_products": db.query(func.count(Boutique.id)).filter(Boutique.is_active.is_(True)).scalar() or 0,
        "paid_purchases": paid.count(),
        "revenue_cfa": int(paid.with_entities(func.coalesce(func.sum(Purchase.unit_price_cfa), 0)).scalar() or 0),
    }


def plan_subscription_summary(db: Session, plan: Plan) -> Dict[str, int]:
    base = db.query(Subscription).filter(Subscription.plan_id == plan.id)
    total = base.count()
    active = base.filter(Subscription.status == "active").count()
    pending = base.filter(Subscription.status == "pending").count()
    return {
        "total": total,
        "active": active,
        "pending": pending,
        # not stored; whatever is neither active nor pending
        "inactive": max(total - active - pending, 0),
    }


def payments_needing_review(db: Session) -> List[Payment]:
    return db.query(Payment).filter(Payment.needs_review.is_(True)).order_by(Payment.id.desc()).all()


# --- per-user service overview -------------------------------------------------

# type tag -> (model, relationship to use when the table has no user_id column)
USER_SERVICE_TYPES = {
    "subscription": (Subscription, None),
    "formation": (RegistrationItem, None),
    "demande": (Demande, Demande.author),
}


def _user_filter(model, relation, user_id: int):
    """Filter on ``user_id`` when the table has it, otherwise through the user relationship."""
    if "user_id" in model.__table__.columns:
        return model.user_id == user_id
    if relation.property.uselist:
        return relation.any(User.id == user_id)
    return relation.has(User.id == user_id)


def _user_query(db: Session, type_tag: str, user_id: int):
    model, relation = USER_SERVICE_TYPES[type_tag]
    return db.query(model).filter(_user_filter(model, relation, user_id))


def _last_payment(db: Session, type_tag: str, row) -> Optional[Payment]:
    if type_tag == "formation":
        if row.payment_id is None:
            return None
        return db.get(Payment, row.payment_id)
    return (
        db.query(Payment)
        .filter(Payment.payable_type == type_tag, Payment.payable_id == row.id)
        .order_by(Payment.id.desc())
        .first()
    )


def _raw_status(type_tag: str, row) -> Optional[str]:
    # An active subscription whose cycle has run out reads as expired
    if type_tag == "subscription" and row.status == "active":
        if row.current_cycle_end and row.current_cycle_end < datetime.utcnow():
            return "expired"
    return row.status


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _service_row(db: Session, type_tag: str, row) -> Dict[str, Any]:
    period = None
    started = ended = None
    if type_tag == "subscription":
        label = row.plan.name if row.plan else f"subscription #{row.id}"
        period = row.period
        started, ended = row.current_cycle_start, row.current_cycle_end
        if row.plan is None:
            amount = None
        elif (period or "").lower() == "yearly":
            amount = row.plan.yearly_price_cfa
        else:
            amount = row.plan.monthly_price_cfa
    elif type_tag == "formation":
        label = row.formation.title if row.formation else f"formation #{row.formation_id}"
        amount = row.amount if row.amount is not None else (row.formation.price_cfa if row.formation else None)
        started = row.formation.start_date if row.formation else None
    else:
        label = payable_for(db, row).label()
        amount = int(row.paid_amount) if row.paid_amount else None

    last = _last_payment(db, type_tag, row)
    return {
        "type": type_tag,
        "id": row.id,
        "label": label,
        "status": classify_status(_raw_status(type_tag, row)),
        "period": period,
        "startedAt": started.isoformat() if started else None,
        "endsAt": _iso(ended),
        "createdAt": _iso(row.created_at),
        "amountXof": amount,
        "lastPaymentRef": last.reference if last else None,
        "lastPaymentStatus": last.status if last else None,
        "lastPaymentAt": _iso(last.paid_at) if last else None,
    }


def user_services(db: Session, user_id: int, page: int = 1, per_page: int = 10, q: str = "") -> Dict[str, Any]:
    rows: List[Dict[str, Any]] = []
    for type_tag in USER_SERVICE_TYPES:
        for row in _user_query(db, type_tag, user_id).all():
            rows.append(_service_row(db, type_tag, row))

    needle = q.strip().lower()
    if needle:
        rows = [
            r for r in rows
            if any(needle in str(r[k] or "").lower() for k in ("label", "status", "period", "type"))
        ]

    rows.sort(key=lambda r: r["createdAt"] or "", reverse=True)
    page = max(1, page)
    per_page = max(1, per_page)
    start = (page - 1) * per_page
    return {"data": rows[start:start + per_page], "total": len(rows), "page": page, "perPage": per_page}


def user_services_summary(db: Session, user_id: int) -> Dict[str, int]:
    counts = {"total": 0, **{bucket: 0 for bucket in SERVICE_BUCKETS}}
    for type_tag in USER_SERVICE_TYPES:
        for row in _user_query(db, type_tag, user_id).all():
            counts["total"] += 1
            counts[classify_status(_raw_status(type_tag, row))] += 1
    return counts


def customer_payments_filter(user: User):
    """Payments a client may see: initiated by them or paid with their email."""
    return or_(Payment.user_id == user.id, func.lower(Payment.customer_email) == user.email.lower())
