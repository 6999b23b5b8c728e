"""
Payable capability: every resource a Payment can point at.

A Payment only stores a type tag and an id. ``PAYABLE_TYPES`` maps the tag to
the wrapper class that knows the model, the amount rule, the display label and
the three lifecycle hooks. Hooks run again on every redelivered gateway
notification, so each one must leave the same state when applied twice.
"""
import calendar
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Type

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.boutique import Boutique
from models.demande import Demande
from models.formation import Formation
from models.payment import Payment
from models.purchase import Purchase
from models.registration import RegistrationItem
from models.subscription import Subscription
from models.user import User
from security.password import random_password_hash
from services import amounts
from services.delivery import deliver_purchase
from services.references import PURCHASE_REF, assign_reference

logger = logging.getLogger(__name__)


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _sentence_from_slug(slug: Optional[str]) -> str:
    text = (slug or "").replace("-", " ").replace("_", " ").strip().lower()
    return text[:1].upper() + text[1:]


def resolve_customer(db: Session, payment: Payment) -> Optional[User]:
    """Find the user behind a payment: initiator, then meta, then customer email."""
    if payment.user_id:
        user = db.get(User, payment.user_id)
        if user:
            return user
    meta_user_id = (payment.meta or {}).get("user_id")
    if meta_user_id:
        try:
            user = db.get(User, int(meta_user_id))
        except (TypeError, ValueError):
            user = None
        if user:
            return user
    if payment.customer_email:
        return db.query(User).filter(func.lower(User.email) == payment.customer_email.lower()).first()
    return None


class Payable:
    """Base wrapper; subclasses set ``type_tag`` and ``model`` and override what they need."""

    type_tag: str = ""
    model: Type[Any] = None

    def __init__(self, db: Optional[Session], resource: Any):
        self.db = db
        self.resource = resource

    @property
    def id(self) -> int:
        return self.resource.id

    def amount_xof(self) -> int:
        raise NotImplementedError

    def label(self) -> str:
        return f"{self.type_tag.capitalize()} #{self.id}"

    def already_paid(self, customer_email: Optional[str]) -> bool:
        """True when a new payment would charge for something already settled."""
        return False

    def _succeeded_payments(self):
        return self.db.query(Payment).filter(
            Payment.payable_type == self.type_tag,
            Payment.payable_id == self.id,
            Payment.status == Payment.S_SUCCEEDED,
        )

    def on_payment_pending(self, payment: Payment) -> None:
        pass

    def on_payment_succeeded(self, payment: Payment) -> None:
        pass

    def on_payment_failed(self, payment: Payment) -> None:
        pass


class DemandePayable(Payable):
    type_tag = "demande"
    model = Demande

    def amount_xof(self) -> int:
        return amounts.resolve_demande_amount(self.resource.data, self.resource.paid_amount)

    def label(self) -> str:
        title = _sentence_from_slug(self.resource.type_slug) or "Demande"
        return f"Demande: {title} ({self.resource.ref})"

    def already_paid(self, customer_email: Optional[str]) -> bool:
        return self._confirmed() or self._succeeded_payments().first() is not None

    def _confirmed(self) -> bool:
        return self.resource.paid_status == Demande.PAYMENT_CONFIRMED

    def _set_payment_state(self, state: str) -> None:
        self.resource.paid_status = state
        self.resource.payment_status = state

    def on_payment_pending(self, payment: Payment) -> None:
        if self._confirmed():
            return
        self._set_payment_state(Demande.PAYMENT_PENDING)
        if not self.resource.currency:
            self.resource.currency = payment.currency

    def on_payment_succeeded(self, payment: Payment) -> None:
        self._set_payment_state(Demande.PAYMENT_CONFIRMED)
        self.resource.paid_amount = payment.amount
        self.resource.currency = payment.currency

    def on_payment_failed(self, payment: Payment) -> None:
        if self._confirmed():
            return
        self._set_payment_state(Demande.PAYMENT_FAILED)


class FormationPayable(Payable):
    type_tag = "formation"
    model = Formation

    def amount_xof(self) -> int:
        return amounts.resolve_fixed_price(self.resource.price_cfa, f"la formation {self.resource.code}")

    def label(self) -> str:
        return f"Formation: {self.resource.title} ({self.resource.code})"

    def already_paid(self, customer_email: Optional[str]) -> bool:
        if not customer_email:
            return False
        query = self._succeeded_payments().filter(func.lower(Payment.customer_email) == customer_email.lower())
        return query.first() is not None

    def on_payment_succeeded(self, payment: Payment) -> None:
        user = resolve_customer(self.db, payment)
        if user is None:
            message = f"Inscription non créée: aucun utilisateur pour le paiement {payment.reference}"
            logger.warning(message)
            payment.add_warning(message)
            return

        item = (
            self.db.query(RegistrationItem)
            .filter(RegistrationItem.formation_id == self.resource.id, RegistrationItem.user_id == user.id)
            .one_or_none()
        )
        if item is None:
            item = RegistrationItem(formation_id=self.resource.id, user_id=user.id)
            self.db.add(item)

        item.status = "paid"
        item.paid_at = payment.paid_at or item.paid_at or datetime.utcnow()
        item.amount = payment.amount
        item.currency = payment.currency
        item.payment_id = payment.id
        item.meta = {**(item.meta or {}), "payment_reference": payment.reference, "channel": payment.channel}
        self.db.flush()

        payment.merge_meta(registration_item_id=item.id)


class SubscriptionPayable(Payable):
    type_tag = "subscription"
    model = Subscription

    def amount_xof(self) -> int:
        return amounts.resolve_plan_amount(self.resource.plan, self.resource.period)

    def label(self) -> str:
        plan = self.resource.plan
        plan_name = plan.name if plan is not None else f"Plan #{self.resource.plan_id}"
        return f"Abonnement: {plan_name} ({self.resource.period})"

    def on_payment_pending(self, payment: Payment) -> None:
        if self.resource.status != "active":
            self.resource.status = "pending"

    def on_payment_succeeded(self, payment: Payment) -> None:
        sub = self.resource
        if sub.last_payment_reference == payment.reference:
            return

        now = datetime.utcnow()
        start = now
        if sub.status == "active" and sub.current_cycle_end and sub.current_cycle_end > now:
            start = sub.current_cycle_end
        if (sub.period or "").lower() == "yearly":
            end = add_months(start, 12)
        else:
            end = add_months(start, 1)

        sub.status = "active"
        sub.current_cycle_start = start
        sub.current_cycle_end = end
        sub.last_payment_reference = payment.reference


class BoutiquePayable(Payable):
    type_tag = "boutique"
    model = Boutique

    def amount_xof(self) -> int:
        return amounts.resolve_fixed_price(self.resource.price_cfa, f"le produit {self.resource.code}")

    def label(self) -> str:
        return f"{self.resource.name or 'Produit'} • {self.resource.code or ''}".strip()

    def _customer_account(self, payment: Payment) -> User:
        user = resolve_customer(self.db, payment)
        if user is not None:
            return user
        user = User(
            first_name=payment.customer_first_name or "Client",
            last_name=payment.customer_last_name or "",
            email=payment.customer_email.lower(),
            phone=payment.customer_phone,
            password_hash=random_password_hash(),
        )
        self.db.add(user)
        self.db.flush()
        logger.info("Created client account %s for payment %s", user.id, payment.reference)
        return user

    def _purchase(self, payment: Payment, create: bool = True) -> Optional[Purchase]:
        purchase = self.db.query(Purchase).filter(Purchase.payment_id == payment.id).one_or_none()
        if purchase is not None or not create:
            return purchase

        item = self.resource
        purchase = Purchase(
            user_id=self._customer_account(payment).id,
            boutique_id=item.id,
            payment_id=payment.id,
            status="pending",
            unit_price_cfa=payment.amount,
            currency=payment.currency or "XOF",
            channel=payment.channel,
            customer_snapshot={
                "firstName": payment.customer_first_name,
                "lastName": payment.customer_last_name,
                "email": payment.customer_email,
                "phone": payment.customer_phone,
            },
            product_snapshot={
                "name": item.name,
                "code": item.code,
                "type": item.type,
                "description": item.description,
                "files": list(item.files or []),
                "image_url": item.image_url,
            },
            meta={"payment_ref": payment.reference},
        )
        assign_reference(self.db, purchase, "ref", *PURCHASE_REF)
        payment.merge_meta(purchase_id=purchase.id)
        return purchase

    def on_payment_pending(self, payment: Payment) -> None:
        if payment.customer_email or payment.user_id:
            self._purchase(payment)

    def on_payment_succeeded(self, payment: Payment) -> None:
        if not (payment.customer_email or resolve_customer(self.db, payment)):
            message = f"Achat non créé: aucun client pour le paiement {payment.reference}"
            logger.warning(message)
            payment.add_warning(message)
            return
        purchase = self._purchase(payment)
        purchase.status = "paid"
        purchase.channel = payment.channel
        deliver_purchase(self.db, purchase)

    def on_payment_failed(self, payment: Payment) -> None:
        purchase = self._purchase(payment, create=False)
        if purchase is not None and purchase.status != "paid":
            purchase.status = payment.status


PAYABLE_TYPES: Dict[str, Type[Payable]] = {
    cls.type_tag: cls for cls in (DemandePayable, FormationPayable, SubscriptionPayable, BoutiquePayable)
}
_BY_MODEL: Dict[type, Type[Payable]] = {cls.model: cls for cls in PAYABLE_TYPES.values()}


def payable_class(type_tag: str) -> Optional[Type[Payable]]:
    return PAYABLE_TYPES.get((type_tag or "").lower())


def resolve_payable(db: Session, type_tag: str, payable_id: int) -> Optional[Payable]:
    """Tag + id -> Payable wrapper, or None when the tag or the row is unknown."""
    cls = payable_class(type_tag)
    if cls is None:
        return None
    resource = db.get(cls.model, payable_id)
    if resource is None:
        return None
    return cls(db, resource)


def payable_for(db: Optional[Session], resource: Any) -> Payable:
    cls = _BY_MODEL.get(type(resource))
    if cls is None:
        raise TypeError(f"{type(resource).__name__} is not payable")
    return cls(db, resource)
