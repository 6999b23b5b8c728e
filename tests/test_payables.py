from datetime import datetime, timedelta

from models.demande import Demande
from models.payment import Payment
from models.purchase import Purchase
from models.registration import RegistrationItem
from models.user import User
from services.payables import (
    PAYABLE_TYPES,
    DemandePayable,
    add_months,
    payable_for,
    resolve_customer,
    resolve_payable,
)
from services.references import assign_reference


def make_payment(db, payable, status=Payment.S_SUCCEEDED, **kwargs):
    payment = Payment(
        payable_type=payable.type_tag,
        payable_id=payable.id,
        amount=kwargs.pop("amount", payable.amount_xof()),
        status=status,
        paid_at=datetime.utcnow() if status == Payment.S_SUCCEEDED else None,
        **kwargs,
    )
    assign_reference(db, payment, "reference", payable.type_tag.upper(), "day", 6)
    return payment


class TestRegistry:

    def test_registry_tags(self):
        assert set(PAYABLE_TYPES) == {"demande", "formation", "subscription", "boutique"}

    def test_resolve_unknown(self, db, demande):
        assert resolve_payable(db, "invoice", demande.id) is None
        assert resolve_payable(db, "demande", 9999) is None
        assert isinstance(resolve_payable(db, "DEMANDE", demande.id), DemandePayable)

    def test_labels(self, db, demande, formation, subscription, file_product):
        assert payable_for(db, demande).label() == f"Demande: Creation entreprise ({demande.ref})"
        assert payable_for(db, formation).label() == "Formation: Droit des affaires (FORM001)"
        assert payable_for(db, subscription).label() == "Abonnement: Pro (monthly)"
        assert payable_for(db, file_product).label() == "Modèle de statuts • PROD001"


class TestAddMonths:

    def test_clamps_day(self):
        assert add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
        assert add_months(datetime(2025, 11, 15), 12) == datetime(2026, 11, 15)
        assert add_months(datetime(2025, 12, 1), 1) == datetime(2026, 1, 1)


class TestResolveCustomer:

    def test_order_of_lookup(self, db, test_user, admin_user, demande):
        payable = payable_for(db, demande)
        payment = make_payment(db, payable, customer_email="AWA@example.com")
        assert resolve_customer(db, payment) == test_user

        payment.meta = {"user_id": admin_user.id}
        assert resolve_customer(db, payment) == admin_user

        payment.user_id = test_user.id
        assert resolve_customer(db, payment) == test_user

    def test_nobody(self, db, demande):
        payment = make_payment(db, payable_for(db, demande), customer_email="ghost@example.com")
        assert resolve_customer(db, payment) is None


class TestDemandeHooks:

    def test_success_is_idempotent(self, db, demande):
        payable = payable_for(db, demande)
        payment = make_payment(db, payable)
        payable.on_payment_succeeded(payment)
        payable.on_payment_succeeded(payment)
        assert demande.paid_status == Demande.PAYMENT_CONFIRMED
        assert demande.payment_status == Demande.PAYMENT_CONFIRMED
        assert demande.paid_amount == 5000
        assert demande.currency == "XOF"

    def test_failure_never_downgrades_confirmed(self, db, demande):
        payable = payable_for(db, demande)
        payable.on_payment_succeeded(make_payment(db, payable))
        late = make_payment(db, payable, status=Payment.S_FAILED)
        payable.on_payment_failed(late)
        payable.on_payment_pending(late)
        assert demande.paid_status == Demande.PAYMENT_CONFIRMED

    def test_pending_then_failed(self, db, demande):
        payable = payable_for(db, demande)
        payment = make_payment(db, payable, status=Payment.S_PENDING)
        payable.on_payment_pending(payment)
        assert demande.paid_status == Demande.PAYMENT_PENDING
        assert demande.currency == "XOF"
        payment.status = Payment.S_FAILED
        payable.on_payment_failed(payment)
        assert demande.paid_status == Demande.PAYMENT_FAILED

    def test_already_paid(self, db, demande):
        payable = payable_for(db, demande)
        assert payable.already_paid(None) is False
        make_payment(db, payable)
        assert payable.already_paid(None) is True


class TestFormationHooks:

    def test_registration_created_once(self, db, formation, test_user):
        payable = payable_for(db, formation)
        payment = make_payment(db, payable, customer_email=test_user.email, channel="OMCIV2")
        payable.on_payment_succeeded(payment)
        first_paid_at = db.query(RegistrationItem).one().paid_at
        payable.on_payment_succeeded(payment)
        db.commit()

        items = db.query(RegistrationItem).all()
        assert len(items) == 1
        item = items[0]
        assert item.status == "paid"
        assert item.amount == 75000
        assert item.payment_id == payment.id
        assert item.paid_at == payment.paid_at == first_paid_at
        assert item.meta == {"payment_reference": payment.reference, "channel": "OMCIV2"}
        assert payment.meta["registration_item_id"] == item.id

    def test_unknown_user_records_warning(self, db, formation):
        payable = payable_for(db, formation)
        payment = make_payment(db, payable, customer_email="ghost@example.com")
        payable.on_payment_succeeded(payment)
        assert db.query(RegistrationItem).count() == 0
        assert payment.meta["needs_review"] is True
        assert payment.reference in payment.meta["fulfillment_warnings"][0]

    def test_already_paid_is_per_customer(self, db, formation, test_user):
        payable = payable_for(db, formation)
        make_payment(db, payable, customer_email=test_user.email)
        assert payable.already_paid("AWA@example.com") is True
        assert payable.already_paid("other@example.com") is False


class TestSubscriptionHooks:

    def test_monthly_activation(self, db, subscription):
        payable = payable_for(db, subscription)
        payment = make_payment(db, payable)
        before = datetime.utcnow()
        payable.on_payment_succeeded(payment)
        assert subscription.status == "active"
        assert subscription.current_cycle_start >= before
        assert subscription.current_cycle_end == add_months(subscription.current_cycle_start, 1)
        assert subscription.last_payment_reference == payment.reference

    def test_yearly_cycle(self, db, subscription):
        subscription.period = "yearly"
        payable = payable_for(db, subscription)
        payable.on_payment_succeeded(make_payment(db, payable))
        assert subscription.current_cycle_end == add_months(subscription.current_cycle_start, 12)

    def test_redelivery_does_not_extend_twice(self, db, subscription):
        payable = payable_for(db, subscription)
        payment = make_payment(db, payable)
        payable.on_payment_succeeded(payment)
        end = subscription.current_cycle_end
        payable.on_payment_succeeded(payment)
        assert subscription.current_cycle_end == end

    def test_renewal_extends_from_cycle_end(self, db, subscription):
        cycle_end = datetime.utcnow() + timedelta(days=10)
        subscription.status = "active"
        subscription.current_cycle_end = cycle_end
        payable = payable_for(db, subscription)
        payable.on_payment_succeeded(make_payment(db, payable))
        assert subscription.current_cycle_start == cycle_end
        assert subscription.current_cycle_end == add_months(cycle_end, 1)

    def test_pending_keeps_active(self, db, subscription):
        payable = payable_for(db, subscription)
        payment = make_payment(db, payable, status=Payment.S_PENDING)
        payable.on_payment_pending(payment)
        assert subscription.status == "pending"
        subscription.status = "active"
        payable.on_payment_pending(payment)
        assert subscription.status == "active"


class TestBoutiqueHooks:

    def test_purchase_for_guest_creates_account(self, db, file_product, mock_email_send):
        payable = payable_for(db, file_product)
        payment = make_payment(db, payable, status=Payment.S_PENDING,
                               customer_email="buyer@example.com", customer_first_name="Yao")
        payable.on_payment_pending(payment)
        payable.on_payment_pending(payment)
        purchase = db.query(Purchase).one()
        assert purchase.status == "pending"
        assert purchase.ref.startswith("PUR-")
        assert purchase.user.email == "buyer@example.com"
        assert db.query(User).filter(User.email == "buyer@example.com").count() == 1
        assert payment.meta["purchase_id"] == purchase.id

        payment.status = Payment.S_SUCCEEDED
        payable.on_payment_succeeded(payment)
        payable.on_payment_succeeded(payment)
        assert purchase.status == "paid"
        assert purchase.delivered_at is not None
        assert purchase.delivered_payload == {"mode": "files_mail", "files": ["statuts-sarl.docx", "guide.pdf"]}
        assert mock_email_send == []
        db.commit()
        assert len(mock_email_send) == 1
        assert "guide.pdf" in mock_email_send[0]["body"]

    def test_failed_mirrors_status_unless_paid(self, db, file_product, test_user):
        payable = payable_for(db, file_product)
        payment = make_payment(db, payable, status=Payment.S_PENDING, customer_email=test_user.email)
        payable.on_payment_pending(payment)
        payment.status = Payment.S_CANCELLED
        payable.on_payment_failed(payment)
        assert db.query(Purchase).one().status == "cancelled"

    def test_success_without_customer_is_flagged(self, db, file_product):
        payable = payable_for(db, file_product)
        payment = make_payment(db, payable)
        payable.on_payment_succeeded(payment)
        assert db.query(Purchase).count() == 0
        assert payment.meta["needs_review"] is True
