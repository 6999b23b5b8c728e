import re

import requests

from core import config as core_config
from models.demande import Demande
from models.payment import Payment
from models.purchase import Purchase
from models.registration import RegistrationItem
from services import paiementpro
from services.references import DEMANDE_REF, assign_reference

CUSTOMER = {
    "channel": "OMCIV2",
    "customerEmail": "awa@example.com",
    "customerFirstName": "Awa",
    "customerLastName": "Koné",
    "customerPhoneNumber": "+2250700000000",
}


class TestInitiatePayment:

    def test_demande_end_to_end(self, client, db, demande, gateway):
        """Initiate, confirm through the return URL, then refuse a second charge"""
        r = client.post(f"/pay/demande/{demande.id}", json=CUSTOMER)
        assert r.status_code == 200
        body = r.json()
        assert body["action"] == core_config.settings.PAIEMENTPRO_PROCESSING_URL
        assert body["method"] == "GET"
        assert body["fields"]["sessionId"] == "SESS0001"
        assert body["fields"]["referenceNumber"] == body["reference"]
        assert re.fullmatch(r"DEMANDE-\d{8}-\d{6}", body["reference"])

        sent = gateway[0]
        assert sent["amount"] == 5000
        assert sent["referenceNumber"] == body["reference"]
        assert sent["customerEmail"] == "awa@example.com"
        assert demande.paid_status == Demande.PAYMENT_PENDING

        payment = db.query(Payment).one()
        assert payment.status == Payment.S_INITIATED
        assert payment.amount == 5000
        assert payment.customer_phone == "+2250700000000"

        r = client.get("/pay/return", params={"referenceNumber": body["reference"], "responsecode": "0"})
        assert r.status_code == 200
        assert r.json() == {"reference": body["reference"], "status": "succeeded"}
        assert demande.paid_status == Demande.PAYMENT_CONFIRMED
        assert demande.payment_status == Demande.PAYMENT_CONFIRMED
        assert demande.paid_amount == 5000

        r = client.post(f"/pay/demande/{demande.id}", json=CUSTOMER)
        assert r.status_code == 409

    def test_unknown_payable(self, client, demande, gateway):
        assert client.post("/pay/invoice/1", json=CUSTOMER).status_code == 404
        assert client.post("/pay/demande/9999", json=CUSTOMER).status_code == 404
        assert gateway == []

    def test_unresolvable_amount_writes_nothing(self, client, db, test_user, gateway):
        item = Demande(type_slug="bail", created_by=test_user.id, data={"note": "sans prix"})
        assign_reference(db, item, "ref", *DEMANDE_REF)
        db.commit()

        r = client.post(f"/pay/demande/{item.id}", json=CUSTOMER)
        assert r.status_code == 422
        assert db.query(Payment).count() == 0
        assert gateway == []

    def test_email_required_for_anonymous(self, client, demande, gateway):
        r = client.post(f"/pay/demande/{demande.id}", json={"channel": "OMCIV2"})
        assert r.status_code == 422

    def test_open_payment_is_reused(self, client, db, demande, gateway):
        first = client.post(f"/pay/demande/{demande.id}", json=CUSTOMER).json()
        second = client.post(f"/pay/demande/{demande.id}", json=CUSTOMER).json()
        assert first["reference"] == second["reference"]
        assert len(gateway) == 1
        assert db.query(Payment).count() == 1

    def test_repay_cancels_open_payment(self, client, db, demande, gateway):
        first = client.post(f"/pay/demande/{demande.id}", json=CUSTOMER).json()
        second = client.post(f"/pay/demande/{demande.id}", json={**CUSTOMER, "repay": True}).json()
        assert first["reference"] != second["reference"]

        old = db.query(Payment).filter(Payment.reference == first["reference"]).one()
        assert old.status == Payment.S_CANCELLED
        assert db.query(Payment).filter(Payment.reference == second["reference"]).one().status == "initiated"
        assert demande.paid_status == Demande.PAYMENT_PENDING

    def test_gateway_down_rolls_back(self, client, db, demande, monkeypatch):
        def _boom(*args, **kwargs):
            raise requests.ConnectionError("no route to host")

        monkeypatch.setattr(paiementpro.requests, "post", _boom)
        r = client.post(f"/pay/demande/{demande.id}", json=CUSTOMER)
        assert r.status_code == 502
        assert db.query(Payment).count() == 0

    def test_logged_in_formation_registration(self, client, db, formation, test_user, auth_headers, gateway):
        r = client.post(f"/pay/formation/{formation.id}", json={"channel": "CARD"}, headers=auth_headers)
        assert r.status_code == 200
        reference = r.json()["reference"]
        payment = db.query(Payment).filter(Payment.reference == reference).one()
        assert payment.user_id == test_user.id
        assert payment.customer_email == test_user.email
        assert payment.amount == 75000

        client.post("/pay/webhook", data={"referenceNumber": reference, "responsecode": "0"})
        item = db.query(RegistrationItem).one()
        assert item.user_id == test_user.id
        assert item.status == "paid"
        assert item.payment_id == payment.id


class TestGatewayCallbacks:

    def test_return_unknown_reference(self, client):
        r = client.get("/pay/return", params={"referenceNumber": "NOPE-1", "responsecode": "0"})
        assert r.status_code == 200
        assert r.json() == {"reference": "NOPE-1", "status": "unknown"}

    def test_webhook_json_and_redelivery(self, client, db, subscription, gateway):
        reference = client.post(f"/pay/subscription/{subscription.id}", json=CUSTOMER).json()["reference"]

        r = client.post("/pay/webhook", json={"referenceNumber": reference, "responsecode": "0"})
        assert r.json() == {"reference": reference, "status": "succeeded"}
        end = subscription.current_cycle_end
        assert subscription.status == "active"

        client.post("/pay/webhook", json={"referenceNumber": reference, "responsecode": "0"})
        payment = db.query(Payment).filter(Payment.reference == reference).one()
        assert payment.notification_count == 2
        assert subscription.current_cycle_end == end

    def test_webhook_failure_code(self, client, demande, gateway):
        reference = client.post(f"/pay/demande/{demande.id}", json=CUSTOMER).json()["reference"]
        r = client.post("/pay/webhook", data={"referenceNumber": reference, "responsecode": "-1"})
        assert r.json()["status"] == "cancelled"
        assert demande.paid_status == Demande.PAYMENT_FAILED

    def test_webhook_bad_signature(self, client, db, demande, gateway, monkeypatch):
        monkeypatch.setattr(core_config.settings, "PAIEMENTPRO_SECRET", "s3cret")
        reference = client.post(f"/pay/demande/{demande.id}", json=CUSTOMER).json()["reference"]
        assert "hashcode" in gateway[0]

        r = client.post("/pay/webhook", data={"referenceNumber": reference, "responsecode": "0", "hashcode": "x"})
        assert r.status_code == 400
        payment = db.query(Payment).filter(Payment.reference == reference).one()
        assert payment.status == Payment.S_INITIATED
        assert payment.notification_count == 0

        params = {"referenceNumber": reference, "responsecode": "0"}
        params["hashcode"] = paiementpro.compute_signature(params)
        r = client.post("/pay/webhook", data=params)
        assert r.status_code == 200
        assert r.json()["status"] == "succeeded"

    def test_guest_boutique_purchase_delivered_once(self, client, db, file_product, gateway, mock_email_send):
        guest = {**CUSTOMER, "customerEmail": "buyer@example.com"}
        reference = client.post(f"/pay/boutique/{file_product.id}", json=guest).json()["reference"]
        purchase = db.query(Purchase).one()
        assert purchase.status == "pending"

        client.get("/pay/return", params={"referenceNumber": reference, "responsecode": "0"})
        client.post("/pay/webhook", data={"referenceNumber": reference, "responsecode": "0"})

        assert purchase.status == "paid"
        assert purchase.unit_price_cfa == 1500
        assert purchase.delivered_payload["mode"] == "files_mail"
        assert [m["to"] for m in mock_email_send] == ["buyer@example.com"]
