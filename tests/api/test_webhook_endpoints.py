"""
Integration tests for the Square webhook receiver
"""
from db.models.payment import Payment
from db.repositories.payment_repository import PaymentRepository
from db.repositories.subscription_repository import SubscriptionRepository

WEBHOOK_HEADERS = {"x-square-hmacsha256-signature": "test-signature"}


def post_event(client, body, headers=WEBHOOK_HEADERS):
    return client.post("/api/webhooks/billing", content=body, headers=headers)


def subscribe(client):
    response = client.post(
        "/api/subscriptions",
        json={
            "email": "a@x.com",
            "firstName": "A",
            "lastName": "B",
            "planType": "pro-monthly",
            "paymentToken": "cnon:card-nonce-ok",
        },
    )
    assert response.status_code == 201
    return response.json()["subscription"]


def paid_invoice(invoice_id="inv-1"):
    return {
        "invoice": {
            "id": invoice_id,
            "subscription_id": "SQ_SUB_1",
            "status": "PAID",
            "payment_requests": [{"computed_amount_money": {"amount": 299, "currency": "GBP"}}],
        }
    }


class TestWebhookValidation:
    def test_missing_signature(self, client, square_event):
        response = post_event(client, square_event("invoice.payment_made", paid_invoice()), headers={})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Missing webhook signature"}

    def test_legacy_signature_header_accepted(self, client, square_event):
        response = post_event(
            client,
            square_event("catalog.version.updated", {}),
            headers={"x-square-signature": "legacy-signature"},
        )
        assert response.status_code == 200

    def test_invalid_json(self, client):
        response = post_event(client, "{not json")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON in webhook body"

    def test_malformed_event_rejected(self, client, square_event):
        response = post_event(client, square_event("invoice.payment_made", "inv-1"))
        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Malformed webhook event: data.object is not an object",
        }

    def test_wrongly_typed_status_rejected(self, client, db_session, square_event):
        subscribe(client)
        response = post_event(
            client,
            square_event("subscription.updated", {"subscription": {"id": "SQ_SUB_1", "status": 42}}),
        )
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert SubscriptionRepository(db_session).get_by_square_id("SQ_SUB_1").status == "ACTIVE"


class TestWebhookHandling:
    def test_unhandled_event_acknowledged(self, client, square_event):
        response = post_event(client, square_event("customer.created", {"customer": {"id": "CUST_9"}}))
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Webhook received but not handled",
            "handled": False,
        }

    def test_payment_made_replay_records_one_payment(self, client, db_session, square_event):
        subscribe(client)
        body = square_event("invoice.payment_made", paid_invoice())

        first = post_event(client, body)
        second = post_event(client, body)

        assert first.status_code == second.status_code == 200
        assert first.json()["message"] == "Payment success webhook processed"
        assert db_session.query(Payment).filter_by(square_payment_id="inv-1").count() == 1

    def test_payment_failed_recorded(self, client, db_session, square_event):
        subscribe(client)
        invoice = paid_invoice("inv-2")
        invoice["invoice"]["status"] = "UNPAID"

        response = post_event(client, square_event("invoice.payment_failed", invoice))

        assert response.json()["handled"] is True
        payment = PaymentRepository(db_session).get_by_reference("inv-2", "FAILED")
        assert payment.failure_reason == "Invoice UNPAID"

    def test_unknown_subscription_acknowledged(self, client, square_event):
        response = post_event(
            client,
            square_event(
                "subscription.updated", {"subscription": {"id": "SQ_UNKNOWN", "status": "CANCELED"}}
            ),
        )
        assert response.status_code == 200
        assert response.json()["handled"] is False

    def test_processing_failure_still_acknowledged(self, client, db_session, square_event, monkeypatch):
        subscribe(client)

        def broken_lookup(self, square_subscription_id):
            raise RuntimeError("lookup exploded")

        monkeypatch.setattr(SubscriptionRepository, "get_by_square_id", broken_lookup)
        response = post_event(
            client,
            square_event(
                "subscription.updated", {"subscription": {"id": "SQ_SUB_1", "status": "CANCELED"}}
            ),
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": False,
            "error": "Webhook received but could not be processed",
        }
