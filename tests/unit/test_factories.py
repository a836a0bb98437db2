import pytest

from src.models.transaction import Transaction, TransactionStatus
from src.models.webhook import WebhookNotification
from src.payments.errors import ValidationError
from src.utils.crypto import verify_signature
from src.utils.factories import STATUS_CODES, status_code_for


class TestTransactionFactory:

    @pytest.mark.unit
    def test_defaults(self, transaction_factory):
        txn = transaction_factory.create()
        assert isinstance(txn, Transaction)
        assert txn.status == TransactionStatus.PENDING
        assert txn.amount == 50000
        assert txn.currency == "IDR"
        assert txn.order_id.startswith("ORD-")
        assert txn.refunded_amount == 0
        assert txn.refundable_amount == 50000

    @pytest.mark.unit
    def test_unique_ids(self, transaction_factory):
        a, b = transaction_factory.create(), transaction_factory.create()
        assert a.id != b.id
        assert a.order_id != b.order_id

    @pytest.mark.unit
    def test_overrides(self, transaction_factory):
        txn = transaction_factory.create(amount=100000, metadata={"refunded_amount": 30000})
        assert txn.refunded_amount == 30000
        assert txn.refundable_amount == 70000


class TestPaymentRequestFactory:

    @pytest.mark.unit
    def test_items_total_follows_amount(self, request_factory):
        request = request_factory.create(amount=75000)
        assert request.amount == 75000
        assert sum(i.price * i.quantity for i in request.items) == 75000

    @pytest.mark.unit
    def test_customer_defaults(self, request_factory):
        request = request_factory.create()
        assert request.customer.first_name
        assert "@" in request.customer.email
        assert request.currency == "IDR"


class TestNotificationFactory:

    @pytest.mark.unit
    def test_payload_is_signed(self, notification_factory, server_key):
        payload = notification_factory.create("ORD1", server_key=server_key)
        assert verify_signature(
            payload["order_id"], payload["status_code"], payload["gross_amount"],
            server_key, payload["signature_key"],
        )

    @pytest.mark.unit
    @pytest.mark.parametrize("transaction_status", sorted(STATUS_CODES))
    def test_status_code_follows_transaction_status(self, notification_factory, transaction_status):
        payload = notification_factory.create("ORD1", transaction_status=transaction_status)
        assert payload["status_code"] == STATUS_CODES[transaction_status]

    @pytest.mark.unit
    def test_unknown_status_defaults_to_200(self):
        assert status_code_for("authorize") == "200"

    @pytest.mark.unit
    def test_signature_override(self, notification_factory):
        payload = notification_factory.create("ORD1", signature_key="forged")
        assert payload["signature_key"] == "forged"

    @pytest.mark.unit
    def test_extra_fields_are_added(self, notification_factory):
        payload = notification_factory.create("ORD1", va_numbers=[{"bank": "bca", "va_number": "123"}])
        assert payload["va_numbers"][0]["bank"] == "bca"


class TestWebhookNotification:
    """Tests for WebhookNotification.from_payload()."""

    @pytest.mark.unit
    def test_parses_factory_payload(self, notification_factory):
        payload = notification_factory.create("ORD1", transaction_status="settlement", payment_type="gopay")
        notification = WebhookNotification.from_payload(payload)

        assert notification.order_id == "ORD1"
        assert notification.transaction_status == "settlement"
        assert notification.status_code == "200"
        assert notification.gross_amount == "50000.00"
        assert notification.payment_type == "gopay"
        assert notification.raw == payload

    @pytest.mark.unit
    @pytest.mark.parametrize("missing", [
        "order_id", "status_code", "gross_amount", "transaction_status", "signature_key",
    ])
    def test_missing_required_field(self, notification_factory, missing):
        payload = notification_factory.create("ORD1")
        del payload[missing]
        with pytest.raises(ValidationError) as exc_info:
            WebhookNotification.from_payload(payload)
        assert f"{missing} is required" in exc_info.value.errors

    @pytest.mark.unit
    @pytest.mark.parametrize("payload", [[], "settlement", None, 42])
    def test_non_object_payload(self, payload):
        with pytest.raises(ValidationError):
            WebhookNotification.from_payload(payload)

    @pytest.mark.unit
    def test_safe_context_excludes_signature_and_amount(self, notification_factory):
        notification = WebhookNotification.from_payload(notification_factory.create("ORD1"))
        context = notification.safe_context()
        assert "signature_key" not in context
        assert "gross_amount" not in context
        assert context["order_id"] == "ORD1"
