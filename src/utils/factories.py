import uuid
from datetime import datetime, timezone

from src.models.gateway import CustomerDetails, ItemDetails, PaymentRequest
from src.models.transaction import PaymentMethod, Transaction, TransactionStatus
from src.utils.crypto import generate_signature


STATUS_CODES = {
    "capture": "200",
    "settlement": "200",
    "pending": "201",
    "deny": "202",
    "cancel": "200",
    "expire": "407",
    "refund": "200",
    "partial_refund": "200",
}


def status_code_for(transaction_status: str) -> str:
    return STATUS_CODES.get(transaction_status, "200")


class TransactionFactory:
    """Factory for creating Transaction instances with sensible defaults."""

    @staticmethod
    def create(**overrides) -> Transaction:
        now = datetime.now(timezone.utc)
        defaults = {
            "id": uuid.uuid4().hex,
            "order_id": f"ORD-{uuid.uuid4().hex[:12]}",
            "user_id": f"user_{uuid.uuid4().hex[:8]}",
            "amount": 50000,
            "currency": "IDR",
            "status": TransactionStatus.PENDING,
            "payment_method": PaymentMethod(
                id="credit_card", type="credit_card", name="Credit Card", provider="Midtrans",
            ),
            "created_at": now,
            "updated_at": now,
            "metadata": {},
        }
        defaults.update(overrides)
        return Transaction(**defaults)


class PaymentRequestFactory:
    """Factory for valid PaymentRequest instances whose item total matches the amount."""

    @staticmethod
    def create(**overrides) -> PaymentRequest:
        amount = overrides.pop("amount", 50000)
        defaults = {
            "order_id": f"ORD-{uuid.uuid4().hex[:12]}",
            "amount": amount,
            "customer": CustomerDetails(
                first_name="Budi",
                last_name="Santoso",
                email="budi@example.com",
                phone="+628123456789",
            ),
            "items": [ItemDetails(id="plan-basic", name="Basic Plan", price=amount, quantity=1)],
            "payment_method": None,
        }
        defaults.update(overrides)
        return PaymentRequest(**defaults)


class NotificationFactory:
    """Factory for gateway webhook payloads, signed with the given server key."""

    @staticmethod
    def create(
        order_id: str,
        transaction_status: str = "settlement",
        gross_amount: str = "50000.00",
        server_key: str = "",
        **overrides,
    ) -> dict:
        status_code = overrides.pop("status_code", status_code_for(transaction_status))
        payload = {
            "transaction_time": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            "transaction_status": transaction_status,
            "transaction_id": overrides.pop("transaction_id", str(uuid.uuid4())),
            "status_message": "midtrans payment notification",
            "status_code": status_code,
            "payment_type": overrides.pop("payment_type", "credit_card"),
            "order_id": order_id,
            "gross_amount": gross_amount,
            "fraud_status": overrides.pop("fraud_status", "accept"),
            "currency": "IDR",
        }
        payload["signature_key"] = overrides.pop(
            "signature_key",
            generate_signature(order_id, status_code, gross_amount, server_key),
        )
        payload.update(overrides)
        return payload
