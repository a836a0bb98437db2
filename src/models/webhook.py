from dataclasses import dataclass, field
from typing import Self

from src.payments.errors import ValidationError


REQUIRED_FIELDS = ("order_id", "status_code", "gross_amount", "transaction_status", "signature_key")


@dataclass
class WebhookNotification:
    """A status callback posted by the gateway."""

    order_id: str
    status_code: str
    gross_amount: str  # raw string as sent, it is a signature input
    transaction_status: str
    signature_key: str
    fraud_status: str | None = None
    payment_type: str | None = None
    transaction_id: str | None = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> Self:
        if not isinstance(payload, dict):
            raise ValidationError("webhook payload must be a JSON object")

        missing = [f for f in REQUIRED_FIELDS if payload.get(f) in (None, "")]
        if missing:
            raise ValidationError(
                f"webhook payload missing fields: {missing}",
                errors=[f"{f} is required" for f in missing],
            )

        return cls(
            order_id=str(payload["order_id"]),
            status_code=str(payload["status_code"]),
            gross_amount=str(payload["gross_amount"]),
            transaction_status=str(payload["transaction_status"]),
            signature_key=str(payload["signature_key"]),
            fraud_status=payload.get("fraud_status"),
            payment_type=payload.get("payment_type"),
            transaction_id=payload.get("transaction_id"),
            raw=dict(payload),
        )

    def safe_context(self) -> dict:
        """Fields that may be logged."""
        return {
            "order_id": self.order_id,
            "transaction_id": self.transaction_id,
            "transaction_status": self.transaction_status,
            "payment_type": self.payment_type,
            "status_code": self.status_code,
        }
