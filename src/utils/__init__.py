from .crypto import generate_signature, verify_signature
from .factories import NotificationFactory, PaymentRequestFactory, TransactionFactory

__all__ = [
    "generate_signature", "verify_signature",
    "NotificationFactory", "PaymentRequestFactory", "TransactionFactory",
]
