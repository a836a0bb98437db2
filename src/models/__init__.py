from .transaction import PaymentMethod, Transaction, TransactionStatus
from .invoice import Invoice, InvoiceItem, InvoiceStatus
from .gateway import Address, CustomerDetails, GatewayResponse, ItemDetails, PaymentRequest
from .webhook import WebhookNotification
from .delivery import DeliveryAttempt

__all__ = [
    "PaymentMethod", "Transaction", "TransactionStatus",
    "Invoice", "InvoiceItem", "InvoiceStatus",
    "Address", "CustomerDetails", "GatewayResponse", "ItemDetails", "PaymentRequest",
    "WebhookNotification",
    "DeliveryAttempt",
]
