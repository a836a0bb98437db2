from .errors import (
    ConcurrentUpdateError,
    ConfigurationError,
    DuplicateInvoiceError,
    DuplicateOrderError,
    ErrorKind,
    GatewayConnectionError,
    GatewayError,
    GatewayTimeoutError,
    IllegalTransitionError,
    InvoiceNumberConflictError,
    NotFoundError,
    PaymentError,
    RefundLimitExceededError,
    SignatureError,
    StoreError,
    ValidationError,
)
from .result import Result

__all__ = [
    "ConcurrentUpdateError", "ConfigurationError", "DuplicateInvoiceError",
    "DuplicateOrderError", "ErrorKind", "GatewayConnectionError", "GatewayError",
    "GatewayTimeoutError", "IllegalTransitionError", "InvoiceNumberConflictError",
    "NotFoundError", "PaymentError", "RefundLimitExceededError", "SignatureError",
    "StoreError", "ValidationError",
    "Result",
]
