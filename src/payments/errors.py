"""Error taxonomy for the payment core.

Every error carries an ``ErrorKind`` so callers receiving a ``Result`` can
branch on the category without matching exception classes.
"""

from enum import Enum


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    GATEWAY = "gateway"
    GATEWAY_TIMEOUT = "gateway_timeout"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    ILLEGAL_TRANSITION = "illegal_transition"
    CONFLICT = "conflict"
    STORE = "store"


class PaymentError(Exception):
    kind: ErrorKind = ErrorKind.STORE
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "message": self.message}


class ConfigurationError(PaymentError):
    kind = ErrorKind.CONFIGURATION


class ValidationError(PaymentError):
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]

    def to_dict(self) -> dict:
        return {**super().to_dict(), "errors": list(self.errors)}


class DuplicateOrderError(ValidationError):
    def __init__(self, order_id: str):
        super().__init__(f"Transaction for order {order_id} already exists")
        self.order_id = order_id


class RefundLimitExceededError(ValidationError):
    def __init__(self, order_id: str, requested: int, refundable: int):
        super().__init__(
            f"Refund of {requested} for order {order_id} exceeds "
            f"refundable amount {refundable}"
        )
        self.requested = requested
        self.refundable = refundable


class GatewayError(PaymentError):
    """The gateway answered with a non-2xx status (or an unreadable body)."""

    kind = ErrorKind.GATEWAY

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def to_dict(self) -> dict:
        return {**super().to_dict(), "status_code": self.status_code}


class GatewayConnectionError(GatewayError):
    retryable = True


class GatewayTimeoutError(GatewayError):
    kind = ErrorKind.GATEWAY_TIMEOUT
    retryable = True


class SignatureError(PaymentError):
    kind = ErrorKind.AUTHENTICATION


class NotFoundError(PaymentError):
    kind = ErrorKind.NOT_FOUND


class IllegalTransitionError(PaymentError):
    kind = ErrorKind.ILLEGAL_TRANSITION

    def __init__(self, current, target):
        super().__init__(f"Invalid transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


class StoreError(PaymentError):
    kind = ErrorKind.STORE


class ConcurrentUpdateError(StoreError):
    kind = ErrorKind.CONFLICT
    retryable = True


class DuplicateInvoiceError(StoreError):
    def __init__(self, transaction_id: str):
        super().__init__(f"Invoice for transaction {transaction_id} already exists")
        self.transaction_id = transaction_id


class InvoiceNumberConflictError(StoreError):
    def __init__(self, invoice_number: str):
        super().__init__(f"Invoice number {invoice_number} is already taken")
        self.invoice_number = invoice_number
