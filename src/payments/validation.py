from src.models.gateway import PaymentRequest
from src.payments.errors import ValidationError
from src.payments.gateway import ENABLED_PAYMENTS


MAX_ORDER_ID_LENGTH = 100


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_payment_request(request: PaymentRequest) -> None:
    """Reject a payment request before anything is stored or charged.

    Collects every problem rather than stopping at the first.
    """
    errors = []

    if not request.order_id or not request.order_id.strip():
        errors.append("order_id is required")
    elif len(request.order_id) > MAX_ORDER_ID_LENGTH:
        errors.append(f"order_id must be at most {MAX_ORDER_ID_LENGTH} characters")

    if not _is_positive_int(request.amount):
        errors.append("amount must be a positive integer")

    customer = request.customer
    if customer is None:
        errors.append("customer details are required")
    else:
        if not customer.first_name:
            errors.append("customer first_name is required")
        if not customer.email or "@" not in customer.email:
            errors.append("customer email is invalid")

    if not request.items:
        errors.append("at least one item is required")
    else:
        for index, item in enumerate(request.items):
            if not _is_positive_int(item.price):
                errors.append(f"item {index} price must be positive")
            if not _is_positive_int(item.quantity):
                errors.append(f"item {index} quantity must be positive")
        if not errors:
            items_total = sum(item.price * item.quantity for item in request.items)
            if items_total != request.amount:
                errors.append(f"item total {items_total} does not match amount {request.amount}")

    if request.payment_method is not None and request.payment_method not in ENABLED_PAYMENTS:
        errors.append(f"unsupported payment method {request.payment_method!r}")

    if errors:
        raise ValidationError("Invalid payment request", errors=errors)
