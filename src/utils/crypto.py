import hashlib
import hmac


def generate_signature(order_id: str, status_code: str, gross_amount: str, secret: str) -> str:
    """SHA-512 hex digest of order_id + status_code + gross_amount + secret."""
    message = f"{order_id}{status_code}{gross_amount}{secret}"
    return hashlib.sha512(message.encode("utf-8")).hexdigest()


def verify_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    secret: str,
    signature: str,
) -> bool:
    """Fixed-time comparison of a supplied signature with the expected one."""
    if not isinstance(signature, str):
        return False
    expected = generate_signature(order_id, status_code, gross_amount, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
