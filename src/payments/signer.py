from src.models.webhook import WebhookNotification
from src.utils.crypto import generate_signature, verify_signature


class NotificationSigner:
    """Signs and verifies gateway notifications with the merchant server key."""

    def __init__(self, secret: str):
        self.secret = secret

    def sign(self, order_id: str, status_code: str, gross_amount: str) -> str:
        return generate_signature(order_id, status_code, gross_amount, self.secret)

    def verify(self, notification: WebhookNotification) -> bool:
        return verify_signature(
            notification.order_id,
            notification.status_code,
            notification.gross_amount,
            self.secret,
            notification.signature_key,
        )
