import logging
from dataclasses import dataclass

from src.models.transaction import TransactionStatus
from src.models.webhook import WebhookNotification
from src.payments.errors import PaymentError, SignatureError
from src.payments.result import Result
from src.payments.signer import NotificationSigner
from src.payments.transitions import StatusUpdater


logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    transaction_id: str
    order_id: str
    status: TransactionStatus
    duplicate: bool
    invoice_number: str | None = None


class WebhookProcessor:
    """Verifies and applies gateway status callbacks.

    Safe to call repeatedly with the same payload: the gateway delivers at
    least once and re-sends on any non-2xx answer.
    """

    def __init__(self, signer: NotificationSigner, updater: StatusUpdater):
        self.signer = signer
        self.updater = updater

    def handle(self, payload: dict) -> Result[WebhookOutcome]:
        try:
            return Result.success(self.process(payload))
        except PaymentError as exc:
            logger.warning("Webhook rejected (%s): %s", exc.kind.value, exc.message)
            return Result.failure(exc)

    def process(self, payload: dict) -> WebhookOutcome:
        notification = WebhookNotification.from_payload(payload)
        logger.info("Payment webhook received", extra=notification.safe_context())

        if not self.signer.verify(notification):
            raise SignatureError(f"Invalid webhook signature for order {notification.order_id}")

        outcome = self.updater.apply(
            notification.order_id,
            notification.transaction_status,
            {
                "webhook_notification": notification.raw,
                "fraud_status": notification.fraud_status,
            },
            source="webhook",
        )
        return WebhookOutcome(
            transaction_id=outcome.transaction.id,
            order_id=notification.order_id,
            status=outcome.transaction.status,
            duplicate=outcome.duplicate,
            invoice_number=outcome.invoice.invoice_number if outcome.invoice else None,
        )
