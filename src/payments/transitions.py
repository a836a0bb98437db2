import logging
from dataclasses import dataclass
from typing import Callable

from src.models.invoice import Invoice
from src.models.transaction import Transaction, TransactionStatus
from src.payments.errors import ConcurrentUpdateError, IllegalTransitionError, NotFoundError
from src.payments.invoices import InvoiceGenerator
from src.payments.state_machine import assert_transition, map_gateway_status
from src.payments.store import TransactionStore


logger = logging.getLogger(__name__)

MetadataPatch = dict | Callable[[Transaction], dict]
SettlementListener = Callable[[Transaction, Invoice], None]


@dataclass
class TransitionOutcome:
    transaction: Transaction
    previous_status: TransactionStatus
    changed: bool
    duplicate: bool
    invoice: Invoice | None = None


class StatusUpdater:
    """Applies a gateway status to a stored transaction.

    Shared by the webhook path and the synchronous orchestrator paths so
    both use the same mapping, legality and idempotency rules. The write is
    a compare-and-set on the status and version read; when it loses a race
    the transaction is read again, a callable patch is re-evaluated against
    the fresh copy, and the decision is re-made.
    """

    def __init__(
        self,
        store: TransactionStore,
        invoices: InvoiceGenerator,
        listeners: list[SettlementListener] | None = None,
        max_conflict_retries: int = 3,
    ):
        self.store = store
        self.invoices = invoices
        self.listeners = list(listeners or [])
        self.max_conflict_retries = max_conflict_retries

    def apply(
        self,
        order_id: str,
        gateway_status: str,
        metadata_patch: MetadataPatch | None = None,
        *,
        source: str = "webhook",
    ) -> TransitionOutcome:
        target = map_gateway_status(gateway_status)

        for _ in range(self.max_conflict_retries):
            txn = self.store.get_by_order_id(order_id)
            if txn is None:
                raise NotFoundError(f"Transaction for order {order_id} not found")

            patch = metadata_patch(txn) if callable(metadata_patch) else dict(metadata_patch or {})

            if txn.status == target:
                if source == "webhook":
                    # The first delivery's payload stays; only the repeat is noted.
                    patch = {
                        "duplicate_deliveries": int(txn.metadata.get("duplicate_deliveries", 0)) + 1,
                        "last_duplicate_notification": patch.get("webhook_notification"),
                    }
                updated = self.store.update_status(
                    txn.id, txn.status, patch,
                    expected_status=txn.status, expected_version=txn.version,
                )
                if updated is None:
                    logger.info("Concurrent update on order %s, re-reading", order_id)
                    continue
                logger.info(
                    "Order %s already %s, recorded %s delivery without transition",
                    order_id, txn.status.value, source,
                )
                outcome = TransitionOutcome(updated, txn.status, changed=False, duplicate=True)
                if updated.status == TransactionStatus.SUCCESS:
                    # Idempotent: returns the existing invoice, or repairs a missing one.
                    outcome.invoice = self.invoices.generate(updated)
                return outcome

            try:
                assert_transition(txn.status, target)
            except IllegalTransitionError:
                logger.warning(
                    "Ignoring %s status %r for order %s: %s -> %s is not allowed",
                    source, gateway_status, order_id, txn.status.value, target.value,
                )
                raise

            updated = self.store.update_status(
                txn.id, target, patch,
                expected_status=txn.status, expected_version=txn.version,
            )
            if updated is None:
                logger.warning("Concurrent update on order %s, re-reading", order_id)
                continue

            logger.info(
                "Order %s moved %s -> %s via %s",
                order_id, txn.status.value, target.value, source,
            )
            outcome = TransitionOutcome(updated, txn.status, changed=True, duplicate=False)
            if target == TransactionStatus.SUCCESS:
                outcome.invoice = self.invoices.generate(updated)
                self._notify(updated, outcome.invoice)
            return outcome

        raise ConcurrentUpdateError(
            f"Transaction for order {order_id} kept changing, gave up after "
            f"{self.max_conflict_retries} attempts"
        )

    def _notify(self, transaction: Transaction, invoice: Invoice) -> None:
        # Email, notification and loyalty hooks are fire-and-forget.
        for listener in self.listeners:
            try:
                listener(transaction, invoice)
            except Exception:
                logger.exception(
                    "Settlement listener %r failed for order %s",
                    listener, transaction.order_id,
                )
