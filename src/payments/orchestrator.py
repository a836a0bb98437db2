import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from src.models.gateway import GatewayResponse, PaymentRequest
from src.models.invoice import Invoice
from src.models.transaction import PaymentMethod, Transaction, TransactionStatus
from src.payments.errors import (
    ErrorKind,
    GatewayError,
    IllegalTransitionError,
    NotFoundError,
    PaymentError,
    RefundLimitExceededError,
    ValidationError,
)
from src.payments.gateway import GatewayClient
from src.payments.invoices import InvoiceGenerator
from src.payments.result import Result
from src.payments.signer import NotificationSigner
from src.payments.state_machine import can_transition, map_gateway_status
from src.payments.store import TransactionStore
from src.payments.transitions import SettlementListener, StatusUpdater
from src.payments.validation import validate_payment_request
from src.payments.webhooks import WebhookOutcome, WebhookProcessor


logger = logging.getLogger(__name__)

PROVIDER = "Midtrans"

PAYMENT_METHODS = [
    PaymentMethod(id="credit_card", type="credit_card", name="Credit Card", provider=PROVIDER),
    PaymentMethod(id="bank_transfer", type="bank_transfer", name="Bank Transfer", provider=PROVIDER),
    PaymentMethod(id="gopay", type="ewallet", name="GoPay", provider=PROVIDER),
    PaymentMethod(id="shopeepay", type="ewallet", name="ShopeePay", provider=PROVIDER),
    PaymentMethod(id="qris", type="ewallet", name="QRIS", provider=PROVIDER),
]

EWALLETS = {"gopay", "shopeepay", "qris"}

# Expected outcomes are logged as warnings, infrastructure failures as errors.
QUIET_KINDS = {ErrorKind.VALIDATION, ErrorKind.NOT_FOUND, ErrorKind.ILLEGAL_TRANSITION, ErrorKind.AUTHENTICATION}


@dataclass
class PaymentOutcome:
    transaction: Transaction
    gateway_response: GatewayResponse


@dataclass
class StatusOutcome:
    transaction: Transaction
    gateway_response: GatewayResponse
    changed: bool


@dataclass
class ReconcileReport:
    checked: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class PaymentOrchestrator:
    """Entry point for the application layer.

    Dependencies are passed in; nothing is built from globals. Every
    operation returns a ``Result`` whose error carries an ``ErrorKind``.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        store: TransactionStore,
        invoice_generator: InvoiceGenerator | None = None,
        webhook_processor: WebhookProcessor | None = None,
        listeners: list[SettlementListener] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.gateway = gateway
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.invoices = invoice_generator or InvoiceGenerator(store, clock=self.clock)
        self.updater = StatusUpdater(store, self.invoices, listeners)
        self.webhooks = webhook_processor or WebhookProcessor(
            NotificationSigner(gateway.config.server_key),
            self.updater,
        )

    # Payment lifecycle

    def process_payment(self, request: PaymentRequest, user_id: str) -> Result[PaymentOutcome]:
        return self._run(
            "process_payment",
            lambda: self._process_payment(request, user_id),
            order_id=request.order_id,
            user_id=user_id,
        )

    def cancel_payment(self, order_id: str) -> Result[PaymentOutcome]:
        return self._run("cancel_payment", lambda: self._cancel_payment(order_id), order_id=order_id)

    def refund_payment(
        self,
        order_id: str,
        amount: int | None = None,
        reason: str | None = None,
    ) -> Result[PaymentOutcome]:
        return self._run(
            "refund_payment",
            lambda: self._refund_payment(order_id, amount, reason),
            order_id=order_id,
        )

    def get_transaction_status(self, order_id: str) -> Result[StatusOutcome]:
        return self._run(
            "get_transaction_status",
            lambda: self._get_transaction_status(order_id),
            order_id=order_id,
        )

    def handle_webhook(self, payload: dict) -> Result[WebhookOutcome]:
        return self.webhooks.handle(payload)

    def reconcile_pending(self, limit: int = 50) -> Result[ReconcileReport]:
        """Pull gateway status for pending transactions, oldest first."""
        return self._run("reconcile_pending", lambda: self._reconcile_pending(limit))

    # Read side

    def get_payment_methods(self) -> list[PaymentMethod]:
        return list(PAYMENT_METHODS)

    def get_client_config(self) -> dict:
        return self.gateway.client_config()

    def get_user_payment_history(self, user_id: str, limit: int = 20, offset: int = 0) -> Result[list[Transaction]]:
        return self._run(
            "get_user_payment_history",
            lambda: self.store.list_by_user(user_id, limit, offset),
            user_id=user_id,
        )

    def get_user_invoices(self, user_id: str, limit: int = 20, offset: int = 0) -> Result[list[Invoice]]:
        return self._run(
            "get_user_invoices",
            lambda: self.store.list_invoices_by_user(user_id, limit, offset),
            user_id=user_id,
        )

    def get_invoice(self, invoice_id: str) -> Result[Invoice]:
        def _get():
            invoice = self.store.get_invoice(invoice_id)
            if invoice is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            return invoice

        return self._run("get_invoice", _get, invoice_id=invoice_id)

    # Internals

    def _run(self, operation: str, func, **context) -> Result:
        try:
            return Result.success(func())
        except PaymentError as exc:
            level = logging.WARNING if exc.kind in QUIET_KINDS else logging.ERROR
            logger.log(
                level,
                "%s failed (%s): %s", operation, exc.kind.value, exc.message,
                extra=context,
            )
            return Result.failure(exc)

    def _require(self, order_id: str) -> Transaction:
        txn = self.store.get_by_order_id(order_id)
        if txn is None:
            raise NotFoundError(f"Transaction for order {order_id} not found")
        return txn

    def _process_payment(self, request: PaymentRequest, user_id: str) -> PaymentOutcome:
        validate_payment_request(request)

        now = self.clock()
        transaction = self.store.create(
            Transaction(
                id=uuid.uuid4().hex,
                order_id=request.order_id,
                user_id=user_id,
                amount=request.amount,
                currency=request.currency,
                status=TransactionStatus.PENDING,
                payment_method=self._pending_method(request.payment_method),
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            "Processing payment",
            extra={"order_id": request.order_id, "user_id": user_id, "amount": request.amount},
        )

        try:
            response = self.gateway.create_transaction(request)
        except GatewayError as exc:
            # The transaction stays pending so reconciliation can settle it.
            self.store.update_status(
                transaction.id,
                TransactionStatus.PENDING,
                {"failure_reason": exc.message},
                expected_status=TransactionStatus.PENDING,
            )
            raise

        outcome = self.updater.apply(
            request.order_id,
            response.transaction_status,
            {
                "gateway_response": response.to_dict(),
                "payment_type": response.payment_type,
            },
            source="charge",
        )
        return PaymentOutcome(outcome.transaction, response)

    def _cancel_payment(self, order_id: str) -> PaymentOutcome:
        txn = self._require(order_id)
        if not can_transition(txn.status, TransactionStatus.CANCELLED):
            raise IllegalTransitionError(txn.status, TransactionStatus.CANCELLED)

        response = self.gateway.cancel(order_id)
        outcome = self.updater.apply(
            order_id,
            response.transaction_status,
            {"gateway_response": response.to_dict()},
            source="cancel",
        )
        return PaymentOutcome(outcome.transaction, response)

    def _refund_payment(self, order_id: str, amount: int | None, reason: str | None) -> PaymentOutcome:
        txn = self._require(order_id)
        if txn.status not in (TransactionStatus.SUCCESS, TransactionStatus.REFUND):
            raise IllegalTransitionError(txn.status, TransactionStatus.REFUND)
        if amount is not None and amount <= 0:
            raise ValidationError("Refund amount must be positive")

        refundable = txn.refundable_amount
        if amount is not None and amount > refundable:
            raise RefundLimitExceededError(order_id, amount, refundable)
        if refundable <= 0:
            raise RefundLimitExceededError(order_id, amount or 0, refundable)

        refund_amount = refundable if amount is None else amount
        # Nothing refunded yet and no amount given: a plain full refund.
        gateway_amount = None if amount is None and txn.refunded_amount == 0 else refund_amount
        response = self.gateway.refund(order_id, gateway_amount, reason)
        refunded_at = self.clock().isoformat()

        def _refund_patch(current: Transaction) -> dict:
            # Re-evaluated on every read, so a refund that landed meanwhile is seen.
            if refund_amount > current.refundable_amount:
                logger.error(
                    "Refund of %d on order %s exceeds remaining %d after a concurrent refund",
                    refund_amount, order_id, current.refundable_amount,
                )
                raise RefundLimitExceededError(order_id, refund_amount, current.refundable_amount)
            refunds = list(current.metadata.get("refunds", []))
            refunds.append({"amount": refund_amount, "reason": reason, "refunded_at": refunded_at})
            return {
                "gateway_response": response.to_dict(),
                "refunded_amount": current.refunded_amount + refund_amount,
                "refund_reason": reason,
                "refunds": refunds,
            }

        outcome = self.updater.apply(order_id, response.transaction_status, _refund_patch, source="refund")
        return PaymentOutcome(outcome.transaction, response)

    def _get_transaction_status(self, order_id: str) -> StatusOutcome:
        txn = self._require(order_id)
        response = self.gateway.get_status(order_id)

        if map_gateway_status(response.transaction_status) == txn.status:
            return StatusOutcome(txn, response, changed=False)

        try:
            outcome = self.updater.apply(
                order_id,
                response.transaction_status,
                {"gateway_response": response.to_dict()},
                source="status_query",
            )
        except IllegalTransitionError:
            # Local state wins over a stale gateway view; already logged.
            return StatusOutcome(self._require(order_id), response, changed=False)
        return StatusOutcome(outcome.transaction, response, changed=outcome.changed)

    def _reconcile_pending(self, limit: int) -> ReconcileReport:
        report = ReconcileReport()
        for txn in self.store.list_by_status(TransactionStatus.PENDING, limit):
            report.checked.append(txn.order_id)
            result = self.get_transaction_status(txn.order_id)
            if not result.ok:
                report.failed[txn.order_id] = result.error.message
            elif result.value.changed:
                report.updated.append(txn.order_id)
        logger.info(
            "Reconciled %d pending transactions: %d updated, %d failed",
            len(report.checked), len(report.updated), len(report.failed),
        )
        return report

    @staticmethod
    def _pending_method(hint: str | None) -> PaymentMethod:
        if hint is None:
            method_type = "credit_card"
        elif hint == "credit_card":
            method_type = "credit_card"
        elif hint in EWALLETS:
            method_type = "ewallet"
        else:
            method_type = "bank_transfer"
        return PaymentMethod(id=hint or "pending", type=method_type, name="Pending", provider=PROVIDER)
