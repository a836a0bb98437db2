import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

from src.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from src.models.transaction import Transaction
from src.payments.errors import DuplicateInvoiceError, InvoiceNumberConflictError, StoreError
from src.payments.store import TransactionStore


logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"
TAX_RATE = Decimal("0.11")
PAYMENT_TERM_DAYS = 30
MAX_SEQUENCE = 9999
DEFAULT_SERVICE_DESCRIPTION = "Internet Service Payment"


def compute_tax(amount: int) -> int:
    """11% of amount, rounded half up to whole minor units."""
    return int((Decimal(amount) * TAX_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def invoice_prefix(when: datetime) -> str:
    return f"{INVOICE_PREFIX}{when.year:04d}{when.month:02d}"


class InvoiceGenerator:
    """Creates the single invoice of a settled transaction.

    Numbers are ``INV<yyyy><mm><seq4>``, where seq follows the highest
    number already issued for that month. The store rejects a taken number,
    in which case the generator reads the latest number again and retries.
    """

    def __init__(
        self,
        store: TransactionStore,
        clock=None,
        max_attempts: int = 25,
        service_description: str = DEFAULT_SERVICE_DESCRIPTION,
    ):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_attempts = max_attempts
        self.service_description = service_description

    def generate(self, transaction: Transaction) -> Invoice:
        existing = self.store.get_invoice_by_transaction_id(transaction.id)
        if existing is not None:
            return existing

        for attempt in range(self.max_attempts):
            now = self.clock()
            invoice = self._build(transaction, self.next_invoice_number(now), now)
            try:
                created = self.store.create_invoice(invoice)
            except DuplicateInvoiceError:
                # Another delivery for the same transaction won the race.
                return self.store.get_invoice_by_transaction_id(transaction.id)
            except InvoiceNumberConflictError:
                logger.info(
                    "Invoice number %s taken, retrying (attempt %d)",
                    invoice.invoice_number, attempt + 1,
                )
                continue
            logger.info(
                "Generated invoice %s for transaction %s",
                created.invoice_number, transaction.id,
            )
            return created

        raise StoreError(
            f"Could not allocate an invoice number for transaction {transaction.id} "
            f"after {self.max_attempts} attempts"
        )

    def next_invoice_number(self, now: datetime) -> str:
        prefix = invoice_prefix(now)
        latest = self.store.get_latest_invoice_number_for_prefix(prefix)
        sequence = int(latest[-4:]) + 1 if latest else 1
        if sequence > MAX_SEQUENCE:
            raise StoreError(f"Invoice sequence exhausted for {prefix}")
        return f"{prefix}{sequence:04d}"

    def _build(self, transaction: Transaction, invoice_number: str, now: datetime) -> Invoice:
        return Invoice(
            id=uuid.uuid4().hex,
            invoice_number=invoice_number,
            user_id=transaction.user_id,
            transaction_id=transaction.id,
            amount=transaction.amount,
            tax=compute_tax(transaction.amount),
            due_date=now + timedelta(days=PAYMENT_TERM_DAYS),
            status=InvoiceStatus.PAID,
            created_at=now,
            updated_at=now,
            items=[
                InvoiceItem(
                    id="1",
                    description=self.service_description,
                    quantity=1,
                    unit_price=transaction.amount,
                ),
            ],
        )
