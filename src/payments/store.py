import copy
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from src.models.invoice import Invoice
from src.models.transaction import Transaction, TransactionStatus
from src.payments.errors import (
    DuplicateInvoiceError,
    DuplicateOrderError,
    InvoiceNumberConflictError,
    NotFoundError,
    StoreError,
)


class TransactionStore(ABC):
    """Persistence for transactions and invoices.

    ``update_status`` is a compare-and-set: it only writes when the stored
    status still equals ``expected_status`` (and, when given, the stored
    version equals ``expected_version``) and returns ``None`` otherwise.
    Patches computed from a read must pass that read's version, or a
    concurrent writer's metadata is overwritten. Every write bumps the
    version. Metadata patches are merged key by key; keys are never removed.
    """

    @abstractmethod
    def create(self, transaction: Transaction) -> Transaction:
        """Persist a new transaction. Raises DuplicateOrderError on a reused order id."""

    @abstractmethod
    def get_by_id(self, transaction_id: str) -> Transaction | None: ...

    @abstractmethod
    def get_by_order_id(self, order_id: str) -> Transaction | None: ...

    @abstractmethod
    def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        metadata_patch: dict | None = None,
        *,
        expected_status: TransactionStatus,
        expected_version: int | None = None,
    ) -> Transaction | None:
        """Conditionally set status and merge metadata. Raises NotFoundError for an unknown id."""

    @abstractmethod
    def list_by_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Transaction]:
        """Newest first."""

    @abstractmethod
    def list_by_status(self, status: TransactionStatus, limit: int = 50) -> list[Transaction]:
        """Least recently updated first."""

    @abstractmethod
    def create_invoice(self, invoice: Invoice) -> Invoice:
        """Persist an invoice.

        Raises DuplicateInvoiceError when the transaction already has one and
        InvoiceNumberConflictError when the number is taken.
        """

    @abstractmethod
    def get_latest_invoice_number_for_prefix(self, prefix: str) -> str | None: ...

    @abstractmethod
    def get_invoice_by_transaction_id(self, transaction_id: str) -> Invoice | None: ...

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Invoice | None: ...

    @abstractmethod
    def list_invoices_by_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Invoice]:
        """Newest first."""


class InMemoryTransactionStore(TransactionStore):
    """Thread-safe in-process store. Records are copied in and out."""

    def __init__(self, clock=None):
        self._transactions: dict[str, Transaction] = {}
        self._order_index: dict[str, str] = {}
        self._invoices: dict[str, Invoice] = {}
        self._invoice_by_transaction: dict[str, str] = {}
        self._invoice_numbers: set[str] = set()
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create(self, transaction: Transaction) -> Transaction:
        with self._lock:
            if transaction.order_id in self._order_index:
                raise DuplicateOrderError(transaction.order_id)
            if transaction.id in self._transactions:
                raise StoreError(f"Transaction {transaction.id} already exists")
            self._transactions[transaction.id] = copy.deepcopy(transaction)
            self._order_index[transaction.order_id] = transaction.id
            return copy.deepcopy(transaction)

    def get_by_id(self, transaction_id: str) -> Transaction | None:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            return copy.deepcopy(txn) if txn else None

    def get_by_order_id(self, order_id: str) -> Transaction | None:
        with self._lock:
            transaction_id = self._order_index.get(order_id)
            if transaction_id is None:
                return None
            return copy.deepcopy(self._transactions[transaction_id])

    def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        metadata_patch: dict | None = None,
        *,
        expected_status: TransactionStatus,
        expected_version: int | None = None,
    ) -> Transaction | None:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if txn.status != expected_status:
                return None
            if expected_version is not None and txn.version != expected_version:
                return None
            txn.status = status
            txn.metadata.update(copy.deepcopy(metadata_patch or {}))
            txn.version += 1
            txn.updated_at = self._clock()
            return copy.deepcopy(txn)

    def list_by_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Transaction]:
        with self._lock:
            rows = [t for t in self._transactions.values() if t.user_id == user_id]
            rows.sort(key=lambda t: t.created_at, reverse=True)
            return [copy.deepcopy(t) for t in rows[offset:offset + limit]]

    def list_by_status(self, status: TransactionStatus, limit: int = 50) -> list[Transaction]:
        with self._lock:
            rows = [t for t in self._transactions.values() if t.status == status]
            rows.sort(key=lambda t: t.updated_at)
            return [copy.deepcopy(t) for t in rows[:limit]]

    def create_invoice(self, invoice: Invoice) -> Invoice:
        with self._lock:
            if invoice.transaction_id in self._invoice_by_transaction:
                raise DuplicateInvoiceError(invoice.transaction_id)
            if invoice.invoice_number in self._invoice_numbers:
                raise InvoiceNumberConflictError(invoice.invoice_number)
            self._invoices[invoice.id] = copy.deepcopy(invoice)
            self._invoice_by_transaction[invoice.transaction_id] = invoice.id
            self._invoice_numbers.add(invoice.invoice_number)
            return copy.deepcopy(invoice)

    def get_latest_invoice_number_for_prefix(self, prefix: str) -> str | None:
        with self._lock:
            matching = sorted(
                (n for n in self._invoice_numbers if n.startswith(prefix)),
                reverse=True,
            )
            return matching[0] if matching else None

    def get_invoice_by_transaction_id(self, transaction_id: str) -> Invoice | None:
        with self._lock:
            invoice_id = self._invoice_by_transaction.get(transaction_id)
            if invoice_id is None:
                return None
            return copy.deepcopy(self._invoices[invoice_id])

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        with self._lock:
            invoice = self._invoices.get(invoice_id)
            return copy.deepcopy(invoice) if invoice else None

    def list_invoices_by_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Invoice]:
        with self._lock:
            rows = [i for i in self._invoices.values() if i.user_id == user_id]
            rows.sort(key=lambda i: i.created_at, reverse=True)
            return [copy.deepcopy(i) for i in rows[offset:offset + limit]]

    def count_invoices(self) -> int:
        with self._lock:
            return len(self._invoices)
