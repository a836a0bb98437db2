"""SQLAlchemy Core implementation of ``TransactionStore``.

Status changes are a single conditional ``UPDATE ... WHERE status = :expected
AND version = :version``; a zero rowcount means another writer got there
first. When the caller passes the version it read, that version is the one
compared, so a patch built from a stale read is refused rather than merged. Invoice numbers and the one-invoice-per-transaction rule are unique
constraints, so concurrent generators collide in the database instead of
producing duplicates.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Self

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from src.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from src.models.transaction import PaymentMethod, Transaction, TransactionStatus
from src.payments.errors import (
    DuplicateInvoiceError,
    DuplicateOrderError,
    InvoiceNumberConflictError,
    NotFoundError,
    StoreError,
)
from src.payments.store import TransactionStore


logger = logging.getLogger(__name__)

metadata = MetaData()

transactions_table = Table(
    "payment_transactions",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("order_id", String(100), nullable=False, unique=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("amount", BigInteger, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("status", String(16), nullable=False, index=True),
    Column("payment_method", JSON, nullable=False),
    Column("metadata_json", JSON, nullable=False, default=dict),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

invoices_table = Table(
    "invoices",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("invoice_number", String(16), nullable=False, unique=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("transaction_id", String(32), ForeignKey("payment_transactions.id"), nullable=False, unique=True),
    Column("amount", BigInteger, nullable=False),
    Column("tax", BigInteger, nullable=False),
    Column("total", BigInteger, nullable=False),
    Column("due_date", DateTime(timezone=True), nullable=False),
    Column("status", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

invoice_items_table = Table(
    "invoice_items",
    metadata,
    Column("invoice_id", String(32), ForeignKey("invoices.id"), primary_key=True),
    Column("position", Integer, primary_key=True),
    Column("item_id", String(32), nullable=False),
    Column("description", String(255), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", BigInteger, nullable=False),
)

MAX_VERSION_RETRIES = 5


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlTransactionStore(TransactionStore):

    def __init__(self, engine: Engine, clock=None):
        self.engine = engine
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_url(cls, url: str, clock=None) -> Self:
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(url)
        return cls(engine, clock=clock)

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    @contextmanager
    def _begin(self):
        try:
            with self.engine.begin() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Store operation failed: %s", exc)
            raise StoreError(f"Store operation failed: {exc}") from exc

    # Transactions

    def create(self, transaction: Transaction) -> Transaction:
        row = {
            "id": transaction.id,
            "order_id": transaction.order_id,
            "user_id": transaction.user_id,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "status": transaction.status.value,
            "payment_method": {
                "id": transaction.payment_method.id,
                "type": transaction.payment_method.type,
                "name": transaction.payment_method.name,
                "provider": transaction.payment_method.provider,
                "is_active": transaction.payment_method.is_active,
            },
            "metadata_json": dict(transaction.metadata),
            "version": transaction.version,
            "created_at": transaction.created_at,
            "updated_at": transaction.updated_at,
        }
        try:
            with self._begin() as conn:
                conn.execute(insert(transactions_table).values(**row))
        except IntegrityError as exc:
            if self.get_by_order_id(transaction.order_id) is not None:
                raise DuplicateOrderError(transaction.order_id) from exc
            logger.error("Could not insert transaction %s: %s", transaction.id, exc)
            raise StoreError(f"Could not insert transaction {transaction.id}: {exc}") from exc
        return self.get_by_id(transaction.id)

    def get_by_id(self, transaction_id: str) -> Transaction | None:
        with self._begin() as conn:
            row = conn.execute(
                select(transactions_table).where(transactions_table.c.id == transaction_id)
            ).mappings().first()
        return self._to_transaction(row) if row else None

    def get_by_order_id(self, order_id: str) -> Transaction | None:
        with self._begin() as conn:
            row = conn.execute(
                select(transactions_table).where(transactions_table.c.order_id == order_id)
            ).mappings().first()
        return self._to_transaction(row) if row else None

    def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        metadata_patch: dict | None = None,
        *,
        expected_status: TransactionStatus,
        expected_version: int | None = None,
    ) -> Transaction | None:
        t = transactions_table
        # A caller-supplied version is checked once; only blind merges retry.
        attempts = MAX_VERSION_RETRIES if expected_version is None else 1
        for _ in range(attempts):
            with self._begin() as conn:
                row = conn.execute(
                    select(t.c.status, t.c.version, t.c.metadata_json).where(t.c.id == transaction_id)
                ).mappings().first()
                if row is None:
                    raise NotFoundError(f"Transaction {transaction_id} not found")
                if row["status"] != expected_status.value:
                    return None
                if expected_version is not None and row["version"] != expected_version:
                    return None

                merged = {**(row["metadata_json"] or {}), **(metadata_patch or {})}
                result = conn.execute(
                    update(t)
                    .where(
                        t.c.id == transaction_id,
                        t.c.status == expected_status.value,
                        t.c.version == row["version"],
                    )
                    .values(
                        status=status.value,
                        metadata_json=merged,
                        version=row["version"] + 1,
                        updated_at=self._clock(),
                    )
                )
            if result.rowcount:
                return self.get_by_id(transaction_id)
            logger.debug("Version conflict updating transaction %s, re-reading", transaction_id)
        return None

    def list_by_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Transaction]:
        t = transactions_table
        with self._begin() as conn:
            rows = conn.execute(
                select(t)
                .where(t.c.user_id == user_id)
                .order_by(t.c.created_at.desc())
                .limit(limit)
                .offset(offset)
            ).mappings().all()
        return [self._to_transaction(r) for r in rows]

    def list_by_status(self, status: TransactionStatus, limit: int = 50) -> list[Transaction]:
        t = transactions_table
        with self._begin() as conn:
            rows = conn.execute(
                select(t).where(t.c.status == status.value).order_by(t.c.updated_at).limit(limit)
            ).mappings().all()
        return [self._to_transaction(r) for r in rows]

    # Invoices

    def create_invoice(self, invoice: Invoice) -> Invoice:
        try:
            with self._begin() as conn:
                conn.execute(
                    insert(invoices_table).values(
                        id=invoice.id,
                        invoice_number=invoice.invoice_number,
                        user_id=invoice.user_id,
                        transaction_id=invoice.transaction_id,
                        amount=invoice.amount,
                        tax=invoice.tax,
                        total=invoice.total,
                        due_date=invoice.due_date,
                        status=invoice.status.value,
                        created_at=invoice.created_at,
                        updated_at=invoice.updated_at,
                    )
                )
                if invoice.items:
                    conn.execute(
                        insert(invoice_items_table),
                        [
                            {
                                "invoice_id": invoice.id,
                                "position": position,
                                "item_id": item.id,
                                "description": item.description,
                                "quantity": item.quantity,
                                "unit_price": item.unit_price,
                            }
                            for position, item in enumerate(invoice.items)
                        ],
                    )
        except IntegrityError as exc:
            if self.get_invoice_by_transaction_id(invoice.transaction_id) is not None:
                raise DuplicateInvoiceError(invoice.transaction_id) from exc
            raise InvoiceNumberConflictError(invoice.invoice_number) from exc
        return self.get_invoice(invoice.id)

    def get_latest_invoice_number_for_prefix(self, prefix: str) -> str | None:
        i = invoices_table
        with self._begin() as conn:
            return conn.execute(
                select(i.c.invoice_number)
                .where(i.c.invoice_number.like(f"{prefix}%"))
                .order_by(i.c.invoice_number.desc())
                .limit(1)
            ).scalar()

    def get_invoice_by_transaction_id(self, transaction_id: str) -> Invoice | None:
        return self._fetch_invoice(invoices_table.c.transaction_id == transaction_id)

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        return self._fetch_invoice(invoices_table.c.id == invoice_id)

    def list_invoices_by_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Invoice]:
        i = invoices_table
        with self._begin() as conn:
            rows = conn.execute(
                select(i)
                .where(i.c.user_id == user_id)
                .order_by(i.c.created_at.desc())
                .limit(limit)
                .offset(offset)
            ).mappings().all()
            return [self._to_invoice(r, self._load_items(conn, r["id"])) for r in rows]

    def _fetch_invoice(self, condition) -> Invoice | None:
        with self._begin() as conn:
            row = conn.execute(select(invoices_table).where(condition)).mappings().first()
            if row is None:
                return None
            return self._to_invoice(row, self._load_items(conn, row["id"]))

    @staticmethod
    def _load_items(conn, invoice_id: str) -> list[InvoiceItem]:
        it = invoice_items_table
        rows = conn.execute(
            select(it).where(it.c.invoice_id == invoice_id).order_by(it.c.position)
        ).mappings().all()
        return [
            InvoiceItem(
                id=r["item_id"],
                description=r["description"],
                quantity=r["quantity"],
                unit_price=r["unit_price"],
            )
            for r in rows
        ]

    @staticmethod
    def _to_transaction(row) -> Transaction:
        return Transaction(
            id=row["id"],
            order_id=row["order_id"],
            user_id=row["user_id"],
            amount=row["amount"],
            currency=row["currency"],
            status=TransactionStatus(row["status"]),
            payment_method=PaymentMethod(**row["payment_method"]),
            created_at=_utc(row["created_at"]),
            updated_at=_utc(row["updated_at"]),
            metadata=dict(row["metadata_json"] or {}),
            version=row["version"],
        )

    @staticmethod
    def _to_invoice(row, items: list[InvoiceItem]) -> Invoice:
        return Invoice(
            id=row["id"],
            invoice_number=row["invoice_number"],
            user_id=row["user_id"],
            transaction_id=row["transaction_id"],
            amount=row["amount"],
            tax=row["tax"],
            due_date=_utc(row["due_date"]),
            status=InvoiceStatus(row["status"]),
            created_at=_utc(row["created_at"]),
            updated_at=_utc(row["updated_at"]),
            items=items,
        )
