import threading
from datetime import datetime, timedelta, timezone

import pytest

from src.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from src.models.transaction import TransactionStatus
from src.payments.errors import (
    DuplicateInvoiceError,
    DuplicateOrderError,
    InvoiceNumberConflictError,
    NotFoundError,
    StoreError,
)
from src.payments.sql_store import SqlTransactionStore
from src.payments.store import InMemoryTransactionStore


NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    if request.param == "memory":
        yield InMemoryTransactionStore()
        return
    store = SqlTransactionStore.from_url("sqlite://")
    store.create_schema()
    yield store
    store.engine.dispose()


def make_invoice(transaction, number, created_at=NOW):
    return Invoice(
        id=f"inv-{number}",
        invoice_number=number,
        user_id=transaction.user_id,
        transaction_id=transaction.id,
        amount=transaction.amount,
        tax=5500,
        due_date=created_at + timedelta(days=30),
        status=InvoiceStatus.PAID,
        created_at=created_at,
        updated_at=created_at,
        items=[InvoiceItem(id="1", description="Internet Service Payment", quantity=1, unit_price=transaction.amount)],
    )


class TestTransactions:
    """Create and read transactions."""

    @pytest.mark.unit
    def test_create_and_get(self, any_store, transaction_factory):
        txn = transaction_factory.create(metadata={"source": "web"})
        any_store.create(txn)

        by_id = any_store.get_by_id(txn.id)
        by_order = any_store.get_by_order_id(txn.order_id)

        assert by_id.order_id == txn.order_id
        assert by_order.id == txn.id
        assert by_id.status == TransactionStatus.PENDING
        assert by_id.amount == 50000
        assert by_id.payment_method.id == "credit_card"
        assert by_id.metadata == {"source": "web"}
        assert by_id.created_at.tzinfo is not None

    @pytest.mark.unit
    def test_unknown_ids_return_none(self, any_store):
        assert any_store.get_by_id("missing") is None
        assert any_store.get_by_order_id("missing") is None

    @pytest.mark.unit
    def test_duplicate_order_id_rejected(self, any_store, transaction_factory):
        any_store.create(transaction_factory.create(order_id="ORD1"))
        with pytest.raises(DuplicateOrderError):
            any_store.create(transaction_factory.create(order_id="ORD1"))

    @pytest.mark.unit
    def test_reused_id_is_a_store_error_not_a_duplicate_order(self, any_store, transaction_factory):
        first = any_store.create(transaction_factory.create(order_id="ORD1"))

        with pytest.raises(StoreError) as excinfo:
            any_store.create(transaction_factory.create(id=first.id, order_id="ORD2"))

        assert not isinstance(excinfo.value, DuplicateOrderError)
        assert any_store.get_by_order_id("ORD2") is None

    @pytest.mark.unit
    def test_returned_records_are_copies(self, any_store, transaction_factory):
        txn = transaction_factory.create()
        any_store.create(txn)

        fetched = any_store.get_by_id(txn.id)
        fetched.metadata["tampered"] = True
        fetched.status = TransactionStatus.SUCCESS

        again = any_store.get_by_id(txn.id)
        assert "tampered" not in again.metadata
        assert again.status == TransactionStatus.PENDING


class TestConditionalUpdate:
    """update_status() is a compare-and-set on the current status."""

    @pytest.mark.unit
    def test_update_when_expected_status_matches(self, any_store, transaction_factory):
        txn = transaction_factory.create()
        any_store.create(txn)

        updated = any_store.update_status(
            txn.id, TransactionStatus.SUCCESS, {"fraud_status": "accept"},
            expected_status=TransactionStatus.PENDING,
        )

        assert updated is not None
        assert updated.status == TransactionStatus.SUCCESS
        assert updated.metadata["fraud_status"] == "accept"
        assert any_store.get_by_id(txn.id).status == TransactionStatus.SUCCESS

    @pytest.mark.unit
    def test_no_write_when_expected_status_differs(self, any_store, transaction_factory):
        txn = transaction_factory.create()
        any_store.create(txn)
        any_store.update_status(txn.id, TransactionStatus.FAILED, expected_status=TransactionStatus.PENDING)

        result = any_store.update_status(
            txn.id, TransactionStatus.SUCCESS, {"late": True},
            expected_status=TransactionStatus.PENDING,
        )

        assert result is None
        stored = any_store.get_by_id(txn.id)
        assert stored.status == TransactionStatus.FAILED
        assert "late" not in stored.metadata

    @pytest.mark.unit
    def test_metadata_is_merged_not_replaced(self, any_store, transaction_factory):
        txn = transaction_factory.create(metadata={"a": 1})
        any_store.create(txn)

        any_store.update_status(txn.id, TransactionStatus.PENDING, {"b": 2}, expected_status=TransactionStatus.PENDING)
        updated = any_store.update_status(
            txn.id, TransactionStatus.PENDING, {"a": 3}, expected_status=TransactionStatus.PENDING,
        )

        assert updated.metadata == {"a": 3, "b": 2}

    @pytest.mark.unit
    def test_every_write_bumps_version(self, any_store, transaction_factory):
        txn = any_store.create(transaction_factory.create())
        assert txn.version == 1

        first = any_store.update_status(txn.id, TransactionStatus.PENDING, {"a": 1}, expected_status=TransactionStatus.PENDING)
        second = any_store.update_status(txn.id, TransactionStatus.SUCCESS, expected_status=TransactionStatus.PENDING)

        assert first.version == 2
        assert second.version == 3
        assert any_store.get_by_order_id(txn.order_id).version == 3

    @pytest.mark.unit
    def test_stale_version_is_refused(self, any_store, transaction_factory):
        txn = any_store.create(transaction_factory.create(metadata={"refunded_amount": 0}))
        any_store.update_status(
            txn.id, TransactionStatus.PENDING, {"refunded_amount": 5000},
            expected_status=TransactionStatus.PENDING, expected_version=txn.version,
        )

        result = any_store.update_status(
            txn.id, TransactionStatus.PENDING, {"refunded_amount": 7000},
            expected_status=TransactionStatus.PENDING, expected_version=txn.version,
        )

        assert result is None
        stored = any_store.get_by_id(txn.id)
        assert stored.metadata["refunded_amount"] == 5000
        assert stored.version == 2

    @pytest.mark.unit
    def test_unknown_transaction_raises_not_found(self, any_store):
        with pytest.raises(NotFoundError):
            any_store.update_status("missing", TransactionStatus.SUCCESS, expected_status=TransactionStatus.PENDING)

    @pytest.mark.unit
    def test_updated_at_advances(self, transaction_factory):
        later = NOW + timedelta(minutes=5)
        store = InMemoryTransactionStore(clock=lambda: later)
        txn = transaction_factory.create(created_at=NOW, updated_at=NOW)
        store.create(txn)

        updated = store.update_status(txn.id, TransactionStatus.SUCCESS, expected_status=TransactionStatus.PENDING)

        assert updated.updated_at == later
        assert updated.created_at == NOW


class TestListing:

    @pytest.mark.unit
    def test_list_by_user_newest_first_with_paging(self, any_store, transaction_factory):
        for n in range(5):
            any_store.create(transaction_factory.create(
                user_id="user_1",
                order_id=f"ORD-{n}",
                created_at=NOW + timedelta(minutes=n),
                updated_at=NOW + timedelta(minutes=n),
            ))
        any_store.create(transaction_factory.create(user_id="user_2"))

        page = any_store.list_by_user("user_1", limit=2, offset=1)

        assert [t.order_id for t in page] == ["ORD-3", "ORD-2"]
        assert len(any_store.list_by_user("user_1")) == 5

    @pytest.mark.unit
    def test_list_by_status_oldest_update_first(self, any_store, transaction_factory):
        for n in (2, 0, 1):
            any_store.create(transaction_factory.create(
                order_id=f"ORD-{n}",
                updated_at=NOW + timedelta(minutes=n),
            ))
        settled = transaction_factory.create(status=TransactionStatus.SUCCESS)
        any_store.create(settled)

        pending = any_store.list_by_status(TransactionStatus.PENDING, limit=2)

        assert [t.order_id for t in pending] == ["ORD-0", "ORD-1"]


class TestInvoices:
    """Invoice persistence and uniqueness rules."""

    @pytest.mark.unit
    def test_create_and_fetch_invoice(self, any_store, transaction_factory):
        txn = any_store.create(transaction_factory.create())
        any_store.create_invoice(make_invoice(txn, "INV2024010001"))

        by_txn = any_store.get_invoice_by_transaction_id(txn.id)
        by_id = any_store.get_invoice("inv-INV2024010001")

        assert by_txn.invoice_number == "INV2024010001"
        assert by_id.total == 55500
        assert by_id.status == InvoiceStatus.PAID
        assert [i.description for i in by_id.items] == ["Internet Service Payment"]
        assert by_id.due_date == NOW + timedelta(days=30)

    @pytest.mark.unit
    def test_one_invoice_per_transaction(self, any_store, transaction_factory):
        txn = any_store.create(transaction_factory.create())
        any_store.create_invoice(make_invoice(txn, "INV2024010001"))

        with pytest.raises(DuplicateInvoiceError):
            any_store.create_invoice(make_invoice(txn, "INV2024010002"))

    @pytest.mark.unit
    def test_invoice_number_unique(self, any_store, transaction_factory):
        first = any_store.create(transaction_factory.create())
        second = any_store.create(transaction_factory.create())
        any_store.create_invoice(make_invoice(first, "INV2024010001"))

        with pytest.raises(InvoiceNumberConflictError):
            any_store.create_invoice(make_invoice(second, "INV2024010001"))
        assert any_store.get_invoice_by_transaction_id(second.id) is None

    @pytest.mark.unit
    def test_latest_invoice_number_for_prefix(self, any_store, transaction_factory):
        assert any_store.get_latest_invoice_number_for_prefix("INV202401") is None

        for number in ("INV2024010002", "INV2024010010", "INV2024020001"):
            txn = any_store.create(transaction_factory.create())
            any_store.create_invoice(make_invoice(txn, number))

        assert any_store.get_latest_invoice_number_for_prefix("INV202401") == "INV2024010010"
        assert any_store.get_latest_invoice_number_for_prefix("INV202402") == "INV2024020001"

    @pytest.mark.unit
    def test_list_invoices_by_user(self, any_store, transaction_factory):
        for n in range(3):
            txn = any_store.create(transaction_factory.create(user_id="user_1"))
            any_store.create_invoice(make_invoice(txn, f"INV202401000{n + 1}", NOW + timedelta(days=n)))

        invoices = any_store.list_invoices_by_user("user_1", limit=2)

        assert [i.invoice_number for i in invoices] == ["INV2024010003", "INV2024010002"]
        assert any_store.list_invoices_by_user("nobody") == []


class TestConcurrentUpdates:
    """Compare-and-set under writers racing from the same read."""

    @pytest.mark.unit
    def test_only_one_writer_wins_a_race(self, threaded_store, transaction_factory):
        txn = threaded_store.create(transaction_factory.create())
        barrier = threading.Barrier(8)
        results = []

        def worker(n):
            barrier.wait()
            results.append(threaded_store.update_status(
                txn.id, TransactionStatus.SUCCESS, {"writer": n},
                expected_status=TransactionStatus.PENDING, expected_version=txn.version,
            ))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        winners = [r for r in results if r is not None]
        assert len(results) == 8
        assert len(winners) == 1
        stored = threaded_store.get_by_id(txn.id)
        assert stored.status == TransactionStatus.SUCCESS
        assert stored.metadata["writer"] == winners[0].metadata["writer"]
        assert stored.version == 2
