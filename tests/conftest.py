from datetime import datetime, timezone

import pytest

from src.gateway_sandbox.logger import DeliveryLogger
from src.gateway_sandbox.notifier import WebhookNotifier
from src.gateway_sandbox.server import SandboxGatewayServer
from src.payments.config import GatewayConfig
from src.payments.gateway import GatewayClient
from src.payments.invoices import InvoiceGenerator
from src.payments.orchestrator import PaymentOrchestrator
from src.payments.retry import RetryManager
from src.payments.signer import NotificationSigner
from src.payments.sql_store import SqlTransactionStore
from src.payments.store import InMemoryTransactionStore
from src.payments.transitions import StatusUpdater
from src.payments.webhooks import WebhookProcessor
from src.utils.factories import NotificationFactory, PaymentRequestFactory, TransactionFactory
from src.webhook_receiver.server import WebhookReceiverServer


SERVER_KEY = "SB-Mid-server-test-key"
CLIENT_KEY = "SB-Mid-client-test-key"
FIXED_NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def server_key():
    return SERVER_KEY


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def store():
    return InMemoryTransactionStore()


@pytest.fixture
def sqlite_file_store(tmp_path):
    """SQL store on a database file, so each thread gets its own connection."""
    sql_store = SqlTransactionStore.from_url(f"sqlite:///{tmp_path / 'payments.db'}")
    sql_store.create_schema()
    yield sql_store
    sql_store.engine.dispose()


@pytest.fixture(params=["memory", "sqlite_file"])
def threaded_store(request):
    if request.param == "memory":
        return InMemoryTransactionStore()
    return request.getfixturevalue("sqlite_file_store")


@pytest.fixture
def invoice_generator(store, clock):
    return InvoiceGenerator(store, clock=clock)


@pytest.fixture
def updater(store, invoice_generator):
    return StatusUpdater(store, invoice_generator)


@pytest.fixture
def signer():
    return NotificationSigner(SERVER_KEY)


@pytest.fixture
def webhook_processor(signer, updater):
    return WebhookProcessor(signer, updater)


@pytest.fixture
def gateway_server():
    server = SandboxGatewayServer(SERVER_KEY)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def gateway_config(gateway_server):
    return GatewayConfig(
        server_key=SERVER_KEY,
        client_key=CLIENT_KEY,
        site_url="https://shop.example",
        api_url=gateway_server.url,
        timeout_seconds=2,
    )


@pytest.fixture
def gateway_client(gateway_config):
    client = GatewayClient(
        gateway_config,
        status_retry=RetryManager.exponential(base=0, max_retries=2),
    )
    yield client
    client.close()


@pytest.fixture
def orchestrator(gateway_client, store, clock):
    return PaymentOrchestrator(gateway_client, store, clock=clock)


@pytest.fixture
def receiver(orchestrator):
    server = WebhookReceiverServer(orchestrator)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def retry_manager():
    return RetryManager()


@pytest.fixture
def delivery_logger():
    return DeliveryLogger()


@pytest.fixture
def notifier(delivery_logger):
    notifier = WebhookNotifier(
        retry_manager=RetryManager(max_retries=2),
        logger=delivery_logger,
        timeout_seconds=5,
    )
    yield notifier
    notifier.close()


@pytest.fixture
def transaction_factory():
    return TransactionFactory


@pytest.fixture
def request_factory():
    return PaymentRequestFactory


@pytest.fixture
def notification_factory():
    return NotificationFactory
