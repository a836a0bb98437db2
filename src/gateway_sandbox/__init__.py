from .logger import DeliveryLogger
from .notifier import WebhookNotifier
from .server import SandboxGatewayServer

__all__ = [
    "DeliveryLogger",
    "SandboxGatewayServer",
    "WebhookNotifier",
]
