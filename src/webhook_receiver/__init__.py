from .server import WebhookReceiverServer

__all__ = ["WebhookReceiverServer"]
