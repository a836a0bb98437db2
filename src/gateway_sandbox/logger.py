import threading
from collections import defaultdict

from src.models.delivery import DeliveryAttempt


class DeliveryLogger:
    """Thread-safe record of notification deliveries, indexed by order."""

    def __init__(self):
        self._attempts: list[DeliveryAttempt] = []
        self._by_order: dict[str, list[DeliveryAttempt]] = defaultdict(list)
        self._lock = threading.Lock()

    def log(self, attempt: DeliveryAttempt) -> None:
        with self._lock:
            self._attempts.append(attempt)
            self._by_order[attempt.order_id].append(attempt)

    def get_attempts(self, order_id: str | None = None) -> list[DeliveryAttempt]:
        """All attempts in delivery order, optionally for one order."""
        with self._lock:
            if order_id is None:
                return list(self._attempts)
            return list(self._by_order.get(order_id, []))

    def get_failed_attempts(self) -> list[DeliveryAttempt]:
        with self._lock:
            return [a for a in self._attempts if not a.acknowledged]

    def unacknowledged_orders(self) -> list[str]:
        """Orders whose latest delivery was not acknowledged."""
        with self._lock:
            return [order_id for order_id, attempts in self._by_order.items() if not attempts[-1].acknowledged]

    def clear(self) -> None:
        with self._lock:
            self._attempts.clear()
            self._by_order.clear()
