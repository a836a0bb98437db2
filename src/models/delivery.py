from dataclasses import dataclass
from datetime import datetime


@dataclass
class DeliveryAttempt:
    """One POST of a payment notification to a merchant endpoint."""

    attempt_id: str
    order_id: str
    transaction_status: str
    url: str
    status_code: int | None
    timestamp: datetime
    response_time_ms: float
    error: str | None = None

    @property
    def acknowledged(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300
